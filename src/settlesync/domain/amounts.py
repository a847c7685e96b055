"""Store encoding for approval/balance magnitudes.

Anything at or above ``UNLIMITED_THRESHOLD`` (max signed 256-bit value) is an
"infinite approval" for our purposes and is persisted as the ``MAX_INT256``
token instead of its exact magnitude.
"""
from __future__ import annotations

from .value_types import UNLIMITED, Amount

UNLIMITED_THRESHOLD = 2**255 - 1


def encode_amount(value: int) -> str:
    if value < 0:
        raise ValueError(f"Negative amount: {value}")
    return UNLIMITED if value >= UNLIMITED_THRESHOLD else str(int(value))


def decode_amount(raw: str | None) -> Amount | None:
    if raw is None or raw == "":
        return None
    if raw == UNLIMITED:
        return UNLIMITED
    return int(raw)


def is_unlimited(value: Amount | None) -> bool:
    return value == UNLIMITED
