from __future__ import annotations
from typing import NewType, Literal, Union

from eth_utils import to_normalized_address

Address = NewType("Address", str)   # 0x-prefixed, lowercase
Topic   = NewType("Topic", str)     # 66-char 0x-hash, lowercase
FilterKind = Literal["Approval", "TransferFrom", "TransferTo", "Deposit", "Withdrawal"]

UNLIMITED = "MAX_INT256"
Amount = Union[int, Literal["MAX_INT256"]]


def normalize_address(addr: str) -> Address:
    """Lowercase, 0x-prefixed address. Raises ValueError on anything else."""
    s = str(addr).strip()
    if s[:2].lower() != "0x":
        s = "0x" + s
    return Address(to_normalized_address(s))


def address_key(addr: str) -> str:
    """Prefix-stripped lowercase form used in store record keys."""
    return normalize_address(addr)[2:]


def address_to_topic(addr: str) -> Topic:
    return Topic("0x" + "0" * 24 + address_key(addr))


def topic_to_address(topic: str) -> Address:
    return normalize_address("0x" + topic[-40:])
