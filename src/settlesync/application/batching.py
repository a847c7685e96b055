"""Turn an unbounded address set into provider-sized eth_getLogs filters.

Providers cap how many values one topic slot may OR together, so every
address-scoped query is split into descriptors of at most `capacity`
addresses. Each kind is batched on its own; descriptors of one kind are a
logical union and are queried independently.
"""
from __future__ import annotations

from typing import Iterable

from ..domain.decoding import KIND_TOPICS
from ..domain.models import FilterDescriptor
from ..domain.value_types import Address, FilterKind, normalize_address

TRANSFER_KINDS: tuple[FilterKind, ...] = ("TransferFrom", "TransferTo", "Deposit", "Withdrawal")


def build_filters(kind: FilterKind, addresses: Iterable[str], capacity: int) -> list[FilterDescriptor]:
    if capacity < 1:
        raise ValueError(f"capacity must be positive, got {capacity}")
    topic0, position = KIND_TOPICS[kind]
    # sorted so the result does not depend on set iteration order
    addrs = sorted({normalize_address(a) for a in addresses})
    out: list[FilterDescriptor] = []
    for i in range(0, len(addrs), capacity):
        out.append(FilterDescriptor(kind=kind, topic0=topic0, position=position,
                                    addresses=tuple(addrs[i:i + capacity])))
    return out


def build_transfer_filters(addresses: Iterable[str], capacity: int) -> dict[FilterKind, list[FilterDescriptor]]:
    addrs = list(addresses)
    return {kind: build_filters(kind, addrs, capacity) for kind in TRANSFER_KINDS}


def build_approval_filter(settlement_address: str) -> FilterDescriptor:
    """Approvals whose spender is the settlement contract, from any owner."""
    topic0, position = KIND_TOPICS["Approval"]
    return FilterDescriptor(kind="Approval", topic0=topic0, position=position,
                            addresses=(Address(normalize_address(settlement_address)),))
