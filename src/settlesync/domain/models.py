from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Union
from .value_types import Address, Amount, FilterKind, Topic, address_to_topic

@dataclass(slots=True, frozen=True)
class BlockRange:
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"start ({self.start}) must be <= end ({self.end})")

    def span(self) -> int: return self.end - self.start + 1


# ---------- typed events (one variant per kind) ------------------------------

@dataclass(slots=True, frozen=True)
class Approval:
    owner: Address
    spender: Address
    value: int
    block_number: int
    tx_hash: str = ""
    log_index: int = 0

@dataclass(slots=True, frozen=True)
class Transfer:
    src: Address
    dst: Address
    value: int
    block_number: int
    tx_hash: str = ""
    log_index: int = 0

@dataclass(slots=True, frozen=True)
class Deposit:
    dst: Address
    value: int
    block_number: int
    tx_hash: str = ""
    log_index: int = 0

@dataclass(slots=True, frozen=True)
class Withdrawal:
    src: Address
    value: int
    block_number: int
    tx_hash: str = ""
    log_index: int = 0

Event = Union[Approval, Transfer, Deposit, Withdrawal]


def event_addresses(ev: Event) -> tuple[Address, ...]:
    """Addresses whose token balance an event can change (owner for approvals)."""
    if isinstance(ev, Transfer):
        return (ev.src, ev.dst)
    if isinstance(ev, Deposit):
        return (ev.dst,)
    if isinstance(ev, Withdrawal):
        return (ev.src,)
    return (ev.owner,)


# ---------- query descriptors -------------------------------------------------

@dataclass(slots=True, frozen=True)
class FilterDescriptor:
    kind: FilterKind
    topic0: Topic
    position: int                       # indexed topic slot holding `addresses`
    addresses: tuple[Address, ...]

    def topics(self) -> list[Optional[Union[str, list[str]]]]:
        """`topics` param for eth_getLogs: topic0, then None up to `position`."""
        out: list[Optional[Union[str, list[str]]]] = [self.topic0]
        out.extend([None] * (self.position - 1))
        out.append([address_to_topic(a) for a in self.addresses])
        return out


# ---------- stored state ------------------------------------------------------

@dataclass(slots=True, frozen=True)
class ValueRecord:
    value: Optional[Amount] = None
    block: int = -1                     # -1 means never written

@dataclass(slots=True, frozen=True)
class ApproverRecord:
    address: Address
    approval: ValueRecord = field(default_factory=ValueRecord)
    balance: ValueRecord = field(default_factory=ValueRecord)


@dataclass(slots=True, frozen=True)
class ChunkResult:
    range: BlockRange
    approvals: int = 0
    approvals_applied: int = 0
    transfers: int = 0
    active: int = 0
    balances_refreshed: int = 0

@dataclass(slots=True, frozen=True)
class CycleResult:
    range: BlockRange
    head: int
    chunks: int
    approvals: int
    active: int
    balances_refreshed: int
