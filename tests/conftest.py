from __future__ import annotations

import asyncio
from typing import Callable, Optional

import pytest

from settlesync.adapters.memory_kv import InMemoryKeyValueStore
from settlesync.application.state_store import StateStore
from settlesync.domain.models import Approval, Deposit, Event, FilterDescriptor, Transfer, Withdrawal
from settlesync.domain.value_types import Address

TOKEN = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
SETTLEMENT = "0x9008d19f58aabd9ed0d60971565aa8510560ab41"
NAMESPACE = "1:9008"


def addr(n: int) -> Address:
    return Address("0x" + f"{n:040x}")


def _matches(ev: Event, f: FilterDescriptor) -> bool:
    wanted = set(f.addresses)
    if f.kind == "Approval":
        return isinstance(ev, Approval) and ev.spender in wanted
    if f.kind == "TransferFrom":
        return isinstance(ev, Transfer) and ev.src in wanted
    if f.kind == "TransferTo":
        return isinstance(ev, Transfer) and ev.dst in wanted
    if f.kind == "Deposit":
        return isinstance(ev, Deposit) and ev.dst in wanted
    if f.kind == "Withdrawal":
        return isinstance(ev, Withdrawal) and ev.src in wanted
    return False


class FakeLedger:
    """In-memory chain: answers descriptor queries from a list of typed events."""

    def __init__(self, head: int = 0, chain_id: int = 1) -> None:
        self.head = head
        self.chain_id = chain_id
        self.events: list[Event] = []
        self.balances: dict[str, int] = {}
        self.fail_when: Optional[Callable[[int, int], bool]] = None
        self.delay_when: Optional[Callable[[int, int], float]] = None
        self.balance_delays: dict[str, float] = {}
        self.queries: list[tuple[str, int, int]] = []
        self.balance_calls: list[tuple[str, int]] = []

    async def get_block_number(self) -> int:
        return self.head

    async def get_chain_id(self) -> int:
        return self.chain_id

    async def query_events(self, descriptor: FilterDescriptor, from_block: int, to_block: int) -> list[Event]:
        self.queries.append((descriptor.kind, from_block, to_block))
        if self.delay_when is not None:
            await asyncio.sleep(self.delay_when(from_block, to_block))
        if self.fail_when is not None and self.fail_when(from_block, to_block):
            raise RuntimeError(f"query returned more than 10000 results [{from_block}, {to_block}]")
        return [e for e in self.events
                if from_block <= e.block_number <= to_block and _matches(e, descriptor)]

    async def get_balance(self, address: Address, at_block: int) -> Optional[int]:
        self.balance_calls.append((address, at_block))
        if address in self.balance_delays:
            await asyncio.sleep(self.balance_delays[address])
        return self.balances.get(address)


class DuplicatingKeyValueStore(InMemoryKeyValueStore):
    """SSCAN that repeats the previous page's last member, as Redis may."""

    async def sscan(self, name: str, cursor: int = 0, count: int = 1000) -> tuple[int, list[str]]:
        nxt, page = await super().sscan(name, cursor, count)
        if cursor > 0:
            members = list(self.sets.get(name, {}))
            page = [members[cursor - 1], *page]
        return nxt, page


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def kv() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def store(kv: InMemoryKeyValueStore) -> StateStore:
    return StateStore(kv, NAMESPACE)
