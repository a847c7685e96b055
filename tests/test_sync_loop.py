from __future__ import annotations

import asyncio

import pytest

from conftest import NAMESPACE, SETTLEMENT, FakeLedger, addr
from settlesync.adapters.memory_kv import InMemoryKeyValueStore
from settlesync.application.planning import plan_chunks, sync_window
from settlesync.application.range_query import RangeQueryEngine
from settlesync.application.state_store import StateStore
from settlesync.application.sync_loop import SyncLoop
from settlesync.domain.models import Approval, BlockRange, Deposit, Transfer, Withdrawal
from settlesync.domain.value_types import UNLIMITED
from settlesync.errors import ChainIdMismatchError, MissingBalanceError

A, B, C, D = addr(0xA), addr(0xB), addr(0xC), addr(0xD)


class RecordingProgress:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def start(self, total_blocks: int, description: str) -> None:
        self.calls.append(("start", total_blocks))

    def advance(self, blocks: int) -> None:
        self.calls.append(("advance", blocks))

    def stop(self) -> None:
        self.calls.append(("stop",))


def _loop(ledger: FakeLedger, store: StateStore, **kw) -> SyncLoop:
    return SyncLoop(
        ledger=ledger, store=store, engine=RangeQueryEngine(ledger),
        settlement_address=SETTLEMENT, network_id=1, **kw,
    )


def test_plan_chunks_cover_range_without_overlap() -> None:
    chunks = plan_chunks(101, 4500, 2000)
    assert chunks == [BlockRange(101, 2100), BlockRange(2101, 4100), BlockRange(4101, 4500)]
    assert plan_chunks(5, 4, 10) == []


def test_sync_window() -> None:
    assert sync_window(100, 106, 0) == BlockRange(101, 105)
    assert sync_window(0, 1000, 500) == BlockRange(500, 999)
    assert sync_window(105, 106, 0) is None
    assert sync_window(0, 10, 50) is None


@pytest.mark.asyncio
async def test_init_rejects_wrong_chain(store: StateStore) -> None:
    ledger = FakeLedger(head=10, chain_id=5)
    with pytest.raises(ChainIdMismatchError):
        await _loop(ledger, store).init()


@pytest.mark.asyncio
async def test_unlimited_approval_then_transfer(store: StateStore) -> None:
    ledger = FakeLedger(head=106)
    ledger.events = [
        Approval(owner=A, spender=SETTLEMENT, value=2**256 - 1, block_number=102),
        Transfer(src=A, dst=B, value=5, block_number=104),
    ]
    ledger.balances = {A: 95, B: 5}
    await store.set_checkpoint(100)
    loop = _loop(ledger, store)
    await loop.init()

    res = await loop.run_cycle()

    assert res is not None and res.range == BlockRange(101, 105)
    approval = await store.get_approval_record(A)
    assert (approval.value, approval.block) == (UNLIMITED, 102)
    assert (await store.get_balance_record(A)).value == 95
    assert (await store.get_balance_record(B)).value == 5
    assert (await store.get_balance_record(A)).block == 106
    assert (await store.get_balance_record(B)).block == 106
    assert await store.get_checkpoint() == 105
    assert await store.get_approver_set() == {A}


@pytest.mark.asyncio
async def test_approvals_for_other_spenders_ignored(store: StateStore) -> None:
    ledger = FakeLedger(head=50)
    ledger.events = [Approval(owner=A, spender=addr(0x5E), value=1, block_number=10)]
    await _loop(ledger, store).run_cycle()
    assert await store.get_approver_set() == set()
    assert ledger.balance_calls == []


@pytest.mark.asyncio
async def test_deposit_and_withdrawal_mark_approvers_active(store: StateStore) -> None:
    await store.set_approval(C, 1, 5)
    await store.set_approval(D, 1, 5)
    ledger = FakeLedger(head=40)
    ledger.events = [
        Deposit(dst=C, value=3, block_number=20),
        Withdrawal(src=D, value=2, block_number=21),
        Deposit(dst=B, value=3, block_number=22),    # not an approver
    ]
    ledger.balances = {C: 3, D: 0}
    await store.set_checkpoint(10)

    res = await _loop(ledger, store).run_cycle()

    assert res is not None and res.balances_refreshed == 2
    assert {a for a, _ in ledger.balance_calls} == {C, D}
    assert (await store.get_balance_record(D)).value == 0


@pytest.mark.asyncio
async def test_nothing_to_do(store: StateStore) -> None:
    ledger = FakeLedger(head=101)
    await store.set_checkpoint(100)
    assert await _loop(ledger, store).run_cycle() is None
    assert ledger.queries == []


@pytest.mark.asyncio
async def test_deploy_block_is_the_floor(store: StateStore) -> None:
    ledger = FakeLedger(head=5000)
    res = await _loop(ledger, store, deploy_block=4000).run_cycle()
    assert res is not None and res.range == BlockRange(4000, 4999)
    assert min(a for _, a, _ in ledger.queries) == 4000


@pytest.mark.asyncio
async def test_chunks_processed_in_order_and_checkpointed(store: StateStore) -> None:
    ledger = FakeLedger(head=4501)
    await store.set_checkpoint(100)
    progress = RecordingProgress()

    res = await _loop(ledger, store, chunk_size=2000, progress=progress).run_cycle()

    assert res is not None and res.chunks == 3
    approval_ranges = [(a, b) for kind, a, b in ledger.queries if kind == "Approval"]
    assert approval_ranges == [(101, 2100), (2101, 4100), (4101, 4500)]
    assert await store.get_checkpoint() == 4500
    assert progress.calls == [("start", 4400), ("advance", 2000), ("advance", 2000), ("advance", 400), ("stop",)]


@pytest.mark.asyncio
async def test_balance_refreshed_once_per_head(store: StateStore) -> None:
    ledger = FakeLedger(head=4001)
    ledger.events = [
        Approval(owner=A, spender=SETTLEMENT, value=1, block_number=10),
        Transfer(src=A, dst=B, value=1, block_number=2500),
    ]
    ledger.balances = {A: 1, B: 1}

    await _loop(ledger, store, chunk_size=2000).run_cycle()

    # A is active in both chunks but the head did not move
    assert ledger.balance_calls.count((A, 4001)) == 1


@pytest.mark.asyncio
async def test_missing_balance_aborts_before_checkpoint(store: StateStore) -> None:
    ledger = FakeLedger(head=4001)
    ledger.events = [
        Approval(owner=A, spender=SETTLEMENT, value=1, block_number=10),
        Transfer(src=A, dst=B, value=1, block_number=2500),
    ]
    ledger.balances = {A: 1}    # B has no value

    with pytest.raises(MissingBalanceError):
        await _loop(ledger, store, chunk_size=2000).run_cycle()

    # first chunk committed, failing chunk not
    assert await store.get_checkpoint() == 2000

    ledger.balances[B] = 1
    ledger.head = 4002
    await _loop(ledger, store, chunk_size=2000).run_cycle()
    assert await store.get_checkpoint() == 4001
    assert (await store.get_balance_record(B)).block == 4002


@pytest.mark.asyncio
async def test_missing_balance_cancels_pending_refreshes(store: StateStore) -> None:
    ledger = FakeLedger(head=101)
    ledger.events = [
        Approval(owner=A, spender=SETTLEMENT, value=1, block_number=10),
        Transfer(src=A, dst=B, value=1, block_number=20),
    ]
    ledger.balances = {B: 5}    # A has no value
    ledger.balance_delays = {B: 0.05}
    before = asyncio.all_tasks()

    with pytest.raises(MissingBalanceError):
        await _loop(ledger, store).run_cycle()

    await asyncio.sleep(0.1)
    assert (await store.get_balance_record(B)).block == -1
    assert await store.get_checkpoint() == 0
    assert asyncio.all_tasks() - before == set()


@pytest.mark.asyncio
async def test_rerunning_a_cycle_converges(kv: InMemoryKeyValueStore, store: StateStore) -> None:
    ledger = FakeLedger(head=300)
    ledger.events = [
        Approval(owner=A, spender=SETTLEMENT, value=9, block_number=150),
        Approval(owner=A, spender=SETTLEMENT, value=4, block_number=120),
        Transfer(src=B, dst=A, value=2, block_number=200),
    ]
    ledger.balances = {A: 2, B: 0}
    await _loop(ledger, store).run_cycle()
    snapshot = {k: dict(v) for k, v in kv.hashes.items()}

    await store.set_checkpoint(0)
    await _loop(ledger, store).run_cycle()

    assert kv.hashes == snapshot
    assert (await store.get_approval_record(A)).value == 9


@pytest.mark.asyncio
async def test_checkpoint_advances_and_stays_below_head(store: StateStore) -> None:
    ledger = FakeLedger(head=1000)
    loop = _loop(ledger, store)
    for head in (1000, 1003, 2500):
        ledger.head = head
        before = await store.get_checkpoint()
        await loop.run_cycle()
        after = await store.get_checkpoint()
        assert before < after <= head


@pytest.mark.asyncio
async def test_run_forever_survives_failed_cycles(store: StateStore) -> None:
    ledger = FakeLedger(head=100)
    calls = 0
    orig = ledger.get_block_number

    async def flaky() -> int:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("connection reset")
        return await orig()

    ledger.get_block_number = flaky  # type: ignore[method-assign]
    loop = _loop(ledger, store, poll_interval_s=0.001)

    task = asyncio.create_task(loop.run_forever())
    for _ in range(200):
        await asyncio.sleep(0.005)
        if await store.get_checkpoint() == 99:
            break
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert await store.get_checkpoint() == 99
