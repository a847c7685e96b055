from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..config import DEFAULT_CHUNK_SIZE, DEFAULT_FILTER_CAPACITY, DEFAULT_POLL_INTERVAL_S
from ..domain.models import Approval, BlockRange, ChunkResult, CycleResult, Event, event_addresses
from ..domain.value_types import Address, normalize_address
from ..errors import ChainIdMismatchError, MissingBalanceError
from ..ports.progress import SyncProgress
from ..ports.rpc import LedgerClient
from .batching import build_approval_filter, build_transfer_filters
from .planning import plan_chunks, sync_window
from .range_query import RangeQueryEngine
from .state_store import StateStore
from .utils import gather_or_cancel

logger = logging.getLogger(__name__)


class SyncLoop:
    """
    Polls the chain and folds approvals, transfers, deposits and withdrawals of
    the token into the StateStore.

    Lifecycle: construct, `await init()`, then `await run_forever()` (or call
    `run_cycle()` directly). Nothing runs until asked.
    """

    def __init__(
        self,
        *,
        ledger: LedgerClient,
        store: StateStore,
        engine: RangeQueryEngine,
        settlement_address: str,
        network_id: int,
        deploy_block: int = 0,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        filter_capacity: int = DEFAULT_FILTER_CAPACITY,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        progress: Optional[SyncProgress] = None,
    ) -> None:
        self.ledger = ledger
        self.store = store
        self.engine = engine
        self.settlement_address = normalize_address(settlement_address)
        self.network_id = network_id
        self.deploy_block = deploy_block
        self.chunk_size = chunk_size
        self.filter_capacity = filter_capacity
        self.poll_interval_s = poll_interval_s
        self.progress = progress

    async def init(self) -> None:
        chain_id = await self.ledger.get_chain_id()
        if chain_id != self.network_id:
            raise ChainIdMismatchError(self.network_id, chain_id)
        checkpoint = await self.store.get_checkpoint()
        logger.info("Connected to chain %d; synced up to block %d", chain_id, checkpoint)

    async def run_forever(self) -> None:
        while True:
            try:
                await self.run_cycle()
            except Exception:
                # the unprocessed range is retried next cycle from the last checkpoint
                logger.exception("Sync cycle aborted")
            await asyncio.sleep(self.poll_interval_s)

    async def run_cycle(self) -> Optional[CycleResult]:
        checkpoint = await self.store.get_checkpoint()
        head = await self.ledger.get_block_number()
        window = sync_window(checkpoint, head, self.deploy_block)
        if window is None:
            return None

        logger.info("Syncing blocks %d to %d", window.start, window.end)
        chunks = plan_chunks(window.start, window.end, self.chunk_size)
        results: list[ChunkResult] = []
        if self.progress is not None:
            self.progress.start(window.span(), f"{window.start:,}-{window.end:,}")
        try:
            for chunk in chunks:
                results.append(await self.process_chunk(chunk))
                if self.progress is not None:
                    self.progress.advance(chunk.span())
        finally:
            if self.progress is not None:
                self.progress.stop()

        res = CycleResult(
            range=window,
            head=head,
            chunks=len(results),
            approvals=sum(r.approvals for r in results),
            active=sum(r.active for r in results),
            balances_refreshed=sum(r.balances_refreshed for r in results),
        )
        logger.info("Synced to block %d: %d approvals, %d balance refreshes",
                    window.end, res.approvals, res.balances_refreshed)
        return res

    async def process_chunk(self, chunk: BlockRange) -> ChunkResult:
        """Fold one chunk into the store and commit it as the new checkpoint."""
        approvals = await self.engine.get_events(
            [build_approval_filter(self.settlement_address)], chunk.start, chunk.end)
        applied = 0
        for ev in approvals:
            if isinstance(ev, Approval) and await self.store.set_approval(ev.owner, ev.value, ev.block_number):
                applied += 1

        approvers = await self.store.get_approver_set()
        filters = build_transfer_filters(approvers, self.filter_capacity)
        moves: list[Event] = []
        for descriptors in filters.values():
            moves.extend(await self.engine.get_events(descriptors, chunk.start, chunk.end))

        active: set[Address] = set()
        for ev in [*moves, *approvals]:
            active.update(event_addresses(ev))

        refreshed = await self._refresh_balances(active)
        await self.store.set_checkpoint(chunk.end)
        return ChunkResult(range=chunk, approvals=len(approvals), approvals_applied=applied,
                           transfers=len(moves), active=len(active), balances_refreshed=refreshed)

    async def _refresh_balances(self, addresses: set[Address]) -> int:
        """Store the balance at the current head for every address not already refreshed there."""
        if not addresses:
            return 0
        cur_head = await self.ledger.get_block_number()

        async def refresh(addr: Address) -> bool:
            rec = await self.store.get_balance_record(addr)
            if rec.block >= cur_head:
                return False
            bal = await self.ledger.get_balance(addr, cur_head)
            if bal is None:
                raise MissingBalanceError(addr, cur_head)
            return await self.store.set_balance(addr, bal, cur_head)

        done = await gather_or_cancel(*(refresh(a) for a in sorted(addresses)))
        return sum(1 for d in done if d)
