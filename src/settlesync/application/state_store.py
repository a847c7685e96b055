from __future__ import annotations

import logging

from ..domain.amounts import decode_amount, encode_amount
from ..domain.models import ApproverRecord, ValueRecord
from ..domain.value_types import Address, address_key, normalize_address
from ..ports.storage import KeyValueStore

logger = logging.getLogger(__name__)

SCAN_PAGE_SIZE = 1000

APPROVE_VALUE = "approveValue"
APPROVE_BLOCK = "approveBlock"
BALANCE_VALUE = "balanceValue"
BALANCE_BLOCK = "balanceBlock"


def _block(raw: str | None) -> int:
    return int(raw) if raw else -1


class StateStore:
    """
    Durable sync state for one settlement contract.

    Holds the checkpoint, per-owner approval/balance records and the set of
    approvers. The approver set is mirrored in memory; the mirror is trusted
    only while its size matches the durable set's cardinality and is rebuilt
    from a full scan otherwise. Single writer: two StateStore instances on the
    same namespace will corrupt each other's cache.
    """

    def __init__(self, kv: KeyValueStore, namespace: str) -> None:
        self.kv = kv
        self.namespace = namespace
        self._approvers: set[Address] = set()

    # ---------- keys ----------------------------------------------------------

    @property
    def checkpoint_key(self) -> str:
        return f"{self.namespace}:syncedBlock"

    @property
    def approvers_key(self) -> str:
        return f"{self.namespace}:approvers"

    def owner_key(self, owner: str) -> str:
        return f"{self.namespace}:{address_key(owner)}"

    # ---------- checkpoint ----------------------------------------------------

    async def get_checkpoint(self) -> int:
        raw = await self.kv.get(self.checkpoint_key)
        return int(raw) if raw else 0

    async def set_checkpoint(self, block_number: int) -> None:
        await self.kv.set(self.checkpoint_key, str(int(block_number)))

    # ---------- per-owner records ---------------------------------------------

    async def get_approval_record(self, owner: str) -> ValueRecord:
        h = await self.kv.hgetall(self.owner_key(owner))
        return ValueRecord(decode_amount(h.get(APPROVE_VALUE)), _block(h.get(APPROVE_BLOCK)))

    async def get_balance_record(self, owner: str) -> ValueRecord:
        h = await self.kv.hgetall(self.owner_key(owner))
        return ValueRecord(decode_amount(h.get(BALANCE_VALUE)), _block(h.get(BALANCE_BLOCK)))

    async def get_record(self, owner: str) -> ApproverRecord:
        h = await self.kv.hgetall(self.owner_key(owner))
        return ApproverRecord(
            address=normalize_address(owner),
            approval=ValueRecord(decode_amount(h.get(APPROVE_VALUE)), _block(h.get(APPROVE_BLOCK))),
            balance=ValueRecord(decode_amount(h.get(BALANCE_VALUE)), _block(h.get(BALANCE_BLOCK))),
        )

    async def set_approval(self, owner: str, value: int, block_number: int) -> bool:
        """
        Record `owner`'s approval unless a same-or-later one is already stored.
        Returns True if the record was written.
        """
        addr = normalize_address(owner)
        encoded = encode_amount(value)
        current = _block(await self.kv.hget(self.owner_key(addr), APPROVE_BLOCK))
        if current >= block_number:
            return False
        # set membership first: a stored approval must always have its owner in the set
        await self.kv.sadd(self.approvers_key, addr)
        self._approvers.add(addr)
        await self.kv.hset(self.owner_key(addr), {APPROVE_VALUE: encoded, APPROVE_BLOCK: str(block_number)})
        return True

    async def set_balance(self, owner: str, value: int, block_number: int) -> bool:
        addr = normalize_address(owner)
        encoded = encode_amount(value)
        current = _block(await self.kv.hget(self.owner_key(addr), BALANCE_BLOCK))
        if current >= block_number:
            return False
        await self.kv.hset(self.owner_key(addr), {BALANCE_VALUE: encoded, BALANCE_BLOCK: str(block_number)})
        return True

    # ---------- approver set --------------------------------------------------

    async def approver_count(self) -> int:
        return await self.kv.scard(self.approvers_key)

    async def get_approver_set(self) -> set[Address]:
        """All owners that have approved the settlement contract."""
        if self._approvers:
            durable = await self.kv.scard(self.approvers_key)
            if durable == len(self._approvers):
                return set(self._approvers)
            logger.warning(
                "Approvers cache size %d does not match store size %d; rebuilding in-memory cache",
                len(self._approvers), durable,
            )
            self._approvers.clear()
        await self._rebuild_approvers()
        return set(self._approvers)

    async def _rebuild_approvers(self) -> None:
        # The set can be large, so page through it instead of fetching all
        # members at once. SSCAN may return a member more than once.
        rebuilt: set[Address] = set()
        cursor = 0
        while True:
            cursor, members = await self.kv.sscan(self.approvers_key, cursor, SCAN_PAGE_SIZE)
            rebuilt.update(Address(m) for m in members)
            if cursor == 0:
                break
        self._approvers = rebuilt
        logger.debug("Rebuilt approvers cache with %d entries", len(rebuilt))
