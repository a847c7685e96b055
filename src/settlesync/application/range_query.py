from __future__ import annotations

import logging
from typing import Sequence

from ..config import DEFAULT_MAX_SPLIT_DEPTH, DEFAULT_MIN_SPLIT_SPAN
from ..domain.models import Event, FilterDescriptor
from ..errors import BisectionDepthError
from ..ports.rpc import LedgerClient
from .utils import gather_or_cancel

logger = logging.getLogger(__name__)


class RangeQueryEngine:
    """
    Fetches every event for a set of filters over an inclusive block range.

    Providers reject or time out on ranges that are too wide or too busy, so a
    failed request is split in half and both halves are retried concurrently,
    down to `min_split_span` blocks. A failure on a range narrower than that is
    re-raised unchanged; a failure that survives `max_split_depth` splits raises
    BisectionDepthError.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        *,
        min_split_span: int = DEFAULT_MIN_SPLIT_SPAN,
        max_split_depth: int = DEFAULT_MAX_SPLIT_DEPTH,
    ) -> None:
        self.ledger = ledger
        self.min_split_span = min_split_span
        self.max_split_depth = max_split_depth

    async def get_events(self, filters: Sequence[FilterDescriptor], from_block: int, to_block: int) -> list[Event]:
        if from_block > to_block:
            raise ValueError(f"from_block ({from_block}) must be <= to_block ({to_block})")
        out: list[Event] = []
        # one filter at a time keeps provider load bounded
        for f in filters:
            out.extend(await self._query(f, from_block, to_block, 0))
        return out

    async def _query(self, f: FilterDescriptor, a: int, b: int, depth: int) -> list[Event]:
        try:
            return await self.ledger.query_events(f, a, b)
        except Exception as e:
            if b - a < self.min_split_span:
                logger.warning("%s query failed on [%d, %d]: %s", f.kind, a, b, e)
                raise
            if depth >= self.max_split_depth:
                raise BisectionDepthError(a, b, depth) from e
            mid = (a + b) // 2
            logger.debug("%s query failed on [%d, %d] (%s); splitting at %d", f.kind, a, b, e, mid)
        left, right = await gather_or_cancel(
            self._query(f, a, mid, depth + 1),
            self._query(f, mid + 1, b, depth + 1),
        )
        return left + right
