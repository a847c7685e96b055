from __future__ import annotations
from ..domain.models import BlockRange

def plan_chunks(start_block: int, end_block: int, step: int) -> list[BlockRange]:
    """Split [start_block, end_block] into consecutive, non-overlapping chunks of at most `step` blocks."""
    if step < 1:
        raise ValueError(f"step must be positive, got {step}")
    out: list[BlockRange] = []
    b = start_block
    while b <= end_block:
        fb, tb = b, min(end_block, b + step - 1)
        out.append(BlockRange(fb, tb))
        b = tb + 1
    return out

def sync_window(checkpoint: int, head: int, floor_block: int) -> BlockRange | None:
    """
    Blocks still to process: from just past the checkpoint (never below the
    settlement contract's deploy block) up to head - 1. None if caught up.
    """
    start = max(checkpoint + 1, floor_block)
    end = head - 1
    if start > end:
        return None
    return BlockRange(start, end)
