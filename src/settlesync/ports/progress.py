from __future__ import annotations
from typing import Protocol

class SyncProgress(Protocol):
    """Port for reporting how far a cycle has got through its block range."""

    def start(self, total_blocks: int, description: str) -> None: ...

    def advance(self, blocks: int) -> None: ...

    def stop(self) -> None: ...
