from __future__ import annotations
from typing import Optional

from rich.console import Console
from rich.progress import (
    Progress, BarColumn, TextColumn, TimeElapsedColumn,
    TimeRemainingColumn, MofNCompleteColumn, SpinnerColumn, TaskID
)

from ..ports.progress import SyncProgress


class RichSyncProgress(SyncProgress):
    """Block-range progress bar, one task per sync cycle."""
    def __init__(self, console: Optional[Console] = None) -> None:
        self.progress = Progress(SpinnerColumn(),
                                 TextColumn("[bold]syncing blocks[/]"),
                                 BarColumn(),
                                 MofNCompleteColumn(),
                                 TextColumn("•"),
                                 TimeElapsedColumn(),
                                 TextColumn("→"),
                                 TimeRemainingColumn(),
                                 TextColumn(" • {task.description}"),
                                 console=console,
                                 transient=True,
                                 expand=True,
                                 )
        self._task: Optional[TaskID] = None

    def start(self, total_blocks: int, description: str) -> None:
        self.progress.start()
        self._task = self.progress.add_task(description=description, total=total_blocks)

    def advance(self, blocks: int) -> None:
        if self._task is not None:
            self.progress.advance(self._task, blocks)

    def stop(self) -> None:
        if self._task is not None:
            self.progress.remove_task(self._task)
            self._task = None
        self.progress.stop()
