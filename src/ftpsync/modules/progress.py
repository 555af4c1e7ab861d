"""
Transfer progress display.

Renders TransferProgress events from a TransferSession as a rich progress
bar. One display can follow several transfers; each task gets its own bar.

Security Requirements:
- No credential exposure in output
- Thread-safe operations (progress events arrive from worker threads)
"""

import logging
import threading

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
    TransferSpeedColumn,
)

from ftpsync.modules.file_transfer.file_transfer import TransferProgress, TransferTask

logger = logging.getLogger(__name__)


class TransferProgressDisplay:
    """
    Rich progress bars for uploads and downloads.

    Example:
        >>> with TransferProgressDisplay() as display:
        ...     display.add(task, total=local_size)
        ...     session.progress_callback = display.on_progress
        ...     session.upload(task)
    """

    def __init__(self, console: Console | None = None, transient: bool = False):
        """
        Initialize progress display.

        Args:
            console: Console to render to (default: new stderr console)
            transient: Remove bars when the display stops
        """
        self.console = console or Console(stderr=True)
        self.progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeElapsedColumn(),
            console=self.console,
            transient=transient,
        )
        self._task_ids: dict[int, TaskID] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> "TransferProgressDisplay":
        self.progress.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.progress.stop()

    def add(self, task: TransferTask, total: int | None = None) -> TaskID:
        """Register a transfer. total=None shows an indeterminate bar."""
        with self._lock:
            task_id = self.progress.add_task(
                f"{task.direction.value} {task.remote_path}", total=total
            )
            self._task_ids[id(task)] = task_id
            return task_id

    def on_progress(self, event: TransferProgress) -> None:
        """Progress callback for TransferSession."""
        with self._lock:
            task_id = self._task_ids.get(id(event.task))
            if task_id is None:
                task_id = self.progress.add_task(
                    f"{event.task.direction.value} {event.task.remote_path}", total=None
                )
                self._task_ids[id(event.task)] = task_id
        self.progress.update(task_id, completed=event.bytes_transferred)

    def finish(self, task: TransferTask) -> None:
        """Mark a transfer complete, filling its bar."""
        with self._lock:
            task_id = self._task_ids.pop(id(task), None)
        if task_id is None:
            return
        self.progress.update(
            task_id, total=task.bytes_transferred, completed=task.bytes_transferred
        )
