"""Chunked, throttled file transfer.

One chunked-copy algorithm serves both call conventions:

- copy_stream(): blocking reads/writes, throttles with time.sleep
- copy_stream_async(): reads/writes run in worker threads, throttles with
  asyncio.sleep so the event loop is never blocked

Both share _TransferMeter, which owns the per-chunk bookkeeping (counters,
progress event, throttle delay), so throttling and progress semantics are
written once.
"""

import asyncio
import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from ftpsync.rate_limiter import throttle, throttle_async

from .exceptions import LocalIOError, RemoteIOError, TransferCancelledError, TransferError

if TYPE_CHECKING:
    from .session_manager import TransferSession

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192


class TransferDirection(Enum):
    """Which way the bytes flow."""

    UPLOAD = "upload"
    DOWNLOAD = "download"


@dataclass
class TransferTask:
    """One upload or download in flight."""

    local_path: Path
    remote_path: str
    direction: TransferDirection
    bytes_transferred: int = 0
    started_at: float | None = None  # time.monotonic()
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)
    session: "TransferSession | None" = field(default=None, repr=False)

    def __post_init__(self):
        self.local_path = Path(self.local_path)

    def cancel(self) -> None:
        """Abort the transfer at the next chunk boundary."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


@dataclass
class TransferProgress:
    """Progress event emitted after every chunk."""

    chunk_bytes: int
    bytes_transferred: int
    task: TransferTask
    started_at: float

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.started_at


ProgressCallback = Callable[[TransferProgress], None]


class _TransferMeter:
    """Per-chunk bookkeeping shared by the blocking and suspending loops."""

    def __init__(self, task: TransferTask, limit_kbps: int, on_progress: ProgressCallback | None):
        self.task = task
        self.limit_kbps = limit_kbps
        self.on_progress = on_progress

        task.bytes_transferred = 0
        task.started_at = time.monotonic()

    def check_cancelled(self) -> None:
        if self.task.cancelled:
            raise TransferCancelledError(
                f"{self.task.direction.value.capitalize()} cancelled: {self.task.remote_path}"
            )

    def record(self, chunk_bytes: int) -> None:
        """Update counters and emit the progress event for one chunk."""
        self.task.bytes_transferred += chunk_bytes
        if self.on_progress is not None:
            self.on_progress(
                TransferProgress(
                    chunk_bytes=chunk_bytes,
                    bytes_transferred=self.task.bytes_transferred,
                    task=self.task,
                    started_at=self.task.started_at,
                )
            )

    def throttle(self) -> None:
        throttle(self.limit_kbps, self.task.bytes_transferred, self.task.started_at)

    async def throttle_async(self) -> None:
        await throttle_async(self.limit_kbps, self.task.bytes_transferred, self.task.started_at)


@contextmanager
def local_io(path: Path) -> Iterator[None]:
    """Translate local filesystem errors into LocalIOError."""
    try:
        yield
    except OSError as e:
        raise LocalIOError(f"Local I/O failed for {path}: {e}") from e


@contextmanager
def remote_io(path: str) -> Iterator[None]:
    """Translate remote stream errors into RemoteIOError."""
    try:
        yield
    except TransferError:
        raise
    except (OSError, EOFError) as e:
        raise RemoteIOError(f"Remote I/O failed for {path}: {e}") from e


def _endpoints(task: TransferTask, local: BinaryIO, remote: BinaryIO):
    """Return (source, sink, source_io, sink_io) for the task's direction."""
    if task.direction is TransferDirection.UPLOAD:
        return local, remote, local_io(task.local_path), remote_io(task.remote_path)
    return remote, local, remote_io(task.remote_path), local_io(task.local_path)


def copy_stream(
    task: TransferTask,
    local: BinaryIO,
    remote: BinaryIO,
    limit_kbps: int = 0,
    on_progress: ProgressCallback | None = None,
) -> int:
    """Copy bytes between an open local file and an open remote stream.

    Args:
        task: Transfer being executed (counters updated in place)
        local: Open local file handle
        remote: Open remote stream handle
        limit_kbps: Rate ceiling for the task's direction (<= 0 unlimited)
        on_progress: Called after every chunk

    Returns:
        Total bytes copied

    Raises:
        LocalIOError: Local read/write failed
        RemoteIOError: Remote read/write failed
        TransferCancelledError: task.cancel() was called
    """
    meter = _TransferMeter(task, limit_kbps, on_progress)

    while True:
        meter.check_cancelled()
        source, sink, source_io, sink_io = _endpoints(task, local, remote)

        with source_io:
            chunk = source.read(CHUNK_SIZE)
        if not chunk:
            break

        with sink_io:
            sink.write(chunk)

        meter.record(len(chunk))
        meter.throttle()

    return task.bytes_transferred


async def copy_stream_async(
    task: TransferTask,
    local: BinaryIO,
    remote: BinaryIO,
    limit_kbps: int = 0,
    on_progress: ProgressCallback | None = None,
) -> int:
    """Suspending variant of copy_stream().

    Reads and writes run in worker threads; throttling awaits instead of
    sleeping. Cancelling the awaiting task raises asyncio.CancelledError at the
    next suspension point and the caller's context managers close the streams.
    """
    meter = _TransferMeter(task, limit_kbps, on_progress)

    while True:
        meter.check_cancelled()
        source, sink, source_io, sink_io = _endpoints(task, local, remote)

        with source_io:
            chunk = await asyncio.to_thread(source.read, CHUNK_SIZE)
        if not chunk:
            break

        with sink_io:
            await asyncio.to_thread(sink.write, chunk)

        meter.record(len(chunk))
        await meter.throttle_async()

    return task.bytes_transferred


def open_local(task: TransferTask) -> BinaryIO:
    """Open the task's local file for its direction.

    Downloads create parent directories and truncate any existing file.
    """
    with local_io(task.local_path):
        if task.direction is TransferDirection.UPLOAD:
            return open(task.local_path, "rb")
        task.local_path.parent.mkdir(parents=True, exist_ok=True)
        return open(task.local_path, "wb")


__all__ = [
    "CHUNK_SIZE",
    "ProgressCallback",
    "TransferDirection",
    "TransferProgress",
    "TransferTask",
    "copy_stream",
    "copy_stream_async",
    "open_local",
]
