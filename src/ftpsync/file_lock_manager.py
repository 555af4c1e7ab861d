"""Cross-platform advisory file locking for shared state files.

The trusted-certificate list is process-wide shared state: several ftpsync
processes (one per sync worker) may accept a certificate at the same moment.
Writers take an exclusive lock on a sidecar ``.lock`` file so appends and
rewrites are serialized across processes.

Public API:
    acquire_file_lock: Context manager for acquiring an exclusive lock
    LockTimeoutError: Raised when the lock cannot be acquired within timeout

Example:
    >>> from ftpsync.file_lock_manager import acquire_file_lock
    >>> with acquire_file_lock(trust_file, timeout=5.0, operation="trust update"):
    ...     with open(trust_file, "a") as f:
    ...         f.write(fingerprint + "\\n")
"""

import logging
import platform
import time
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

_system = platform.system()
if TYPE_CHECKING or _system == "Windows":
    import msvcrt  # type: ignore[import-not-found]
if TYPE_CHECKING or _system != "Windows":
    import fcntl  # type: ignore[import-not-found]

logger = logging.getLogger(__name__)

__all__ = ["LockTimeoutError", "acquire_file_lock", "lock_path_for"]


class LockTimeoutError(Exception):
    """Raised when file lock cannot be acquired within timeout period."""


def lock_path_for(file_path: Path) -> Path:
    """Sidecar lock file used to guard file_path."""
    return file_path.with_name(file_path.name + ".lock")


@contextmanager
def acquire_file_lock(
    file_path: Path,
    timeout: float = 5.0,
    operation: str = "file operation",
) -> Generator[None, None, None]:
    """Acquire an exclusive lock guarding file_path, with exponential backoff.

    The lock is taken on a sidecar file (``<name>.lock``), so file_path itself
    may be created, appended or atomically replaced while the lock is held.

    Args:
        file_path: Path of the file being protected
        timeout: Maximum seconds to wait for the lock (default: 5.0)
        operation: Description of operation (used in error messages)

    Raises:
        LockTimeoutError: Lock not acquired within timeout
    """
    lock_path = lock_path_for(file_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    with open(lock_path, "a") as handle:
        _acquire_with_backoff(handle, file_path, timeout, operation)
        try:
            yield
        finally:
            _release(handle)


def _acquire_with_backoff(handle: TextIO, file_path: Path, timeout: float, operation: str) -> None:
    """Retry the non-blocking lock with delays 0.05s -> 0.1s -> ... capped at 1s."""
    start_time = time.monotonic()
    delay = 0.05

    while True:
        try:
            _try_lock(handle)
            return
        except (BlockingIOError, PermissionError):
            elapsed = time.monotonic() - start_time
            if elapsed >= timeout:
                raise LockTimeoutError(
                    f"Failed to acquire file lock for {operation} after {timeout} seconds. "
                    f"File: {file_path}. Another process may be holding the lock."
                ) from None

            time.sleep(min(delay, timeout - elapsed))
            delay = min(delay * 2, 1.0)


def _try_lock(handle: TextIO) -> None:
    if _system == "Windows":
        msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)  # type: ignore[attr-defined]
    else:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)


def _release(handle: TextIO) -> None:
    try:
        if _system == "Windows":
            msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)  # type: ignore[attr-defined]
        else:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    except OSError as e:
        logger.debug(f"Error during lock cleanup: {e}")
