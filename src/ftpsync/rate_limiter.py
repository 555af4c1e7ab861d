"""Bandwidth throttling for chunked transfers.

This module decides how long a transfer should pause after each chunk so that
its average rate stays under a configured ceiling (in kB/s).

Design Philosophy:
- Ruthless simplicity: One pure function computes the delay, two thin wrappers sleep
- Stateless: Callers pass bytes-so-far and start time, so concurrent transfers
  never share throttling state
- Feedback controller, not a leaky bucket: the rate is re-measured after every
  chunk. Bursts early in a transfer are not penalized retroactively beyond the
  1-second floor applied to elapsed time.

Usage:
    from ftpsync.rate_limiter import throttle

    started_at = time.monotonic()
    transferred = 0
    while chunk := source.read(8192):
        sink.write(chunk)
        transferred += len(chunk)
        throttle(limit_kbps, transferred, started_at)
"""

import asyncio
import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)

# Largest delay a single throttle call may impose (int32 max, in milliseconds)
MAX_THROTTLE_DELAY_MS = 2**31 - 1


def compute_throttle_delay(
    limit_kbps: int,
    transferred: int,
    started_at: float,
    now: float | None = None,
) -> float:
    """Compute how long to pause a transfer to respect a rate ceiling.

    Args:
        limit_kbps: Rate ceiling in kB/s (1 kB = 1000 bytes). <= 0 means unlimited.
        transferred: Bytes moved so far in this transfer
        started_at: time.monotonic() value when the transfer started
        now: Current time.monotonic() value (default: now)

    Returns:
        Delay in seconds (0.0 when no throttling is needed)

    Example:
        >>> compute_throttle_delay(100, 500_000, started_at=0.0, now=2.0)
        5.0
    """
    if limit_kbps <= 0:
        return 0.0

    if now is None:
        now = time.monotonic()

    elapsed = max(now - started_at, 0.0)

    # 1-second floor: within the first second the raw byte count is the rate
    rate = transferred if elapsed < 1 else transferred / elapsed

    if rate <= 1000 * limit_kbps:
        return 0.0

    # bytes / (kB/s) == milliseconds the transfer should have taken at the limit
    elapsed_ms_component = int(elapsed * 1000) % 1000
    delay_ms = transferred / limit_kbps - elapsed_ms_component
    delay_ms = min(max(delay_ms, 0.0), MAX_THROTTLE_DELAY_MS)

    return delay_ms / 1000


def throttle(
    limit_kbps: int,
    transferred: int,
    started_at: float,
    sleep: Callable[[float], None] | None = None,
) -> float:
    """Block the calling thread for the computed throttle delay.

    Args:
        limit_kbps: Rate ceiling in kB/s. <= 0 means unlimited.
        transferred: Bytes moved so far
        started_at: time.monotonic() value when the transfer started
        sleep: Sleep function (default: time.sleep)

    Returns:
        Seconds slept
    """
    delay = compute_throttle_delay(limit_kbps, transferred, started_at)
    if delay > 0:
        logger.debug(f"Throttling transfer for {delay:.3f}s ({transferred} bytes, {limit_kbps} kB/s)")
        (sleep or time.sleep)(delay)
    return delay


async def throttle_async(limit_kbps: int, transferred: int, started_at: float) -> float:
    """Suspend the calling task for the computed throttle delay.

    Same semantics as throttle(), but yields to the event loop instead of
    blocking a thread.
    """
    delay = compute_throttle_delay(limit_kbps, transferred, started_at)
    if delay > 0:
        logger.debug(f"Throttling transfer for {delay:.3f}s ({transferred} bytes, {limit_kbps} kB/s)")
        await asyncio.sleep(delay)
    return delay


__all__ = [
    "MAX_THROTTLE_DELAY_MS",
    "compute_throttle_delay",
    "throttle",
    "throttle_async",
]
