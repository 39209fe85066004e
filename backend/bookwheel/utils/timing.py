"""Clock helpers shared by the spin animation, recency weighting and debug timing."""
import time
from contextlib import contextmanager
from typing import Optional, Callable
import logging

logger = logging.getLogger(__name__)

MS_PER_DAY = 1000 * 60 * 60 * 24


def now_ms() -> float:
    """Return current time in milliseconds using the monotonic high-resolution timer."""
    return time.perf_counter() * 1000


def epoch_ms() -> int:
    """Return wall-clock time in milliseconds since the epoch (catalog timestamps use this)."""
    return int(time.time() * 1000)


def days_since(timestamp_ms: float, reference_ms: Optional[float] = None) -> float:
    """
    Days elapsed between an epoch-millis timestamp and the reference time.

    Timestamps in the future count as zero days old.
    """
    if reference_ms is None:
        reference_ms = epoch_ms()
    return max(0.0, (reference_ms - timestamp_ms) / MS_PER_DAY)


@contextmanager
def time_operation(label: str, log_fn: Optional[Callable[..., None]] = None, min_ms: float = 0.0):
    """
    Log how long the wrapped block took, e.g. a full pool resample.

    Only durations >= min_ms are logged; log_fn defaults to logger.debug.
    """
    log = log_fn or logger.debug
    start = now_ms()
    try:
        yield
    finally:
        elapsed = now_ms() - start
        if elapsed >= min_ms:
            log("%s took %.2fms", label, elapsed)
