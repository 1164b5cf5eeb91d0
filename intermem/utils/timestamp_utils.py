"""
Timestamp utilities for consistent time handling across the system.

Graph timestamps are integer epoch milliseconds. Values handed out by
next_timestamp_ms() are strictly increasing within one process.
"""

import threading
import time
from datetime import datetime, timezone
from typing import Optional

MILLIS_PER_DAY = 86_400_000

_clock_lock = threading.Lock()
_last_issued_ms = 0


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def next_timestamp_ms() -> int:
    """Issue a creation timestamp that never repeats or goes backwards in this process."""
    global _last_issued_ms
    with _clock_lock:
        candidate = now_ms()
        if candidate <= _last_issued_ms:
            candidate = _last_issued_ms + 1
        _last_issued_ms = candidate
        return candidate


def days_ago_ms(days: int, reference_ms: Optional[int] = None) -> int:
    """Cutoff for a "now minus N days" window.

    Args:
        days: Whole number of days in the window
        reference_ms: Point to count back from (defaults to now)

    Returns:
        Epoch milliseconds of the window start
    """
    if reference_ms is None:
        reference_ms = now_ms()
    return reference_ms - int(days) * MILLIS_PER_DAY


def to_iso(timestamp_ms: Optional[int] = None) -> str:
    """Convert epoch milliseconds to an ISO-8601 UTC string.

    Args:
        timestamp_ms: Epoch milliseconds (optional, uses current time if None)

    Returns:
        ISO-8601 string with timezone offset
    """
    if timestamp_ms is None:
        timestamp_ms = now_ms()
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat()
