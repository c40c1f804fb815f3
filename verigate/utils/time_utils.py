"""
verigate/utils/time_utils.py

Purpose: Time helpers

- Millisecond wall-clock timestamps for session records
- Retry-After rounding
- Expiry conversions for the session store TTL
"""

import math
import time
from datetime import datetime, timedelta, timezone
from typing import Optional


def now_millis() -> int:
    """
    Current wall-clock time in epoch milliseconds.
    """
    return int(time.time() * 1000)


def retry_after_seconds(retry_after: Optional[timedelta]) -> Optional[int]:
    """
    Whole seconds for a Retry-After header, rounded up.
    Unknown or non-positive durations yield None so the header is omitted.
    """
    if retry_after is None:
        return None
    seconds = retry_after.total_seconds()
    if seconds <= 0:
        return None
    return int(math.ceil(seconds))


def expiration_datetime(expiration_seconds: int) -> datetime:
    """
    Converts epoch seconds to an aware UTC datetime (used for TTL indexes).
    """
    return datetime.fromtimestamp(expiration_seconds, tz=timezone.utc)
