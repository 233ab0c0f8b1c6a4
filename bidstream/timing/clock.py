"""
Wall-clock source for countdowns.

Auction end times come from the server, so everything here works in
absolute epoch seconds. Tests swap in a clock whose sleep() advances time.
"""

import asyncio
import math
import time
from datetime import datetime, timezone
from typing import Optional, Union

TimeLike = Union[datetime, str, int, float, None]

# Epoch values above this are milliseconds (year ~2286 in seconds)
_MS_THRESHOLD = 10_000_000_000


def to_timestamp(value: TimeLike) -> Optional[float]:
    """
    Normalize an end time to epoch seconds.

    Accepts datetimes (naive = UTC), ISO-8601 strings (a trailing 'Z' is
    allowed), epoch seconds or epoch milliseconds. None stays None.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return to_timestamp(datetime.fromisoformat(text))
    ts = float(value)
    return ts / 1000.0 if ts > _MS_THRESHOLD else ts


class Clock:
    """Supplies 'now' and remaining whole seconds to a target instant."""

    def now(self) -> float:
        return time.time()

    def remaining(self, target: Optional[float]) -> int:
        """max(0, target - now), floored to whole seconds. No target = 0."""
        if target is None:
            return 0
        return max(0, math.floor(target - self.now()))

    async def sleep(self, seconds: float):
        await asyncio.sleep(seconds)
