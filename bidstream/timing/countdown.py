"""
Per-auction countdown timers.

A Countdown ticks once per second against a server-provided end time until
the auction closes, then completes exactly once. Completion is terminal:
later target changes (e.g. a bid extending the timer after we already saw
the auction end) are ignored for that instance.
"""

import asyncio
import logging
from typing import Callable, Optional

from config.settings import TICK_INTERVAL
from bidstream.timing.clock import Clock, TimeLike, to_timestamp

logger = logging.getLogger(__name__)


def format_countdown(seconds: int) -> str:
    """HH:MM:SS, zero padded. Hours are not capped at 24."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_relative_time(end_time: TimeLike, clock: Optional[Clock] = None) -> str:
    """Short human form: '2d 3h', '1h 5m', '4m 10s', '9s' or 'Ended'."""
    clock = clock or Clock()
    target = to_timestamp(end_time)
    if target is None or target - clock.now() < 0:
        return "Ended"

    secs = int(target - clock.now())
    mins, hours, days = secs // 60, secs // 3600, secs // 86400
    if days > 0:
        return f"{days}d {hours % 24}h"
    if hours > 0:
        return f"{hours}h {mins % 60}m"
    if mins > 0:
        return f"{mins}m {secs % 60}s"
    return f"{secs}s"


class Countdown:
    """
    Ticking timer for one auction.

    Usage:
        cd = Countdown(auction['endTime'], on_complete=lambda: print("ended"))
        cd.start()                 # background ticking
        print(cd.formatted)        # '00:04:59'
        await cd.stop()

    Or consume the ticks directly:
        async for remaining in cd.ticks():
            ...
    """

    def __init__(
        self,
        end_time: TimeLike,
        on_complete: Optional[Callable[[], None]] = None,
        on_tick: Optional[Callable[[int], None]] = None,
        clock: Optional[Clock] = None,
        interval: float = TICK_INTERVAL,
    ):
        self.clock = clock or Clock()
        self.interval = interval
        self.on_complete = on_complete
        self.on_tick = on_tick

        self.target: Optional[float] = to_timestamp(end_time)
        self.created_at: float = self.clock.now()
        self.remaining: int = self.clock.remaining(self.target)
        self.tick_count: int = 0

        self._complete = False
        self._task: Optional[asyncio.Task] = None

        if self.remaining <= 0:
            self._finish()

    @property
    def is_complete(self) -> bool:
        return self._complete

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def formatted(self) -> str:
        return format_countdown(self.remaining)

    @property
    def seconds_remaining(self) -> int:
        """Seconds component of the remaining time (0-59)."""
        return self.remaining % 60

    @property
    def percent_remaining(self) -> float:
        """
        Share of the full duration still left, 0-100.

        The full duration is not stored: it is rebuilt as remaining +
        time elapsed since this countdown was created, so a countdown created
        mid-auction treats its creation time as the start.
        """
        if self.target is None:
            return 0.0
        elapsed = max(0.0, self.clock.now() - self.created_at)
        total = self.remaining + elapsed
        if total <= 0:
            return 0.0
        return max(0.0, min(100.0, self.remaining / total * 100))

    def start(self):
        """Begin ticking in the background (no-op once complete)."""
        if self._complete or self.is_running:
            return
        self._task = asyncio.ensure_future(self._run())

    async def stop(self):
        """Cancel the tick loop."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def set_target(self, end_time: TimeLike):
        """
        Point the countdown at a new end time (server extended the auction).

        The outstanding tick loop is cancelled and restarted against the new
        target. Ignored after completion.
        """
        if self._complete:
            logger.debug("Countdown already complete, target change ignored")
            return

        was_running = self.is_running
        if self._task is not None:
            self._task.cancel()
            self._task = None

        self.target = to_timestamp(end_time)
        self.remaining = self.clock.remaining(self.target)
        if self.remaining <= 0:
            self._finish()
            return

        if was_running:
            self.start()

    async def ticks(self):
        """Lazily yield the remaining seconds once per interval until zero."""
        while not self._complete:
            await self.clock.sleep(self.interval)
            if self._complete:
                break
            self._update()
            yield self.remaining

    async def _run(self):
        async for _ in self.ticks():
            pass

    def _update(self):
        self.remaining = self.clock.remaining(self.target)
        self.tick_count += 1

        if self.on_tick:
            try:
                self.on_tick(self.remaining)
            except Exception:
                logger.exception("Countdown tick callback failed")

        if self.remaining <= 0:
            self._finish()

    def _finish(self):
        if self._complete:
            return
        self._complete = True
        self.remaining = 0

        if self.on_complete:
            try:
                self.on_complete()
            except Exception:
                logger.exception("Countdown completion callback failed")
