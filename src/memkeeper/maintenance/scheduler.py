"""Cancellable periodic tasks for background maintenance."""

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from cronsim import CronSim

logger = logging.getLogger(__name__)

HOUR = 3600.0
DAY = 24 * HOUR


def seconds_until_next(cron_expr: str, tz_name: str = "UTC", now: datetime | None = None) -> float:
    """Seconds from now until the next occurrence of a cron expression.

    Occurrences are computed in the ``tz_name`` zone, so daylight saving
    transitions shift the delay rather than the wall-clock time. A naive
    ``now`` is taken to be in that zone.
    """
    tz = ZoneInfo(tz_name)
    if now is None:
        now = datetime.now(tz)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=tz)
    else:
        now = now.astimezone(tz)

    next_local = next(CronSim(cron_expr, now))
    return max(0.0, next_local.timestamp() - now.timestamp())


def seconds_until_hour(hour: int, tz_name: str = "UTC", now: datetime | None = None) -> float:
    """Seconds until the next ``hour``:00 in the given zone, never today's if already reached."""
    if not 0 <= hour <= 23:
        raise ValueError(f"hour must be between 0 and 23, got {hour}")
    return seconds_until_next(f"0 {hour} * * *", tz_name, now)


class PeriodicTask:
    """Runs a blocking function on a worker thread at a fixed interval.

    The first run happens after ``initial_delay`` (which may be a callable
    evaluated when the task starts), then every ``interval`` seconds.
    With ``next_delay`` the wait before every run is recomputed by that
    callable instead, after the previous run has finished, which keeps
    wall-clock schedules from drifting by the run time.
    Errors raised by the function are logged and never stop the ticker.
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], Any],
        interval: float,
        initial_delay: float | Callable[[], float] | None = None,
        next_delay: Callable[[], float] | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self._func = func
        self.interval = interval
        self._initial_delay = initial_delay
        self._next_delay = next_delay
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()
        self.runs = 0
        self.failures = 0
        self.last_run: float | None = None
        self.last_error: str | None = None
        self._running_now = False

    @property
    def is_running(self) -> bool:
        """True while the ticker task is alive."""
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> bool:
        """True while the function is executing."""
        return self._running_now

    def _first_delay(self) -> float:
        if self._initial_delay is None:
            return self._following_delay()
        if callable(self._initial_delay):
            return max(0.0, float(self._initial_delay()))
        return max(0.0, float(self._initial_delay))

    def _following_delay(self) -> float:
        if self._next_delay is None:
            return self.interval
        return max(0.0, float(self._next_delay()))

    def start(self) -> None:
        """Start the ticker on the running event loop."""
        if self.is_running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info("Scheduled %s every %.0f seconds", self.name, self.interval)

    async def _loop(self) -> None:
        delay = self._first_delay()
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)
                break
            except asyncio.TimeoutError:
                pass

            await self.run_once()
            delay = self._following_delay()

    async def run_once(self) -> None:
        """Run the function once on a worker thread, recording the outcome."""
        self._running_now = True
        try:
            await asyncio.to_thread(self._func)
            self.last_error = None
        except Exception as e:
            self.failures += 1
            self.last_error = str(e)
            logger.exception("Error during %s", self.name)
        finally:
            self._running_now = False
            self.runs += 1
            self.last_run = time.time()

    async def stop(self, timeout: float = 5.0) -> None:
        """Stop the ticker, waiting up to ``timeout`` for a run in progress.

        If the run does not finish in time the ticker is cancelled.
        """
        if self._task is None:
            return

        self._stopping.set()
        task = self._task
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("%s did not finish within %.1fs, cancelling", self.name, timeout)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
