"""Price poller - fetches the current price at the top of every hour"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from lifecycle import Lifecycle
from sinks.base import ReportSink, SensorReport
from sources.base import Home, PriceClient

logger = logging.getLogger(__name__)

POLL_INTERVAL = 5 * 60  # seconds
ACTIVE_WINDOW_MINUTES = 5  # ticks run on minutes 0 - 4 only


class PricePoller:
    """
    Polls the current price on a fixed, wall-clock aligned schedule.

    Ticks fire on every five-minute boundary of the clock. A tick does work
    only inside the active window at the start of each hour and only while
    the lifecycle is running. A failed price fetch ends polling for good.
    """

    def __init__(
        self,
        client: PriceClient,
        publisher: ReportSink,
        lifecycle: Lifecycle,
        get_home: Callable[[], Home | None],
        interval: float = POLL_INTERVAL,
        window_minutes: int = ACTIVE_WINDOW_MINUTES,
        now: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.client = client
        self.publisher = publisher
        self.lifecycle = lifecycle
        self.get_home = get_home
        self.interval = interval
        self.window_minutes = window_minutes
        self.now = now
        self.sleep = sleep
        self._started = False

    def next_tick(self, now: datetime) -> datetime:
        """First five-minute clock boundary strictly after now."""
        hour_start = now.replace(minute=0, second=0, microsecond=0)
        elapsed = (now - hour_start).total_seconds()
        ticks = int(elapsed // self.interval) + 1
        return hour_start + timedelta(seconds=ticks * self.interval)

    def seconds_until_next_tick(self, now: datetime) -> float:
        return (self.next_tick(now) - now).total_seconds()

    def in_window(self, now: datetime) -> bool:
        return now.minute < self.window_minutes

    async def tick(self, scheduled: datetime | None = None) -> bool:
        """
        Run a single poll.

        The active window is checked against the scheduled boundary when
        one is given, so an early wake-up still counts as that tick.
        Returns False when polling has to stop.
        """
        now = scheduled or self.now()
        if not self.in_window(now):
            logger.debug(f"Poller: Outside active window ({now:%H:%M}), skipping")
            return True

        if not self.lifecycle.is_running:
            logger.debug("Poller: Not running, skipping")
            return True

        home = self.get_home()
        if home is None:
            logger.debug("Poller: No home yet, skipping")
            return True

        try:
            quote = await self.client.fetch_current_price(home.id)
        except Exception as e:
            logger.error(f"Poller: Cannot get prices from Tibber - {e}")
            return False

        self.publisher.publish(SensorReport(home_id=home.id, value=quote.total, unit=quote.currency))
        logger.debug("Poller: sensor_price sent")
        return True

    async def run(self) -> None:
        """Poll until cancelled or until a tick asks to stop."""
        if self._started:
            raise RuntimeError("Price poller can only be started once")
        self._started = True

        logger.info(f"Poller: Started (every {self.interval / 60:g} min, minutes 0-{self.window_minutes - 1})")
        while True:
            now = self.now()
            scheduled = self.next_tick(now)
            await self.sleep((scheduled - now).total_seconds())
            if not await self.tick(scheduled):
                logger.warning("Poller: Stopped after failed price fetch")
                return
