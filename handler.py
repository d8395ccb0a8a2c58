"""Tibber handler - bootstraps the home and supervises the bridge tasks"""
import asyncio
import logging
from contextlib import suppress
from typing import AsyncIterator, Callable

from lifecycle import AppState, ConnectionState, Lifecycle
from poller import PricePoller
from retry import RetryExhausted, RetryPolicy
from router import MessageRouter
from sinks.base import ReportSink
from sources.base import Home, LiveMeasurement, MeasurementStream, StateReport, StreamState
from sources.tibber import DEFAULT_WSS_URL, TibberClient, TibberStream

logger = logging.getLogger(__name__)

BOOTSTRAP_ATTEMPTS = 10
BOOTSTRAP_DELAY = 60  # seconds


class BootstrapError(Exception):
    """Raised when the home could not be fetched within the retry budget"""


class HomeBootstrapper:
    """Fetches the home metadata needed before the subscription can start"""

    def __init__(self, client: TibberClient, retry_policy: RetryPolicy | None = None):
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy(
            attempts=BOOTSTRAP_ATTEMPTS, delay=BOOTSTRAP_DELAY
        )

    async def fetch(self, token: str, home_id: str) -> Home:
        self.client.token = token
        try:
            home = await self.retry_policy.run(
                lambda: self.client.fetch_home_by_id(home_id),
                description=f"Tibber: Getting home {home_id}"
            )
        except RetryExhausted as e:
            raise BootstrapError(
                f"Could not fetch home {home_id} after {e.attempts} attempts"
            ) from e.last_error

        logger.info(f"Tibber: Home {home.app_nickname or home.id} successfully fetched.")
        return home


class ConnectionStateMonitor:
    """Maps stream state reports onto the lifecycle connection state"""

    STATE_MAP = {
        StreamState.CONNECTED: ConnectionState.CONNECTED,
        StreamState.DISCONNECTED: ConnectionState.DISCONNECTED,
    }

    def __init__(self, lifecycle: Lifecycle):
        self.lifecycle = lifecycle

    def apply(self, report: StateReport) -> None:
        state = self.STATE_MAP.get(report.state)
        if state is None:
            return
        self.lifecycle.set_connection_state(state)

    async def run(self, reports: AsyncIterator[StateReport]) -> None:
        async for report in reports:
            self.apply(report)


class TibberHandler:
    """
    Bridges the Tibber live feed to the outbound bus.

    After a successful bootstrap four tasks run side by side until stop():
    the stream connection, the measurement consumer, the connection state
    monitor and the price poller. The home is written once by start() and
    only read afterwards.
    """

    def __init__(
        self,
        client: TibberClient,
        publisher: ReportSink,
        lifecycle: Lifecycle | None = None,
        retry_policy: RetryPolicy | None = None,
        stream_factory: Callable[..., MeasurementStream] = TibberStream,
        poller: PricePoller | None = None
    ):
        self.client = client
        self.publisher = publisher
        self.lifecycle = lifecycle or Lifecycle()
        self.home: Home | None = None
        self.stream: MeasurementStream | None = None
        self.stream_factory = stream_factory
        self.bootstrapper = HomeBootstrapper(client, retry_policy)
        self.router = MessageRouter(lambda: self.home)
        self.monitor = ConnectionStateMonitor(self.lifecycle)
        self.poller = poller or PricePoller(client, publisher, self.lifecycle, lambda: self.home)
        self._task: asyncio.Task | None = None

    async def start(self, token: str, home_id: str) -> None:
        """
        Bootstrap the home, then start the bridge tasks in the background.

        Raises BootstrapError when the home cannot be fetched; nothing is
        started in that case.
        """
        if self._task is not None:
            raise RuntimeError("Tibber handler is already started")

        try:
            home = await self.bootstrapper.fetch(token, home_id)
        except BootstrapError:
            self.lifecycle.set_app_state(AppState.STARTUP_ERROR)
            raise

        self.home = home
        self.stream = self.stream_factory(
            token=token,
            home_id=home.id,
            url=self.client.wss_url or DEFAULT_WSS_URL
        )
        self.lifecycle.set_app_state(AppState.RUNNING)
        self._task = asyncio.create_task(self._supervise(), name="tibber-handler")

    async def _supervise(self) -> None:
        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(self.stream.run(), name="tibber-stream")
                tg.create_task(self.consume(self.stream.measurements()), name="tibber-consumer")
                tg.create_task(self.monitor.run(self.stream.state_reports()), name="tibber-state-monitor")
                tg.create_task(self.poller.run(), name="tibber-price-poller")
        finally:
            self.lifecycle.set_app_state(AppState.STOPPED)

    async def consume(self, measurements: AsyncIterator[LiveMeasurement]) -> None:
        async for measurement in measurements:
            for report in self.router.route(measurement):
                self.publisher.publish(report)

    async def wait(self) -> None:
        """Wait until the bridge tasks end."""
        if self._task is not None:
            await self._task

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        logger.info("Tibber: Handler stopped")

    async def run(self, token: str, home_id: str) -> None:
        await self.start(token, home_id)
        await self.wait()
