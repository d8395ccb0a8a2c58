"""Base definitions for the Tibber feed - data contracts and protocols"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, AsyncIterator


@dataclass(frozen=True)
class Home:
    """
    Home metadata fetched during bootstrap.

    Attributes:
        id: Tibber home identifier.
        currency: Currency of the current price subscription, if any.
        app_nickname: Name shown in the Tibber app.
        time_zone: IANA time zone of the home.
        real_time_consumption_enabled: True when a Pulse/Watty is paired.
    """
    id: str
    currency: str | None = None
    app_nickname: str | None = None
    time_zone: str | None = None
    real_time_consumption_enabled: bool = False


@dataclass(frozen=True)
class PriceQuote:
    """
    Current electricity price for a home.

    Attributes:
        total: Total price per kWh, including taxes.
        currency: ISO currency code, e.g. "NOK".
    """
    total: float
    currency: str
    energy: float | None = None
    tax: float | None = None
    starts_at: str | None = None
    level: str | None = None


@dataclass
class LiveMeasurement:
    """
    A single real-time measurement from the subscription.

    Attributes:
        home_id: Home the subscription belongs to.
        power: Consumption in Watts, None when the meter did not report it.
        power_production: Production in Watts, None when not reported.
        extended: True when the meter reports per-phase values.
        fields: Named numeric fields, keyed by FIMP meter_ext names.
        timestamp: ISO8601 timestamp string from Tibber.
    """
    home_id: str
    power: float | None = None
    power_production: float | None = None
    extended: bool = False
    fields: dict[str, float] = field(default_factory=dict)
    timestamp: str | None = None

    def has_production_or_consumption_power(self) -> bool:
        return self.power is not None or self.power_production is not None


class StreamState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class StateReport:
    """Connectivity transition reported by the stream"""
    state: StreamState
    reason: str | None = None


class MeasurementStream(Protocol):
    """
    Protocol for live measurement subscriptions.

    Uses Protocol for duck typing - the handler only needs these methods,
    so tests can hand in a fake stream.
    """

    async def run(self) -> None:
        """
        Open the subscription and keep it alive until cancelled.

        Reconnects internally after transport drops.
        """
        ...

    def measurements(self) -> AsyncIterator[LiveMeasurement]:
        """Infinite sequence of measurements in arrival order."""
        ...

    def state_reports(self) -> AsyncIterator[StateReport]:
        """Infinite sequence of connectivity transitions."""
        ...


class PriceClient(Protocol):
    """Protocol for the metadata/price API"""

    async def fetch_home_by_id(self, home_id: str) -> Home:
        ...

    async def fetch_current_price(self, home_id: str) -> PriceQuote:
        ...
