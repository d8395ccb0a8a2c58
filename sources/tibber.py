"""Tibber ingress module - home/price queries via GraphQL HTTP, live data via GraphQL WebSocket"""
import asyncio
import json
import logging
import requests
import websockets
from typing import Any, AsyncIterator

from sources.base import Home, LiveMeasurement, PriceQuote, StateReport, StreamState

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.tibber.com/v1-beta/gql"
DEFAULT_WSS_URL = "wss://websocket-api.tibber.com/v1-beta/gql/subscriptions"
DEFAULT_USER_AGENT = "Tibber-FIMP-Bridge/0.1.0"

HOME_QUERY = """
query Home($homeId: ID!) {
  viewer {
    websocketSubscriptionUrl
    home(id: $homeId) {
      id
      appNickname
      timeZone
      features {
        realTimeConsumptionEnabled
      }
      currentSubscription {
        priceInfo {
          current {
            currency
          }
        }
      }
    }
  }
}
"""

PRICE_QUERY = """
query CurrentPrice($homeId: ID!) {
  viewer {
    home(id: $homeId) {
      currentSubscription {
        priceInfo {
          current {
            total
            energy
            tax
            startsAt
            currency
            level
          }
        }
      }
    }
  }
}
"""

# Tibber liveMeasurement field -> FIMP meter_ext key
MEASUREMENT_FIELDS = {
    "power": "p_import",
    "minPower": "p_import_min",
    "averagePower": "p_import_avg",
    "maxPower": "p_import_max",
    "powerProduction": "p_export",
    "minPowerProduction": "p_export_min",
    "maxPowerProduction": "p_export_max",
    "powerReactive": "p_import_react",
    "powerProductionReactive": "p_export_react",
    "powerFactor": "p_factor",
    "lastMeterConsumption": "e_import",
    "lastMeterProduction": "e_export",
    "voltagePhase1": "u1",
    "voltagePhase2": "u2",
    "voltagePhase3": "u3",
    "currentL1": "i1",
    "currentL2": "i2",
    "currentL3": "i3",
}

# Only meters with a local HAN port report these
PHASE_FIELDS = (
    "voltagePhase1",
    "voltagePhase2",
    "voltagePhase3",
    "currentL1",
    "currentL2",
    "currentL3",
)


class TibberApiError(Exception):
    """Raised when a Tibber query fails or returns an unexpected shape"""


def parse_live_measurement(home_id: str, payload: dict[str, Any] | None) -> LiveMeasurement | None:
    """
    Convert a liveMeasurement payload into a LiveMeasurement.

    Returns None for an empty payload. Fields that Tibber sends as null are
    left out of the field mapping.
    """
    if not payload:
        return None

    fields = {}
    for name, key in MEASUREMENT_FIELDS.items():
        value = payload.get(name)
        if value is not None:
            fields[key] = float(value)

    power = payload.get("power")
    power_production = payload.get("powerProduction")

    return LiveMeasurement(
        home_id=home_id,
        power=float(power) if power is not None else None,
        power_production=float(power_production) if power_production is not None else None,
        extended=any(payload.get(name) is not None for name in PHASE_FIELDS),
        fields=fields,
        timestamp=payload.get("timestamp"),
    )


class TibberClient:
    """
    Tibber GraphQL HTTP client.

    Fetches home metadata and current prices. Requests are blocking and
    run in a thread to not block the main loop.
    """

    def __init__(
        self,
        token: str = "",
        endpoint: str = DEFAULT_ENDPOINT,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 10.0
    ):
        """
        Initialize Tibber client.

        Args:
            token: Tibber API token, may be set later
            endpoint: GraphQL HTTP endpoint
            user_agent: User-Agent header for requests
            timeout: HTTP request timeout in seconds
        """
        self.token = token
        self.endpoint = endpoint
        self.user_agent = user_agent
        self.timeout = timeout
        self.wss_url = None

    def _query(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """Execute a GraphQL query and return its 'data' object."""
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
            "User-Agent": self.user_agent
        }

        try:
            response = requests.post(
                self.endpoint,
                json={"query": query, "variables": variables},
                headers=headers,
                timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise TibberApiError(f"HTTP request failed: {e}") from e
        except ValueError as e:
            raise TibberApiError(f"Invalid JSON response: {e}") from e

        if data.get("errors"):
            messages = ", ".join(err.get("message", "unknown error") for err in data["errors"])
            raise TibberApiError(f"GraphQL error: {messages}")

        return data.get("data") or {}

    def get_home_by_id(self, home_id: str) -> Home:
        viewer = self._query(HOME_QUERY, {"homeId": home_id}).get("viewer") or {}
        home = viewer.get("home")
        if not home or not home.get("id"):
            raise TibberApiError(f"Home {home_id} not found")

        self.wss_url = viewer.get("websocketSubscriptionUrl") or self.wss_url

        current = (
            ((home.get("currentSubscription") or {}).get("priceInfo") or {}).get("current") or {}
        )
        return Home(
            id=home["id"],
            currency=current.get("currency"),
            app_nickname=home.get("appNickname"),
            time_zone=home.get("timeZone"),
            real_time_consumption_enabled=bool(
                (home.get("features") or {}).get("realTimeConsumptionEnabled")
            ),
        )

    def get_current_price(self, home_id: str) -> PriceQuote:
        viewer = self._query(PRICE_QUERY, {"homeId": home_id}).get("viewer") or {}
        home = viewer.get("home") or {}
        current = (
            ((home.get("currentSubscription") or {}).get("priceInfo") or {}).get("current")
        )
        if not current or current.get("total") is None or not current.get("currency"):
            raise TibberApiError(f"No current price for home {home_id}")

        return PriceQuote(
            total=float(current["total"]),
            currency=current["currency"],
            energy=current.get("energy"),
            tax=current.get("tax"),
            starts_at=current.get("startsAt"),
            level=current.get("level"),
        )

    async def fetch_home_by_id(self, home_id: str) -> Home:
        return await asyncio.to_thread(self.get_home_by_id, home_id)

    async def fetch_current_price(self, home_id: str) -> PriceQuote:
        return await asyncio.to_thread(self.get_current_price, home_id)


class TibberStream:
    """
    Tibber Pulse live measurement subscription.

    Connects to the Tibber GraphQL API via WebSocket and forwards
    measurements and connectivity transitions onto bounded queues.
    A stream runs once; it cannot be restarted after run() returns.
    """

    def __init__(
        self,
        token: str,
        home_id: str,
        url: str = DEFAULT_WSS_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        queue_size: int = 100,
        reconnect_delay: float = 5.0
    ):
        """
        Initialize Tibber stream.

        Args:
            token: Tibber API token
            home_id: Home to subscribe to
            url: WebSocket subscription URL
            user_agent: User-Agent header for the handshake
            queue_size: Capacity of the measurement and state queues
            reconnect_delay: Seconds to wait before reconnecting
        """
        self.token = token
        self.home_id = home_id
        self.url = url
        self.user_agent = user_agent
        self.reconnect_delay = reconnect_delay
        self.events: asyncio.Queue[LiveMeasurement] = asyncio.Queue(maxsize=queue_size)
        self.states: asyncio.Queue[StateReport] = asyncio.Queue(maxsize=queue_size)
        self._started = False

    async def measurements(self) -> AsyncIterator[LiveMeasurement]:
        while True:
            yield await self.events.get()

    async def state_reports(self) -> AsyncIterator[StateReport]:
        while True:
            yield await self.states.get()

    def _report(self, state: StreamState, reason: str | None = None) -> None:
        """Queue a state transition, dropping the oldest one when full."""
        if self.states.full():
            self.states.get_nowait()
        self.states.put_nowait(StateReport(state=state, reason=reason))

    async def run(self) -> None:
        """
        WebSocket Stream (graphql-transport-ws protocol).

        Runs until cancelled, the server rejects the token, or the
        connection iterator ends. Handles auto-reconnect internally:
        handshake failures that websockets does not retry itself (e.g.
        HTTP 401/429) restart the connection loop.
        """
        if self._started:
            raise RuntimeError("Tibber stream can only be started once")
        self._started = True

        logger.info(f"Tibber API: Connect WebSocket {self.url}")
        self._report(StreamState.CONNECTING)

        try:
            while True:
                try:
                    async for websocket in websockets.connect(
                        self.url,
                        subprotocols=["graphql-transport-ws"],
                        additional_headers={"User-Agent": self.user_agent}
                    ):
                        try:
                            if not await self._session(websocket):
                                return
                            self._report(StreamState.DISCONNECTED, "complete")
                        except websockets.ConnectionClosed as e:
                            logger.warning(f"Tibber API: Connection closed: {e}. Restarting in {self.reconnect_delay}s...")
                            self._report(StreamState.DISCONNECTED, str(e))
                        except Exception as e:
                            logger.error(f"Tibber API: Unexpected error: {e}. Restarting in {self.reconnect_delay}s...")
                            self._report(StreamState.DISCONNECTED, str(e))
                        await asyncio.sleep(self.reconnect_delay)
                    return
                except Exception as e:
                    logger.error(f"Tibber API: Connect failed: {e}. Retrying in {self.reconnect_delay}s...")
                    self._report(StreamState.DISCONNECTED, str(e))
                    await asyncio.sleep(self.reconnect_delay)
        finally:
            self._report(StreamState.TERMINATED)

    async def _session(self, websocket) -> bool:
        """
        Run one connection from handshake to close.

        Returns False when Tibber rejects the connection.
        """
        # --- STEP A: Connection Init ---
        init_msg = {
            "type": "connection_init",
            "payload": {"token": self.token}
        }
        await websocket.send(json.dumps(init_msg))

        # --- STEP B: Wait for Ack ---
        while True:
            msg = json.loads(await websocket.recv())
            if msg.get("type") == "connection_ack":
                logger.info("Tibber API: Authentication passed (connection_ack).")
                break
            elif msg.get("type") == "connection_error":
                logger.error(f"Tibber API: Authentication error: {msg}")
                return False

        # --- STEP C: Subscribe ---
        sub_query = f"""
        subscription {{
          liveMeasurement(homeId: "{self.home_id}") {{
            timestamp
            {' '.join(MEASUREMENT_FIELDS)}
          }}
        }}
        """
        sub_msg = {
            "id": "1",
            "type": "subscribe",
            "payload": {
                "query": sub_query
            }
        }
        await websocket.send(json.dumps(sub_msg))
        self._report(StreamState.CONNECTED)
        logger.info("Tibber API: Subscription started. Waiting for data...")

        # --- STEP D: Data Loop ---
        async for message in websocket:
            data = json.loads(message)
            msg_type = data.get("type")

            if msg_type == "next":
                payload = data.get("payload") or {}
                if payload.get("errors"):
                    logger.error(f"Tibber API: Subscription error: {payload['errors']}")
                    continue
                measurement = parse_live_measurement(
                    self.home_id,
                    (payload.get("data") or {}).get("liveMeasurement")
                )
                if measurement is not None:
                    await self.events.put(measurement)

            elif msg_type == "ping":
                await websocket.send(json.dumps({"type": "pong"}))

            elif msg_type == "error":
                logger.error(f"Tibber API: Stream error: {data}")

            elif msg_type == "complete":
                logger.info("Tibber API: Server stopped the stream.")
                break

        return True
