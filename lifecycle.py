"""Process-wide application and connection state"""
import logging
from dataclasses import dataclass, replace
from enum import Enum

logger = logging.getLogger(__name__)


class AppState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    STARTUP_ERROR = "startup_error"
    STOPPED = "stopped"


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class LifecycleSnapshot:
    app_state: AppState = AppState.STARTING
    connection_state: ConnectionState = ConnectionState.DISCONNECTED


class Lifecycle:
    """
    Holds the current lifecycle snapshot.

    Every update swaps in a new immutable snapshot, so readers running in
    other tasks always see a consistent pair of states. App state is written
    by the handler, connection state only by the ConnectionStateMonitor.
    """

    def __init__(self):
        self._snapshot = LifecycleSnapshot()

    @property
    def snapshot(self) -> LifecycleSnapshot:
        return self._snapshot

    @property
    def app_state(self) -> AppState:
        return self._snapshot.app_state

    @property
    def connection_state(self) -> ConnectionState:
        return self._snapshot.connection_state

    @property
    def is_running(self) -> bool:
        """True when the app is running and the stream is connected"""
        snapshot = self._snapshot
        return (
            snapshot.app_state is AppState.RUNNING
            and snapshot.connection_state is ConnectionState.CONNECTED
        )

    def set_app_state(self, state: AppState) -> None:
        if state is self._snapshot.app_state:
            return
        logger.info(f"Lifecycle: App state {self._snapshot.app_state.value} -> {state.value}")
        self._snapshot = replace(self._snapshot, app_state=state)

    def set_connection_state(self, state: ConnectionState) -> None:
        if state is self._snapshot.connection_state:
            return
        logger.info(f"Lifecycle: Connection state {self._snapshot.connection_state.value} -> {state.value}")
        self._snapshot = replace(self._snapshot, connection_state=state)
