"""MQTT transport - threaded paho-mqtt client for the outbound bus"""
import logging
from typing import Any

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)


class PublishError(Exception):
    """Raised when paho refuses to queue a message"""


class MqttTransport:
    """
    Outbound MQTT connection.

    The paho network loop runs in its own thread and reconnects on its own.
    paho's publish() is thread-safe, so the transport can be shared by all
    tasks that publish.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 1883,
        client_id: str = "tibber_bridge",
        username: str | None = None,
        password: str | None = None,
        keepalive: int = 60,
        qos: int = 1
    ):
        """
        Initialize MQTT transport.

        Args:
            host: Broker hostname
            port: Broker port
            client_id: MQTT client id
            username: Optional broker username
            password: Optional broker password
            keepalive: Keepalive interval in seconds
            qos: QoS used for every publish
        """
        self.host = host
        self.port = port
        self.keepalive = keepalive
        self.qos = qos
        self._client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
        )
        self._client.enable_logger(logger)
        if username:
            self._client.username_pw_set(username, password)
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._started = False

    def _on_connect(self, _client, _userdata, _flags, reason_code: Any, _properties) -> None:
        if reason_code.is_failure:
            logger.warning(f"MQTT: Connect to {self.host}:{self.port} failed: {reason_code}")
            return
        logger.info(f"MQTT: Connected to {self.host}:{self.port}")

    def _on_disconnect(self, _client, _userdata, _flags, reason_code: Any, _properties) -> None:
        if self._started:
            logger.warning(f"MQTT: Disconnected ({reason_code}), paho will reconnect")

    def start(self) -> None:
        """Connect in the background and start the network loop."""
        if self._started:
            return
        logger.info(f"MQTT: Connecting to {self.host}:{self.port}")
        self._client.connect_async(self.host, self.port, keepalive=self.keepalive)
        self._client.loop_start()
        self._started = True

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        try:
            self._client.disconnect()
        finally:
            self._client.loop_stop()
            logger.info("MQTT: Network loop stopped")

    def publish(self, topic: str, payload: str) -> None:
        """
        Queue a message for delivery.

        Raises PublishError when paho reports a non-success return code,
        e.g. while the broker connection is down.
        """
        info = self._client.publish(topic, payload, qos=self.qos)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(f"{mqtt.error_string(info.rc)} (rc={info.rc})")
