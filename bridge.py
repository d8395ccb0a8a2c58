import argparse
import asyncio
import logging
import os
import sys
from dataclasses import dataclass

from dotenv import load_dotenv

# Load configuration from single .env file
load_dotenv("tibber-fimp-bridge.env")

from handler import BootstrapError, TibberHandler
from sinks.fimp import FimpPublisher
from sinks.mqtt import MqttTransport
from sources.tibber import TibberClient

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@dataclass
class Settings:
    tibber_token: str
    tibber_home_id: str
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_client_id: str = "tibber_bridge"


def load_settings() -> Settings:
    """Read configuration from the environment with hard fail on misconfiguration"""
    token = os.getenv("TIBBER_TOKEN")
    if not token:
        logger.error("Tibber: TIBBER_TOKEN not configured in tibber-fimp-bridge.env")
        sys.exit(1)

    home_id = os.getenv("TIBBER_HOME_ID")
    if not home_id:
        logger.error("Tibber: TIBBER_HOME_ID not configured in tibber-fimp-bridge.env")
        sys.exit(1)

    port = os.getenv("MQTT_PORT", "1883")
    if not port.isdigit():
        logger.error(f"MQTT: MQTT_PORT must be a number, got {port!r}")
        sys.exit(1)

    return Settings(
        tibber_token=token,
        tibber_home_id=home_id,
        mqtt_host=os.getenv("MQTT_HOST") or "localhost",
        mqtt_port=int(port),
        mqtt_username=os.getenv("MQTT_USERNAME") or None,
        mqtt_password=os.getenv("MQTT_PASSWORD") or None,
        mqtt_client_id=os.getenv("MQTT_CLIENT_ID") or "tibber_bridge",
    )


async def main(settings: Settings):
    transport = MqttTransport(
        host=settings.mqtt_host,
        port=settings.mqtt_port,
        client_id=settings.mqtt_client_id,
        username=settings.mqtt_username,
        password=settings.mqtt_password
    )
    transport.start()

    handler = TibberHandler(client=TibberClient(), publisher=FimpPublisher(transport))
    try:
        await handler.run(settings.tibber_token, settings.tibber_home_id)
    except BootstrapError as e:
        logger.error(f"Tibber: Bridge not started: {e}")
        sys.exit(1)
    finally:
        await handler.stop()
        transport.stop()


def cli():
    # Parse command line arguments
    parser = argparse.ArgumentParser(description="Tibber FIMP Bridge")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        default="INFO",
        choices=LOG_LEVELS,
        help="Log level (default: INFO)"
    )
    args = parser.parse_args()

    # Setup logging
    logging.basicConfig(
        level=args.log_level,
        format='%(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    settings = load_settings()

    try:
        asyncio.run(main(settings))
    except KeyboardInterrupt:
        logger.info("Bridge stopped by user.")


if __name__ == "__main__":
    cli()
