"""FIMP egress module - encodes domain reports and publishes them on the bus"""
import json
import logging
import uuid
from datetime import datetime
from typing import Any

from sinks.base import MeterExtendedReport, MeterReport, Report, SensorReport

logger = logging.getLogger(__name__)

ADDRESS_PREFIX = "pt:j1/mt:evt/rt:dev/rn:tibber/ad:1"
METER_SERVICE = "meter_elec"


def build_address(service: str, home_id: str) -> str:
    return f"{ADDRESS_PREFIX}/sv:{service}/ad:{home_id}"


def new_message(
    msg_type: str,
    service: str,
    value_type: str,
    value: Any,
    props: dict[str, str] | None = None
) -> dict[str, Any]:
    """Build a FIMP message envelope."""
    return {
        "serv": service,
        "type": msg_type,
        "val_t": value_type,
        "val": value,
        "props": props,
        "tags": None,
        "ctime": datetime.now().astimezone().isoformat(timespec="milliseconds"),
        "uid": str(uuid.uuid4()),
        "ver": "1",
        "corid": None,
    }


def encode_report(report: Report) -> tuple[str, dict[str, Any]]:
    """
    Map a domain report to its address and FIMP message.

    Returns:
        (address, message) tuple
    """
    if isinstance(report, SensorReport):
        message = new_message(
            "evt.sensor.report", report.service, "float", float(report.value), {"unit": report.unit}
        )
        return build_address(report.service, report.home_id), message

    if isinstance(report, MeterReport):
        message = new_message(
            "evt.meter.report", METER_SERVICE, "float", float(report.value), {"unit": report.unit}
        )
        return build_address(METER_SERVICE, report.home_id), message

    if isinstance(report, MeterExtendedReport):
        values = {name: float(value) for name, value in report.values.items()}
        message = new_message("evt.meter_ext.report", METER_SERVICE, "float_map", values)
        return build_address(METER_SERVICE, report.home_id), message

    raise TypeError(f"Unsupported report type: {type(report).__name__}")


class FimpPublisher:
    """
    The only writer to the outbound bus.

    Publish failures are logged and dropped; they are never retried and
    never raised to the caller.
    """

    def __init__(self, transport):
        """
        Args:
            transport: Object with publish(topic, payload), e.g. MqttTransport
        """
        self.transport = transport

    def publish(self, report: Report) -> bool:
        """Publish a report. Returns True when the transport accepted it."""
        try:
            address, message = encode_report(report)
            self.transport.publish(address, json.dumps(message))
        except Exception as e:
            logger.error(f"FIMP: Could not publish {type(report).__name__}: {e}")
            return False

        logger.debug(f"FIMP: {message['type']} sent to {address}")
        return True
