"""Routes live measurements to meter reports"""
import logging
from typing import Callable

from sinks.base import MeterExtendedReport, MeterReport, Report
from sources.base import Home, LiveMeasurement

logger = logging.getLogger(__name__)


def calculate_single_power_value(measurement: LiveMeasurement) -> float:
    """Returns + (consuming) or - (producing) wattage"""
    if measurement.power is not None and measurement.power > 0:
        return measurement.power
    if measurement.power_production is not None and measurement.power_production > 0:
        return -measurement.power_production
    return 0.0


class MessageRouter:
    """
    Turns measurements of the active home into domain reports.

    Args:
        get_home: Returns the current home snapshot, or None before bootstrap.
    """

    def __init__(self, get_home: Callable[[], Home | None]):
        self.get_home = get_home

    def route(self, measurement: LiveMeasurement) -> list[Report]:
        home = self.get_home()
        if home is None or measurement.home_id != home.id:
            logger.debug(f"Router: Dropping measurement for home {measurement.home_id}")
            return []

        reports: list[Report] = []

        # Some meters only send the extended report every 10 seconds, so the
        # single power value goes out for every measurement that has it.
        if measurement.has_production_or_consumption_power():
            watts = calculate_single_power_value(measurement)
            reports.append(MeterReport(home_id=measurement.home_id, value=float(watts), unit="W"))

        if measurement.extended:
            values = {name: float(value) for name, value in measurement.fields.items()}
            reports.append(MeterExtendedReport(home_id=measurement.home_id, values=values))

        return reports
