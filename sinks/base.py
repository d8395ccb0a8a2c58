"""Base definitions for egress - domain reports ready to publish"""
from dataclasses import dataclass, field
from typing import Protocol, Union


@dataclass(frozen=True)
class SensorReport:
    """
    Scalar sensor reading, e.g. the current price.

    Attributes:
        home_id: Home the reading belongs to, used as device address.
        value: Sensor value.
        unit: Unit of the value (a currency code for prices).
        service: FIMP service name.
    """
    home_id: str
    value: float
    unit: str
    service: str = "sensor_price"


@dataclass(frozen=True)
class MeterReport:
    """
    Scalar meter reading in Watts.

    Positive = consuming, negative = producing.
    """
    home_id: str
    value: float
    unit: str = "W"


@dataclass(frozen=True)
class MeterExtendedReport:
    """Extended meter reading: FIMP meter_ext field name -> value"""
    home_id: str
    values: dict[str, float] = field(default_factory=dict)


Report = Union[SensorReport, MeterReport, MeterExtendedReport]


class ReportSink(Protocol):
    """
    Protocol for egress of domain reports.

    publish() must not raise; failures are handled by the sink.
    """

    def publish(self, report: Report) -> bool:
        ...
