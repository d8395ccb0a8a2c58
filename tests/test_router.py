import pytest

from router import MessageRouter, calculate_single_power_value
from sinks.base import MeterExtendedReport, MeterReport
from sources.base import Home, LiveMeasurement


@pytest.fixture
def router():
    home = Home(id="H1", currency="NOK")
    return MessageRouter(lambda: home)


@pytest.mark.parametrize(
    "power, power_production, expected",
    [
        (500.0, 0.0, 500.0),
        (500.0, 300.0, 500.0),
        (0.0, 300.0, -300.0),
        (None, 300.0, -300.0),
        (0.0, 0.0, 0.0),
        (-5.0, -5.0, 0.0),
    ],
)
def test_calculate_single_power_value(power, power_production, expected):
    measurement = LiveMeasurement(home_id="H1", power=power, power_production=power_production)
    assert calculate_single_power_value(measurement) == expected


def test_route_consumption_only(router):
    """Consuming power gives one meter report and no extended report"""
    measurement = LiveMeasurement(home_id="H1", power=500.0, power_production=0.0, extended=False)

    reports = router.route(measurement)

    assert reports == [MeterReport(home_id="H1", value=500.0, unit="W")]


def test_route_production_extended(router):
    """Producing power is negated; extended measurements add a meter_ext report"""
    measurement = LiveMeasurement(
        home_id="H1",
        power=0.0,
        power_production=300.0,
        extended=True,
        fields={"voltage": 230},
    )

    reports = router.route(measurement)

    assert reports == [
        MeterReport(home_id="H1", value=-300.0, unit="W"),
        MeterExtendedReport(home_id="H1", values={"voltage": 230.0}),
    ]
    assert isinstance(reports[1].values["voltage"], float)


def test_route_idle_meter_reports_zero(router):
    measurement = LiveMeasurement(home_id="H1", power=0.0, power_production=0.0)

    assert router.route(measurement) == [MeterReport(home_id="H1", value=0.0, unit="W")]


def test_route_extended_without_power(router):
    """A measurement without power values only produces the extended report"""
    measurement = LiveMeasurement(home_id="H1", extended=True, fields={"u1": 231.5, "i1": 2.0})

    reports = router.route(measurement)

    assert reports == [MeterExtendedReport(home_id="H1", values={"u1": 231.5, "i1": 2.0})]


def test_route_drops_other_home(router):
    measurement = LiveMeasurement(home_id="H2", power=500.0, extended=True, fields={"u1": 230.0})

    assert router.route(measurement) == []


def test_route_drops_everything_before_bootstrap():
    router = MessageRouter(lambda: None)

    assert router.route(LiveMeasurement(home_id="H1", power=500.0)) == []


def test_route_follows_home_replacement():
    """The router reads the current home on every call"""
    state = {"home": Home(id="H1")}
    router = MessageRouter(lambda: state["home"])
    measurement = LiveMeasurement(home_id="H2", power=100.0)

    assert router.route(measurement) == []

    state["home"] = Home(id="H2")
    assert router.route(measurement) == [MeterReport(home_id="H2", value=100.0)]
