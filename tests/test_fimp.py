import json

import pytest

from sinks.base import MeterExtendedReport, MeterReport, SensorReport
from sinks.fimp import FimpPublisher, build_address, encode_report
from sinks.mqtt import PublishError


def test_build_address():
    assert build_address("meter_elec", "H1") == "pt:j1/mt:evt/rt:dev/rn:tibber/ad:1/sv:meter_elec/ad:H1"


def test_encode_sensor_report():
    address, message = encode_report(SensorReport(home_id="H1", value=1.25, unit="NOK"))

    assert address == "pt:j1/mt:evt/rt:dev/rn:tibber/ad:1/sv:sensor_price/ad:H1"
    assert message["type"] == "evt.sensor.report"
    assert message["serv"] == "sensor_price"
    assert message["val_t"] == "float"
    assert message["val"] == 1.25
    assert message["props"] == {"unit": "NOK"}


def test_encode_meter_report():
    address, message = encode_report(MeterReport(home_id="H1", value=500, unit="W"))

    assert address == "pt:j1/mt:evt/rt:dev/rn:tibber/ad:1/sv:meter_elec/ad:H1"
    assert message["type"] == "evt.meter.report"
    assert message["serv"] == "meter_elec"
    assert message["val_t"] == "float"
    assert message["val"] == 500.0
    assert isinstance(message["val"], float)
    assert message["props"] == {"unit": "W"}


def test_encode_meter_extended_report():
    address, message = encode_report(MeterExtendedReport(home_id="H1", values={"voltage": 230}))

    assert address == "pt:j1/mt:evt/rt:dev/rn:tibber/ad:1/sv:meter_elec/ad:H1"
    assert message["type"] == "evt.meter_ext.report"
    assert message["serv"] == "meter_elec"
    assert message["val_t"] == "float_map"
    assert message["val"] == {"voltage": 230.0}
    assert message["props"] is None


def test_encode_message_envelope():
    _, message = encode_report(MeterReport(home_id="H1", value=1.0))

    assert message["ver"] == "1"
    assert message["tags"] is None
    assert message["uid"]
    assert message["ctime"]


def test_encode_unknown_report_raises():
    with pytest.raises(TypeError):
        encode_report(object())


def test_publisher_sends_json(mocker):
    transport = mocker.Mock()
    publisher = FimpPublisher(transport)

    assert publisher.publish(MeterReport(home_id="H1", value=-300.0)) is True

    transport.publish.assert_called_once()
    topic, payload = transport.publish.call_args.args
    assert topic == "pt:j1/mt:evt/rt:dev/rn:tibber/ad:1/sv:meter_elec/ad:H1"
    body = json.loads(payload)
    assert body["val"] == -300.0
    assert body["props"] == {"unit": "W"}


def test_publisher_swallows_transport_errors(mocker, caplog):
    transport = mocker.Mock()
    transport.publish.side_effect = PublishError("The client is not currently connected. (rc=4)")
    publisher = FimpPublisher(transport)

    assert publisher.publish(MeterReport(home_id="H1", value=1.0)) is False

    transport.publish.assert_called_once()
    assert "not currently connected" in caplog.text


def test_publisher_does_not_retry(mocker):
    transport = mocker.Mock()
    transport.publish.side_effect = OSError("broken pipe")
    publisher = FimpPublisher(transport)

    publisher.publish(SensorReport(home_id="H1", value=1.0, unit="NOK"))

    assert transport.publish.call_count == 1
