"""Tests for interpreting BW32 frames into events and acknowledgements."""
from datetime import datetime, timezone

import pytest

from tcp_server.protocols import (
    AlarmEvent,
    BW32FrameDecoder,
    BW32ProtocolHandler,
    HeartbeatEvent,
    PositionEvent,
    UnknownCommandEvent,
)

RECEIVED = datetime(2025, 1, 15, 10, 31, 0, tzinfo=timezone.utc)
POSITION = "250115,103000,A,4807.0380,N,01131.0000,E,10.0,90.5,8,520.0"


def interpret(raw: bytes):
    frame = BW32FrameDecoder().parse_frame(raw)
    return BW32ProtocolHandler().interpret(frame, received_at=RECEIVED)


def test_heartbeat_acks_on():
    event, ack = interpret(b"BW*42*0002*LK#")
    assert isinstance(event, HeartbeatEvent)
    assert event.device_id == "42"
    assert event.timestamp == RECEIVED
    assert ack == b"ON"


@pytest.mark.parametrize("command", ["UD", "UD2"])
def test_position_update(command):
    event, ack = interpret(f"BW*42*0070*{command},{POSITION}#".encode())
    assert ack == b"OK"
    assert isinstance(event, PositionEvent)
    assert event.received_at == RECEIVED

    report = event.report
    assert report.device_id == "42"
    assert report.fix_time_utc == datetime(2025, 1, 15, 10, 30, 0, tzinfo=timezone.utc)
    assert report.latitude == pytest.approx(48.1173)
    assert report.longitude == pytest.approx(11.516667, abs=1e-6)
    assert report.speed_kph == pytest.approx(18.52)
    assert report.course_deg == 90.5
    assert report.gps_valid is True
    assert report.satellite_count == 8
    assert report.altitude == 520.0


def test_southern_and_western_hemispheres_are_negative():
    payload = "250115,103000,V,3352.1234,S,15112.5000,W,0,0"
    event, _ = interpret(f"BW*42*0040*UD,{payload}#".encode())
    assert event.report.latitude == pytest.approx(-(33 + 52.1234 / 60))
    assert event.report.longitude == pytest.approx(-(151 + 12.5 / 60))
    assert event.report.gps_valid is False
    assert event.report.satellite_count is None
    assert event.report.altitude is None


def test_alarm_acks_al_ok():
    event, ack = interpret(f"BW*42*0070*AL,{POSITION}#".encode())
    assert isinstance(event, AlarmEvent)
    assert event.report.event_type == "alarm"
    assert ack == b"AL,OK"


@pytest.mark.parametrize("payload", [
    "250115,103000,A,4807.0380,N",                       # too few fields
    "250115,103000,A,abc,N,01131.0000,E,10.0,90.5",      # bad latitude
    "2501,103000,A,4807.0380,N,01131.0000,E,10.0,90.5",  # bad date
    "250115,103000,A,4807.0380,N,01131.0000,E,nan,90.5", # non-finite speed
    "251315,103000,A,4807.0380,N,01131.0000,E,10.0,90.5",  # month 13
])
def test_unparseable_position_gets_no_event_and_no_ack(payload):
    event, ack = interpret(f"BW*42*0040*UD,{payload}#".encode())
    assert event is None
    assert ack == b""


def test_out_of_range_coordinates_still_reported():
    payload = "250115,103000,A,9130.0000,N,01131.0000,E,0,0"
    event, ack = interpret(f"BW*42*0040*UD,{payload}#".encode())
    assert event.report.latitude == pytest.approx(91.5)
    assert ack == b"OK"


def test_unknown_command_has_no_ack():
    event, ack = interpret(b"BW*42*0010*CONFIG,1,2#")
    assert isinstance(event, UnknownCommandEvent)
    assert event.command == "CONFIG"
    assert event.payload == "1,2"
    assert ack == b""


def test_western_position_with_altitude():
    raw = b"BW*868900*64*UD,240115,093000,A,0622.1234,N,01047.5678,W,015.5,090.0,8,120#"
    event, ack = interpret(raw)
    report = event.report
    assert report.device_id == "868900"
    assert report.fix_time_utc == datetime(2024, 1, 15, 9, 30, 0, tzinfo=timezone.utc)
    assert report.latitude == pytest.approx(6.3687, abs=1e-4)
    assert report.longitude == pytest.approx(-10.7928, abs=1e-4)
    assert report.speed_kph == pytest.approx(28.706)
    assert report.altitude == 120.0
    assert ack == b"OK"


def test_unknown_command_without_payload():
    event, ack = interpret(b"BW*868900*10*XYZ#")
    assert isinstance(event, UnknownCommandEvent)
    assert event.command == "XYZ"
    assert event.payload == ""
    assert ack == b""


def test_decimal_satellite_count_is_accepted():
    payload = "250115,103000,A,4807.0380,N,01131.0000,E,10.0,90.5,8.0,520.0"
    event, ack = interpret(f"BW*42*0062*UD,{payload}#".encode())
    assert event.report.satellite_count == 8
    assert event.report.altitude == 520.0
    assert ack == b"OK"


@pytest.mark.parametrize("satellites, altitude", [
    ("x", "520.0"),
    ("inf", "520.0"),
    ("8", "high"),
])
def test_bad_optional_fields_keep_the_fix(satellites, altitude):
    payload = f"250115,103000,A,4807.0380,N,01131.0000,E,10.0,90.5,{satellites},{altitude}"
    event, ack = interpret(f"BW*42*0062*UD,{payload}#".encode())
    assert ack == b"OK"
    report = event.report
    assert report.latitude == pytest.approx(48.1173)
    assert report.satellite_count == (8 if satellites == "8" else None)
    assert report.altitude == (520.0 if altitude == "520.0" else None)
