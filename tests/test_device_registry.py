"""Tests for the in-memory device registry."""
from datetime import datetime, timedelta, timezone

import pytest

from services.fanout import FanoutSink
from services.device_registry import (
    AlreadyAssigned,
    DeviceNotFound,
    DeviceRegistry,
    VehicleAlreadyAssigned,
)
from tcp_server.protocols import (
    AlarmEvent,
    HeartbeatEvent,
    PositionEvent,
    PositionReport,
    UnknownCommandEvent,
)

from conftest import T0

FIX_TIME = datetime(2025, 1, 15, 10, 29, 55, tzinfo=timezone.utc)


def make_report(device_id="D1", event_type="position", lat=48.1173, lon=11.5167):
    return PositionReport(
        device_id=device_id,
        fix_time_utc=FIX_TIME,
        latitude=lat,
        longitude=lon,
        speed_kph=18.52,
        course_deg=90.5,
        gps_valid=True,
        satellite_count=8,
        event_type=event_type,
    )


class TestRegistration:
    def test_register_new_device(self, registry):
        record = registry.register("D1", "V1")
        assert record.vehicle_id == "V1"
        assert record.display_name == "GPS-D1"
        assert record.status == "assigned"
        assert record.registered_at == T0
        assert record.last_seen_at is None

    def test_register_is_idempotent_for_same_vehicle(self, registry, clock):
        registry.register("D1", "V1", "Truck 1")
        clock.advance(60)
        record = registry.register("D1", "V1", "Truck 1 renamed")
        assert record.registered_at == T0
        assert record.display_name == "Truck 1 renamed"
        assert len(registry.list_devices()) == 1

    def test_device_assigned_elsewhere_is_rejected(self, registry):
        registry.register("D1", "V1")
        with pytest.raises(AlreadyAssigned) as exc:
            registry.register("D1", "V2")
        assert exc.value.vehicle_id == "V1"
        assert registry.get("D1").vehicle_id == "V1"

    def test_unassigned_device_can_be_registered_to_new_vehicle(self, registry):
        registry.register("D1", "V1")
        assert [r.device_id for r in registry.unassign("V1")] == ["D1"]

        record = registry.register("D1", "V2")
        assert record.vehicle_id == "V2"
        assert registry.find_by_vehicle("V2").device_id == "D1"
        assert registry.find_by_vehicle("V1") is None

    def test_vehicle_tracked_by_another_device_is_rejected(self, registry):
        registry.register("D1", "V1")
        with pytest.raises(VehicleAlreadyAssigned) as exc:
            registry.register("D2", "V1")
        assert exc.value.device_id == "D1"
        assert registry.get("D2") is None

    def test_unique_vehicle_can_be_disabled(self, fanout, clock):
        registry = DeviceRegistry(fanout=fanout, enforce_unique_vehicle=False, clock=clock)
        registry.register("D1", "V1")
        registry.register("D2", "V1")
        assert registry.find_by_vehicle("V1").device_id == "D1"

    def test_missing_ids_raise_value_error(self, registry):
        with pytest.raises(ValueError):
            registry.register("", "V1")
        with pytest.raises(ValueError):
            registry.register("D1", "")

    def test_register_discovered_device_keeps_history(self, registry, clock):
        registry.handle_heartbeat("D1")
        clock.advance(30)
        record = registry.register("D1", "V1")
        assert record.registered_at == T0
        assert record.last_seen_at == T0
        assert record.vehicle_id == "V1"

    def test_unassign_releases_vehicle(self, registry):
        registry.register("D1", "V1")
        released = registry.unassign("V1")
        assert [r.device_id for r in released] == ["D1"]
        assert registry.get("D1").vehicle_id is None
        assert registry.get("D1").status == "unassigned"

    def test_unassign_unknown_vehicle_is_noop(self, registry):
        assert registry.unassign("nobody") == []

    def test_unregister(self, registry):
        registry.register("D1", "V1")
        registry.handle_position(make_report())
        assert registry.unregister("D1") is True
        assert registry.get("D1") is None
        assert registry.latest_position("D1") is None
        assert registry.unregister("D1") is False

    def test_require_unknown_device(self, registry):
        with pytest.raises(DeviceNotFound):
            registry.require("missing")


class TestTelemetry:
    def test_heartbeat_from_unknown_device_auto_registers(self, registry, fanout):
        record = registry.handle_heartbeat("D9")
        assert record.vehicle_id is None
        assert record.display_name == "Unassigned GPS D9"
        assert record.last_seen_at == T0

        assert fanout.channels == ["new-device", "heartbeat"]
        assert fanout.last("new-device") == {
            "deviceId": "D9",
            "name": "Unassigned GPS D9",
            "timestamp": "2025-01-15T10:30:00Z",
        }
        assert fanout.last("heartbeat")["vehicleId"] is None

    def test_heartbeat_from_known_device_touches_last_seen(self, registry, fanout, clock):
        registry.register("D1", "V1")
        clock.advance(10)
        registry.handle_heartbeat("D1", clock())
        assert registry.get("D1").last_seen_at == T0 + timedelta(seconds=10)
        assert fanout.channels == ["heartbeat"]
        assert fanout.messages[0][2] == "V1"

    def test_position_from_unknown_device_is_dropped(self, registry, fanout):
        assert registry.handle_position(make_report("ghost")) is None
        assert registry.get("ghost") is None
        assert registry.latest_position("ghost") is None
        assert fanout.messages == []

    def test_position_is_cached_and_published(self, registry, fanout, clock):
        registry.register("D1", "V1")
        received = clock.advance(5)
        registry.handle_position(make_report(), received)

        assert registry.latest_position("D1").latitude == pytest.approx(48.1173)
        # last seen is the receive time, not the device fix time
        assert registry.get("D1").last_seen_at == received

        channel, message, vehicle_id = fanout.messages[-1]
        assert channel == "position"
        assert vehicle_id == "V1"
        assert message["vehicleId"] == "V1"
        assert message["speedKph"] == pytest.approx(18.52)
        assert message["timestamp"] == "2025-01-15T10:29:55Z"
        assert message["satellites"] == 8

    def test_position_for_unassigned_device_is_published_without_vehicle(self, registry, fanout):
        registry.handle_heartbeat("D1")
        registry.handle_position(make_report())
        assert fanout.last("position")["vehicleId"] is None

    def test_alarm_is_published_but_not_cached(self, registry, fanout):
        registry.register("D1", "V1")
        registry.handle_alarm(make_report(event_type="alarm"))

        alarm = fanout.last("alarm")
        assert alarm["alarmType"] == "gps_alarm"
        assert alarm["severity"] == "high"
        assert alarm["message"] == "GPS Alarm from vehicle V1"
        assert registry.latest_position("D1") is None

    def test_alarm_from_unknown_device_is_dropped(self, registry, fanout):
        assert registry.handle_alarm(make_report("ghost", event_type="alarm")) is None
        assert fanout.messages == []

    def test_last_seen_never_moves_backwards(self, registry, clock):
        registry.register("D1", "V1")
        registry.handle_heartbeat("D1", T0 + timedelta(seconds=60))
        registry.handle_position(make_report(), T0 + timedelta(seconds=30))
        assert registry.get("D1").last_seen_at == T0 + timedelta(seconds=60)


class TestQueries:
    def test_online_window_is_inclusive(self, registry, clock):
        registry.handle_heartbeat("D1")
        clock.advance(300)
        assert registry.is_online("D1") is True
        clock.advance(1)
        assert registry.is_online("D1") is False

    def test_never_seen_device_is_offline(self, registry):
        registry.register("D1", "V1")
        assert registry.is_online("D1") is False
        assert registry.is_online("missing") is False

    def test_status_for_vehicle(self, registry):
        assert registry.status_for("V1") is None

        registry.register("D1", "V1")
        registry.handle_position(make_report())
        status = registry.status_for("V1")
        assert status.record.device_id == "D1"
        assert status.online is True
        assert status.last_position.course_deg == 90.5

    def test_stats(self, registry):
        registry.register("D1", "V1")
        registry.handle_heartbeat("D2")
        registry.handle_position(make_report())
        stats = registry.get_stats()
        assert stats["total_devices"] == 2
        assert stats["online_devices"] == 2
        assert stats["total_positions"] == 1
        assert stats["unknown_commands"] == 0
        assert stats["uptime_seconds"] >= 0


class TestDispatch:
    def test_events_route_to_handlers(self, registry, fanout, clock):
        registry.dispatch(HeartbeatEvent(device_id="D1", timestamp=clock()))
        registry.dispatch(PositionEvent(report=make_report(), received_at=clock()))
        registry.dispatch(AlarmEvent(report=make_report(event_type="alarm"), received_at=clock()))
        assert fanout.channels == ["new-device", "heartbeat", "position", "alarm"]

    def test_unknown_commands_are_counted(self, registry):
        registry.dispatch(UnknownCommandEvent(device_id="D1", command="CONFIG"))
        assert registry.get_stats()["unknown_commands"] == 1
        assert registry.get("D1") is None

    def test_unsupported_event_type(self, registry):
        with pytest.raises(TypeError):
            registry.dispatch("not an event")


def test_fanout_failure_does_not_break_ingestion(clock):
    class BrokenFanout(FanoutSink):
        def deliver(self, channel, message, vehicle_id):
            raise RuntimeError("subscriber gone")

    registry = DeviceRegistry(fanout=BrokenFanout(), clock=clock)
    record = registry.handle_heartbeat("D1")
    assert record.device_id == "D1"
