"""
GPS Device Registry

Single source of truth that correlates tracker device ids with vehicle ids,
independent of any TCP connection. Keeps each device's last-seen time and
latest position, auto-discovers unknown devices on heartbeat, and publishes
vehicle-scoped events to the fan-out sink.

Records live for the process lifetime only. "Online" is derived from
last-seen recency and never stored.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional
import logging
import time

from pydantic import BaseModel

from services.fanout import (
    AlarmNotice,
    FanoutSink,
    HeartbeatNotice,
    LoggingFanout,
    NewDeviceNotice,
    PositionNotice,
)
from tcp_server.protocols import (
    AlarmEvent,
    HeartbeatEvent,
    PositionEvent,
    PositionReport,
    RegistryEventSink,
    UnknownCommandEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_ONLINE_WINDOW_SECONDS = 300


class RegistryError(Exception):
    """Base class for registry errors surfaced to callers"""


class AlreadyAssigned(RegistryError):
    """The device already tracks a different vehicle"""

    def __init__(self, device_id: str, vehicle_id: str, message: Optional[str] = None):
        self.device_id = device_id
        self.vehicle_id = vehicle_id
        super().__init__(message or f"Device {device_id} is already assigned to vehicle {vehicle_id}")


class VehicleAlreadyAssigned(AlreadyAssigned):
    """Another device already tracks the requested vehicle"""

    def __init__(self, vehicle_id: str, holder_device_id: str):
        super().__init__(holder_device_id, vehicle_id,
                         f"Vehicle {vehicle_id} is already tracked by device {holder_device_id}")


class DeviceNotFound(RegistryError):
    def __init__(self, device_id: str):
        self.device_id = device_id
        super().__init__(f"Device {device_id} not found")


class DeviceRecord(BaseModel):
    device_id: str
    vehicle_id: Optional[str] = None  # None: discovered but unassigned
    display_name: str
    registered_at: datetime
    last_seen_at: Optional[datetime] = None

    @property
    def status(self) -> str:
        return "assigned" if self.vehicle_id else "unassigned"


class VehicleStatus(BaseModel):
    record: DeviceRecord
    last_position: Optional[PositionReport] = None
    online: bool


class DeviceRegistry(RegistryEventSink):
    """In-memory device registry shared by every tracker connection"""

    def __init__(self, fanout: Optional[FanoutSink] = None,
                 online_window_seconds: int = DEFAULT_ONLINE_WINDOW_SECONDS,
                 enforce_unique_vehicle: bool = True,
                 clock: Optional[Callable[[], datetime]] = None):
        self.fanout = fanout or LoggingFanout()
        self.online_window = timedelta(seconds=online_window_seconds)
        self.enforce_unique_vehicle = enforce_unique_vehicle
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.devices: Dict[str, DeviceRecord] = {}
        self.latest_positions: Dict[str, PositionReport] = {}
        self.unknown_commands = 0
        self.started_at = time.monotonic()

    def now(self) -> datetime:
        return self._clock()

    # Device management

    def register(self, device_id: str, vehicle_id: str,
                 display_name: Optional[str] = None) -> DeviceRecord:
        """
        Assign a device to a vehicle, creating the record if needed.
        Raises AlreadyAssigned instead of silently moving an in-use device.
        """
        if not device_id or not vehicle_id:
            raise ValueError("Device ID and Vehicle ID are required")

        existing = self.devices.get(device_id)
        if existing and existing.vehicle_id and existing.vehicle_id != vehicle_id:
            raise AlreadyAssigned(device_id, existing.vehicle_id)

        if self.enforce_unique_vehicle:
            holder = self.find_by_vehicle(vehicle_id)
            if holder and holder.device_id != device_id:
                raise VehicleAlreadyAssigned(vehicle_id, holder.device_id)

        record = DeviceRecord(
            device_id=device_id,
            vehicle_id=vehicle_id,
            display_name=display_name or f"GPS-{device_id}",
            registered_at=existing.registered_at if existing else self.now(),
            last_seen_at=existing.last_seen_at if existing else None,
        )
        self.devices[device_id] = record
        logger.info(f"Registered GPS device {device_id} to vehicle {vehicle_id}")
        return record

    def unassign(self, vehicle_id: str) -> List[DeviceRecord]:
        """Clear the vehicle from whichever devices reference it; no-op if none do"""
        released = []
        for record in self.devices.values():
            if record.vehicle_id == vehicle_id:
                record.vehicle_id = None
                released.append(record)
                logger.info(f"Unassigned GPS device {record.device_id} from vehicle {vehicle_id}")
        return released

    def unregister(self, device_id: str) -> bool:
        """Operator deletion of a device record and its cached position"""
        self.latest_positions.pop(device_id, None)
        deleted = self.devices.pop(device_id, None) is not None
        if deleted:
            logger.info(f"Unregistered GPS device {device_id}")
        return deleted

    def get(self, device_id: str) -> Optional[DeviceRecord]:
        return self.devices.get(device_id)

    def require(self, device_id: str) -> DeviceRecord:
        record = self.devices.get(device_id)
        if record is None:
            raise DeviceNotFound(device_id)
        return record

    def list_devices(self) -> List[DeviceRecord]:
        return list(self.devices.values())

    def find_by_vehicle(self, vehicle_id: str) -> Optional[DeviceRecord]:
        """First device referencing the vehicle, in registration order"""
        for record in self.devices.values():
            if record.vehicle_id == vehicle_id:
                return record
        return None

    # Telemetry

    def handle_heartbeat(self, device_id: str, timestamp: Optional[datetime] = None) -> DeviceRecord:
        """Update last-seen, or auto-register an unseen device as unassigned"""
        timestamp = timestamp or self.now()
        record = self.devices.get(device_id)

        if record is None:
            record = DeviceRecord(
                device_id=device_id,
                display_name=f"Unassigned GPS {device_id}",
                registered_at=timestamp,
                last_seen_at=timestamp,
            )
            self.devices[device_id] = record
            logger.info(f"New unregistered GPS device detected: {device_id}")
            self.fanout.publish_new_device(NewDeviceNotice(
                device_id=device_id,
                name=record.display_name,
                timestamp=timestamp,
            ))
        else:
            self._touch(record, timestamp)
            logger.debug(f"Heartbeat from {device_id}")

        self.fanout.publish_heartbeat(HeartbeatNotice(
            device_id=device_id,
            vehicle_id=record.vehicle_id,
            timestamp=timestamp,
        ))
        return record

    def handle_position(self, report: PositionReport,
                        received_at: Optional[datetime] = None) -> Optional[DeviceRecord]:
        """Cache and publish a position; positions from unknown devices are dropped"""
        record = self.devices.get(report.device_id)
        if record is None:
            logger.warning(f"Position from unregistered device: {report.device_id}")
            return None

        self._touch(record, received_at or self.now())
        self.latest_positions[report.device_id] = report

        logger.info(
            f"Position update from {report.device_id} (Vehicle: {record.vehicle_id}): "
            f"{report.latitude:.6f}, {report.longitude:.6f}"
        )
        self.fanout.publish_position(PositionNotice(
            vehicle_id=record.vehicle_id,
            device_id=report.device_id,
            latitude=report.latitude,
            longitude=report.longitude,
            speed_kph=report.speed_kph,
            course_deg=report.course_deg,
            timestamp=report.fix_time_utc,
            gps_valid=report.gps_valid,
            satellites=report.satellite_count,
            altitude=report.altitude,
        ))
        return record

    def handle_alarm(self, alarm: PositionReport,
                     received_at: Optional[datetime] = None) -> Optional[DeviceRecord]:
        """Publish a high-severity alarm; alarms from unknown devices are dropped"""
        record = self.devices.get(alarm.device_id)
        if record is None:
            logger.warning(f"Alarm from unregistered device: {alarm.device_id}")
            return None

        self._touch(record, received_at or self.now())

        logger.warning(f"ALARM from {alarm.device_id} (Vehicle: {record.vehicle_id})")
        self.fanout.publish_alarm(AlarmNotice(
            vehicle_id=record.vehicle_id,
            device_id=alarm.device_id,
            latitude=alarm.latitude,
            longitude=alarm.longitude,
            timestamp=alarm.fix_time_utc,
            message=f"GPS Alarm from vehicle {record.vehicle_id}",
        ))
        return record

    def _touch(self, record: DeviceRecord, seen_at: datetime) -> None:
        # Never move last-seen backwards
        if record.last_seen_at is None or seen_at >= record.last_seen_at:
            record.last_seen_at = seen_at

    # Queries

    def is_online(self, device_id: str) -> bool:
        """True if the device was seen within the online window"""
        record = self.devices.get(device_id)
        if record is None or record.last_seen_at is None:
            return False
        return self.now() - record.last_seen_at <= self.online_window

    def status_for(self, vehicle_id: str) -> Optional[VehicleStatus]:
        """Reverse lookup by vehicle; None when no device references it"""
        record = self.find_by_vehicle(vehicle_id)
        if record is None:
            return None
        return VehicleStatus(
            record=record,
            last_position=self.latest_positions.get(record.device_id),
            online=self.is_online(record.device_id),
        )

    def latest_position(self, device_id: str) -> Optional[PositionReport]:
        return self.latest_positions.get(device_id)

    def get_stats(self) -> Dict[str, float]:
        return {
            'total_devices': len(self.devices),
            'online_devices': sum(1 for device_id in self.devices if self.is_online(device_id)),
            'total_positions': len(self.latest_positions),
            'unknown_commands': self.unknown_commands,
            'uptime_seconds': time.monotonic() - self.started_at,
        }

    # RegistryEventSink

    def on_heartbeat(self, event: HeartbeatEvent) -> None:
        self.handle_heartbeat(event.device_id, event.timestamp)

    def on_position(self, event: PositionEvent) -> None:
        self.handle_position(event.report, event.received_at)

    def on_alarm(self, event: AlarmEvent) -> None:
        self.handle_alarm(event.report, event.received_at)

    def on_unknown(self, event: UnknownCommandEvent) -> None:
        self.unknown_commands += 1
        super().on_unknown(event)
