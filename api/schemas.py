from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from services.device_registry import DeviceRecord, VehicleStatus
from tcp_server.protocols import PositionReport


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class DeviceRegisterRequest(CamelModel):
    device_id: str = Field(..., min_length=1, max_length=64)
    vehicle_id: str = Field(..., min_length=1, max_length=100)
    name: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "deviceId": "865028000000001",
                "vehicleId": "TRUCK-042",
                "name": "Truck 42 tracker"
            }
        }


class DeviceResponse(CamelModel):
    device_id: str
    vehicle_id: Optional[str] = None
    name: str
    status: str
    registered_at: datetime
    last_seen_at: Optional[datetime] = None
    online: bool

    @classmethod
    def from_record(cls, record: DeviceRecord, online: bool) -> "DeviceResponse":
        return cls(
            device_id=record.device_id,
            vehicle_id=record.vehicle_id,
            name=record.display_name,
            status=record.status,
            registered_at=record.registered_at,
            last_seen_at=record.last_seen_at,
            online=online,
        )


class DeviceListResponse(CamelModel):
    devices: List[DeviceResponse]
    total: int


class PositionResponse(CamelModel):
    device_id: str
    vehicle_id: Optional[str] = None
    latitude: float
    longitude: float
    speed_kph: float
    course_deg: float
    timestamp: datetime  # device fix time, UTC
    gps_valid: bool
    satellites: Optional[int] = None
    altitude: Optional[float] = None

    @classmethod
    def from_report(cls, report: PositionReport, vehicle_id: Optional[str]) -> "PositionResponse":
        return cls(
            device_id=report.device_id,
            vehicle_id=vehicle_id,
            latitude=report.latitude,
            longitude=report.longitude,
            speed_kph=report.speed_kph,
            course_deg=report.course_deg,
            timestamp=report.fix_time_utc,
            gps_valid=report.gps_valid,
            satellites=report.satellite_count,
            altitude=report.altitude,
        )


class VehicleStatusResponse(CamelModel):
    vehicle_id: str
    device: DeviceResponse
    last_position: Optional[PositionResponse] = None
    online: bool

    @classmethod
    def from_status(cls, vehicle_id: str, status: VehicleStatus) -> "VehicleStatusResponse":
        position = None
        if status.last_position is not None:
            position = PositionResponse.from_report(status.last_position, vehicle_id)
        return cls(
            vehicle_id=vehicle_id,
            device=DeviceResponse.from_record(status.record, status.online),
            last_position=position,
            online=status.online,
        )


class UnassignResponse(CamelModel):
    vehicle_id: str
    released_devices: List[str]


class DeleteResponse(CamelModel):
    success: bool


class RegistryStatsResponse(CamelModel):
    total_devices: int
    online_devices: int
    total_positions: int
    unknown_commands: int
    uptime_seconds: float
