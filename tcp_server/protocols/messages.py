"""
Typed messages produced by the BW32 protocol layer
"""
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel


class Command(str, Enum):
    """Command tokens understood by the interpreter"""
    HEARTBEAT = "LK"
    POSITION_UPDATE = "UD"
    POSITION_UPDATE_V2 = "UD2"
    ALARM = "AL"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_token(cls, token: str) -> "Command":
        try:
            return cls(token)
        except ValueError:
            return cls.UNKNOWN


class DeviceFrame(BaseModel):
    """One '#'-terminated wire frame, split into its structural parts"""
    device_id: str
    declared_length: Optional[int] = None  # advisory only, framing is delimiter based
    command: Command
    command_token: str
    payload: str = ""
    raw: str

    class Config:
        frozen = True


class PositionReport(BaseModel):
    """Decoded fix from a UD / UD2 / AL payload"""
    device_id: str
    fix_time_utc: datetime
    latitude: float
    longitude: float
    speed_kph: float
    course_deg: float
    gps_valid: bool
    satellite_count: Optional[int] = None
    altitude: Optional[float] = None
    event_type: str = "position"
    raw: str = ""


class HeartbeatEvent(BaseModel):
    device_id: str
    timestamp: datetime


class PositionEvent(BaseModel):
    report: PositionReport
    received_at: datetime

    @property
    def device_id(self) -> str:
        return self.report.device_id


class AlarmEvent(BaseModel):
    report: PositionReport
    received_at: datetime

    @property
    def device_id(self) -> str:
        return self.report.device_id


class UnknownCommandEvent(BaseModel):
    device_id: str
    command: str
    payload: str = ""
    raw: str = ""


DeviceEvent = Union[HeartbeatEvent, PositionEvent, AlarmEvent, UnknownCommandEvent]
