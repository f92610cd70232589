"""
BW32 Protocol Handler
Interprets BW ASCII frames (Benway protocol family): heartbeats, position
reports and alarms
"""
from datetime import datetime, timezone
from typing import List, Optional, Tuple
import logging
import math

from .base import BaseProtocolHandler
from .messages import (
    AlarmEvent,
    Command,
    DeviceEvent,
    DeviceFrame,
    HeartbeatEvent,
    PositionEvent,
    PositionReport,
    UnknownCommandEvent,
)

logger = logging.getLogger(__name__)

KNOTS_TO_KPH = 1.852


class BW32ProtocolHandler(BaseProtocolHandler):
    """Handler for the BW32 protocol (BW*ID*LEN*CMD,payload# format)"""

    # Acknowledgements, written back verbatim
    ACK_HEARTBEAT = b"ON"
    ACK_POSITION = b"OK"
    ACK_ALARM = b"AL,OK"

    # date, time, validity, lat, N/S, lon, E/W, speed, course
    MIN_POSITION_FIELDS = 9

    def interpret(self, frame: DeviceFrame,
                  received_at: Optional[datetime] = None) -> Tuple[Optional[DeviceEvent], bytes]:
        received_at = received_at or datetime.now(timezone.utc)
        command = frame.command

        if command is Command.HEARTBEAT:
            return HeartbeatEvent(device_id=frame.device_id, timestamp=received_at), self.ACK_HEARTBEAT

        if command in (Command.POSITION_UPDATE, Command.POSITION_UPDATE_V2):
            report = self.parse_position(frame.device_id, frame.payload)
            if report is None:
                return None, b""
            return PositionEvent(report=report, received_at=received_at), self.ACK_POSITION

        if command is Command.ALARM:
            report = self.parse_position(frame.device_id, frame.payload, event_type='alarm')
            if report is None:
                return None, b""
            return AlarmEvent(report=report, received_at=received_at), self.ACK_ALARM

        logger.warning(f"Unknown command {frame.command_token!r} from {frame.device_id}")
        return UnknownCommandEvent(
            device_id=frame.device_id,
            command=frame.command_token,
            payload=frame.payload,
            raw=frame.raw,
        ), b""

    def parse_position(self, device_id: str, payload: str,
                       event_type: str = 'position') -> Optional[PositionReport]:
        """
        Decode a position payload:
        YYMMDD,hhmmss,A|V,DDMM.MMMM,N|S,DDDMM.MMMM,E|W,speedKnots,course[,sats][,alt]
        Returns None when a mandatory field is missing or a number does not parse.
        """
        fields = payload.split(',')
        if len(fields) < self.MIN_POSITION_FIELDS:
            logger.warning(f"Invalid position data length for {device_id}: {payload[:100]!r}")
            return None

        try:
            (date_str, time_str, validity, lat_str, lat_hemi,
             lon_str, lon_hemi, speed_str, course_str) = fields[:self.MIN_POSITION_FIELDS]

            fix_time = self.parse_fix_time(date_str, time_str)
            latitude = self.ddmm_to_decimal(float(lat_str), lat_hemi)
            longitude = self.ddmm_to_decimal(float(lon_str), lon_hemi)
            speed_kph = self._finite(speed_str) * KNOTS_TO_KPH
            course_deg = self._finite(course_str)

            satellites = self._optional_field(fields, 9, self._count)
            altitude = self._optional_field(fields, 10, self._finite)

        except (ValueError, IndexError, OverflowError) as e:
            logger.warning(f"Position parse error for {device_id}: {e}")
            return None

        if not self.validate_coordinates(latitude, longitude):
            logger.warning(f"Out of range coordinates from {device_id}: {latitude}, {longitude}")

        return PositionReport(
            device_id=device_id,
            fix_time_utc=fix_time,
            latitude=latitude,
            longitude=longitude,
            speed_kph=speed_kph,
            course_deg=course_deg,
            gps_valid=validity == 'A',
            satellite_count=satellites,
            altitude=altitude,
            event_type=event_type,
            raw=payload,
        )

    @staticmethod
    def parse_fix_time(date_str: str, time_str: str) -> datetime:
        """YYMMDD + hhmmss, always 20YY and always UTC"""
        if len(date_str) != 6 or not date_str.isdigit():
            raise ValueError(f"Invalid date: {date_str!r}")
        if len(time_str) != 6 or not time_str.isdigit():
            raise ValueError(f"Invalid time: {time_str!r}")

        return datetime(
            2000 + int(date_str[0:2]), int(date_str[2:4]), int(date_str[4:6]),
            int(time_str[0:2]), int(time_str[2:4]), int(time_str[4:6]),
            tzinfo=timezone.utc,
        )

    @staticmethod
    def _finite(value: str) -> float:
        number = float(value)
        if not math.isfinite(number):
            raise ValueError(f"Non-finite number: {value!r}")
        return number

    @classmethod
    def _count(cls, value: str) -> int:
        """Satellite counts sometimes arrive as '8.0'"""
        return int(cls._finite(value))

    @staticmethod
    def _optional_field(fields: List[str], index: int, convert):
        """Optional trailing fields never invalidate the fix, bad ones read as absent"""
        if len(fields) <= index or not fields[index].strip():
            return None
        try:
            return convert(fields[index])
        except (ValueError, OverflowError):
            logger.debug(f"Ignoring unparseable optional field {index}: {fields[index]!r}")
            return None
