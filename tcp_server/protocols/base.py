"""
Base classes for GPS tracker protocol handlers and event consumers
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Tuple
import logging
import math

from .messages import (
    AlarmEvent,
    DeviceEvent,
    DeviceFrame,
    HeartbeatEvent,
    PositionEvent,
    UnknownCommandEvent,
)

logger = logging.getLogger(__name__)


class BaseProtocolHandler(ABC):
    """Base class for GPS tracker protocol handlers"""

    @abstractmethod
    def interpret(self, frame: DeviceFrame,
                  received_at: Optional[datetime] = None) -> Tuple[Optional[DeviceEvent], bytes]:
        """
        Turn a frame into at most one event plus the acknowledgement to write back.
        An empty ack means nothing is sent.
        """
        pass

    def validate_coordinates(self, lat: float, lon: float) -> bool:
        """Validate GPS coordinates"""
        return -90 <= lat <= 90 and -180 <= lon <= 180

    def ddmm_to_decimal(self, raw: float, hemisphere: str) -> float:
        """
        Convert a degrees-minutes value (DDMM.MMMM or DDDMM.MMMM read as a
        number) to signed decimal degrees
        """
        if not math.isfinite(raw):
            raise ValueError(f"Invalid coordinate: {raw}")
        degrees = math.floor(raw / 100)
        minutes = raw - degrees * 100
        decimal = degrees + minutes / 60.0
        if hemisphere in ('S', 'W'):
            decimal = -decimal
        return decimal


class RegistryEventSink(ABC):
    """Consumer of decoded tracker events, one method per event kind"""

    @abstractmethod
    def on_heartbeat(self, event: HeartbeatEvent) -> None:
        pass

    @abstractmethod
    def on_position(self, event: PositionEvent) -> None:
        pass

    @abstractmethod
    def on_alarm(self, event: AlarmEvent) -> None:
        pass

    def on_unknown(self, event: UnknownCommandEvent) -> None:
        logger.info(f"Unknown command {event.command!r} from {event.device_id}: {event.payload[:100]}")

    def dispatch(self, event: DeviceEvent) -> None:
        """Route an event to the matching handler"""
        if isinstance(event, HeartbeatEvent):
            self.on_heartbeat(event)
        elif isinstance(event, PositionEvent):
            self.on_position(event)
        elif isinstance(event, AlarmEvent):
            self.on_alarm(event)
        elif isinstance(event, UnknownCommandEvent):
            self.on_unknown(event)
        else:
            raise TypeError(f"Unsupported event type: {type(event).__name__}")
