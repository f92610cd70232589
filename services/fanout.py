"""
Real-time fan-out of vehicle-scoped GPS events

Delivery is push based and at-most-once: whatever subscribers are attached
when an event is published see it, nothing is queued or replayed.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
import logging

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

CHANNEL_HEARTBEAT = "heartbeat"
CHANNEL_POSITION = "position"
CHANNEL_ALARM = "alarm"
CHANNEL_NEW_DEVICE = "new-device"


class Notice(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class HeartbeatNotice(Notice):
    device_id: str
    vehicle_id: Optional[str] = None
    timestamp: datetime


class PositionNotice(Notice):
    vehicle_id: Optional[str] = None
    device_id: str
    latitude: float
    longitude: float
    speed_kph: float
    course_deg: float
    timestamp: datetime  # fix time reported by the device
    gps_valid: bool
    satellites: Optional[int] = None
    altitude: Optional[float] = None


class AlarmNotice(Notice):
    vehicle_id: Optional[str] = None
    device_id: str
    alarm_type: str = "gps_alarm"
    latitude: float
    longitude: float
    timestamp: datetime
    message: str
    severity: str = "high"


class NewDeviceNotice(Notice):
    device_id: str
    name: str
    timestamp: datetime


class FanoutSink(ABC):
    """Typed publish interface; subclasses only implement deliver()"""

    def publish_heartbeat(self, notice: HeartbeatNotice) -> None:
        self._publish(CHANNEL_HEARTBEAT, notice, notice.vehicle_id)

    def publish_position(self, notice: PositionNotice) -> None:
        self._publish(CHANNEL_POSITION, notice, notice.vehicle_id)

    def publish_alarm(self, notice: AlarmNotice) -> None:
        self._publish(CHANNEL_ALARM, notice, notice.vehicle_id)

    def publish_new_device(self, notice: NewDeviceNotice) -> None:
        self._publish(CHANNEL_NEW_DEVICE, notice, None)

    def _publish(self, channel: str, notice: Notice, vehicle_id: Optional[str]) -> None:
        message = notice.model_dump(mode="json", by_alias=True)
        try:
            self.deliver(channel, message, vehicle_id)
        except Exception as e:
            logger.error(f"Fan-out delivery failed on {channel}: {e}")

    @abstractmethod
    def deliver(self, channel: str, message: Dict[str, Any], vehicle_id: Optional[str]) -> None:
        """Push one serialised event to the current subscribers without blocking"""
        pass


class LoggingFanout(FanoutSink):
    """Fan-out that only writes events to the log"""

    def deliver(self, channel: str, message: Dict[str, Any], vehicle_id: Optional[str]) -> None:
        logger.info(f"[{channel}] vehicle={vehicle_id} {message}")


class CompositeFanout(FanoutSink):
    """Delivers every event to each child sink"""

    def __init__(self, sinks: Optional[Iterable[FanoutSink]] = None):
        self.sinks: List[FanoutSink] = list(sinks or [])

    def add_sink(self, sink: FanoutSink) -> None:
        self.sinks.append(sink)

    def deliver(self, channel: str, message: Dict[str, Any], vehicle_id: Optional[str]) -> None:
        for sink in self.sinks:
            try:
                sink.deliver(channel, message, vehicle_id)
            except Exception as e:
                logger.error(f"{type(sink).__name__} failed to deliver {channel}: {e}")
