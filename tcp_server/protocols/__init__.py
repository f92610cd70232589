"""
GPS Tracker Protocol Handlers
"""
from .base import BaseProtocolHandler, RegistryEventSink
from .bw32 import BW32ProtocolHandler, KNOTS_TO_KPH
from .framing import BW32FrameDecoder, FRAME_PREFIX, MAX_BUFFER_SIZE
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

__all__ = [
    'AlarmEvent',
    'BaseProtocolHandler',
    'BW32FrameDecoder',
    'BW32ProtocolHandler',
    'Command',
    'DeviceEvent',
    'DeviceFrame',
    'FRAME_PREFIX',
    'HeartbeatEvent',
    'KNOTS_TO_KPH',
    'MAX_BUFFER_SIZE',
    'PositionEvent',
    'PositionReport',
    'RegistryEventSink',
    'UnknownCommandEvent',
]
