"""Shared test fixtures."""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from services.device_registry import DeviceRegistry
from services.fanout import FanoutSink

T0 = datetime(2025, 1, 15, 10, 30, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


class RecordingFanout(FanoutSink):
    """Keeps every delivered message for assertions"""

    def __init__(self):
        self.messages: List[Tuple[str, Dict[str, Any], Optional[str]]] = []

    def deliver(self, channel, message, vehicle_id):
        self.messages.append((channel, message, vehicle_id))

    @property
    def channels(self) -> List[str]:
        return [channel for channel, _, _ in self.messages]

    def last(self, channel: str) -> Dict[str, Any]:
        return [message for ch, message, _ in self.messages if ch == channel][-1]


class FakeTransport:
    def __init__(self, peername=('10.0.0.5', 40000)):
        self.peername = peername
        self.written: List[bytes] = []
        self.closed = False

    def get_extra_info(self, name, default=None):
        if name == 'peername':
            return self.peername
        return default

    def write(self, data: bytes):
        self.written.append(data)

    def is_closing(self) -> bool:
        return self.closed

    def close(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fanout():
    return RecordingFanout()


@pytest.fixture
def registry(fanout, clock):
    return DeviceRegistry(fanout=fanout, online_window_seconds=300, clock=clock)
