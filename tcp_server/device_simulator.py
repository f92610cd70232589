#!/usr/bin/env python3
"""
BW32 GPS Device Simulator
Simulates a tracker sending heartbeats and position updates over TCP
"""
import asyncio
import logging
import math
import random
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

KNOTS_PER_KPH = 1 / 1.852
ALARM_PROBABILITY = 0.02  # per location update


def format_ddmm(value: float, degree_digits: int) -> str:
    """Decimal degrees to (D)DDMM.MMMM, sign dropped"""
    value = abs(value)
    degrees = int(value)
    minutes = round((value - degrees) * 60, 4)
    if minutes >= 60:
        degrees += 1
        minutes -= 60
    return f"{degrees:0{degree_digits}d}{minutes:07.4f}"


def build_frame(device_id: str, command: str, payload: str = "") -> bytes:
    """Wrap a command in BW*<id>*<len>*<CMD>,<payload># framing"""
    body = f"{command},{payload}" if payload else command
    return f"BW*{device_id}*{len(body):04d}*{body}#".encode('ascii')


def build_position_payload(when: datetime, lat: float, lon: float, speed_kph: float,
                           course: float, satellites: Optional[int] = None,
                           altitude: Optional[float] = None, valid: bool = True) -> str:
    fields = [
        when.strftime("%y%m%d"),
        when.strftime("%H%M%S"),
        "A" if valid else "V",
        format_ddmm(lat, 2), "N" if lat >= 0 else "S",
        format_ddmm(lon, 3), "E" if lon >= 0 else "W",
        f"{speed_kph * KNOTS_PER_KPH:.2f}",
        f"{course:.1f}",
    ]
    if satellites is not None:
        fields.append(str(satellites))
        if altitude is not None:
            fields.append(f"{altitude:.1f}")
    return ",".join(fields)


class GPSDeviceSimulator:
    """Simulates a BW32 tracker driving around"""

    def __init__(self, device_id: str = "865028000000001", host: str = "localhost",
                 port: int = 50100, interval: float = 10.0):
        self.device_id = device_id
        self.host = host
        self.port = port
        self.interval = interval
        self.reader = None
        self.writer = None
        self.connected = False

        # Starting position (Zurich area)
        self.lat = 47.3769 + random.uniform(-0.01, 0.01)
        self.lon = 8.5417 + random.uniform(-0.01, 0.01)
        self.altitude = 408.0
        self.speed = 0.0  # km/h
        self.heading = random.uniform(0, 360)
        self.satellites = 8

        self.message_count = 0

    async def connect(self):
        """Connect to the GPS TCP server and announce ourselves"""
        logger.info(f"Device {self.device_id}: Connecting to {self.host}:{self.port}...")
        self.reader, self.writer = await asyncio.open_connection(self.host, self.port)
        self.connected = True
        logger.info(f"Device {self.device_id}: Connected successfully")
        await self.send_heartbeat()

    async def disconnect(self):
        if self.writer:
            self.writer.close()
            await self.writer.wait_closed()
            self.connected = False
            logger.info(f"Device {self.device_id}: Disconnected")

    async def send_frame(self, frame: bytes, expect_ack: bool = True) -> Optional[str]:
        """Send a frame and wait briefly for the acknowledgement"""
        if not self.connected:
            return None

        self.writer.write(frame)
        await self.writer.drain()
        self.message_count += 1
        logger.debug(f"Device {self.device_id} TX: {frame!r}")

        if not expect_ack:
            return None
        try:
            data = await asyncio.wait_for(self.reader.read(1024), timeout=1.0)
        except asyncio.TimeoutError:
            return None
        response = data.decode('ascii', errors='replace')
        logger.debug(f"Device {self.device_id} RX: {response}")
        return response

    async def send_heartbeat(self) -> Optional[str]:
        return await self.send_frame(build_frame(self.device_id, "LK"))

    async def send_location(self, command: str = "UD") -> Optional[str]:
        self.update_position()
        payload = build_position_payload(
            datetime.now(timezone.utc), self.lat, self.lon, self.speed, self.heading,
            satellites=self.satellites, altitude=self.altitude,
        )
        logger.info(f"Device {self.device_id}: Sent location ({self.lat:.6f}, {self.lon:.6f}) "
                    f"speed={self.speed:.1f}km/h heading={self.heading:.1f}")
        return await self.send_frame(build_frame(self.device_id, command, payload))

    async def send_alarm(self) -> Optional[str]:
        payload = build_position_payload(
            datetime.now(timezone.utc), self.lat, self.lon, self.speed, self.heading,
        )
        return await self.send_frame(build_frame(self.device_id, "AL", payload))

    def update_position(self):
        """Drift speed and heading, then move for one interval"""
        if random.random() < 0.1:
            self.speed = max(0.0, min(90.0, self.speed + random.uniform(-15, 25)))
            self.heading = (self.heading + random.uniform(-30, 30)) % 360

        if self.speed > 0:
            distance = (self.speed * 1000 / 3600) * self.interval
            self.lat += (distance * math.cos(math.radians(self.heading))) / 111111.0
            self.lon += (distance * math.sin(math.radians(self.heading))) / (
                111111.0 * math.cos(math.radians(self.lat)))

        self.altitude = max(0.0, self.altitude + random.uniform(-2, 2))
        self.satellites = max(4, min(12, self.satellites + random.randint(-1, 1)))

    async def run(self, duration: Optional[int] = None):
        """Run for duration seconds, or until interrupted"""
        loop = asyncio.get_running_loop()
        started = loop.time()
        heartbeat_counter = 0

        try:
            await self.connect()
            while self.connected:
                if duration and loop.time() - started > duration:
                    logger.info(f"Device {self.device_id}: Simulation duration reached")
                    break

                await self.send_location()

                if random.random() < ALARM_PROBABILITY:
                    await self.send_alarm()

                # Heartbeat every 6 location updates
                heartbeat_counter += 1
                if heartbeat_counter >= 6:
                    await self.send_heartbeat()
                    heartbeat_counter = 0

                await asyncio.sleep(self.interval)
        except (ConnectionError, OSError) as e:
            logger.error(f"Device {self.device_id}: Simulation error - {e}")
        finally:
            await self.disconnect()
            logger.info(f"Device {self.device_id}: Messages sent: {self.message_count}")


async def run_multiple_devices(num_devices: int, host: str, port: int,
                               interval: float, duration: Optional[int]):
    devices = [
        GPSDeviceSimulator(f"8650280{i:08d}", host, port, interval)
        for i in range(num_devices)
    ]
    await asyncio.gather(*(device.run(duration) for device in devices))


async def main():
    import argparse

    parser = argparse.ArgumentParser(description='BW32 GPS Device Simulator')
    parser.add_argument('--host', default='localhost', help='Server host')
    parser.add_argument('--port', type=int, default=50100, help='Server port')
    parser.add_argument('--device-id', default='865028000000001', help='Device ID')
    parser.add_argument('--devices', type=int, default=1, help='Number of devices to simulate')
    parser.add_argument('--interval', type=float, default=10.0, help='Seconds between updates')
    parser.add_argument('--duration', type=int, help='Simulation duration in seconds')

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger.info(f"Starting BW32 device simulator(s) against {args.host}:{args.port}")

    if args.devices > 1:
        await run_multiple_devices(args.devices, args.host, args.port, args.interval, args.duration)
    else:
        simulator = GPSDeviceSimulator(args.device_id, args.host, args.port, args.interval)
        await simulator.run(args.duration)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
