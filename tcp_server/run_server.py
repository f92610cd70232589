#!/usr/bin/env python3
"""
Run the GPS TCP Server without the HTTP API
Usage: python tcp_server/run_server.py [port]
"""
import sys
import os
import asyncio
import logging
import uuid

# Add parent directory to path so imports work
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import settings
from logs.logconfig import configure_logging
from services.device_registry import DeviceRegistry
from services.fanout import CompositeFanout, LoggingFanout
from services.redis_fanout import RedisFanout
from tcp_server.gps_tcp_server import GPSTrackerTCPServer


async def main():
    """Run the GPS TCP server"""

    # Get port from command line or use configured default
    port = int(sys.argv[1]) if len(sys.argv) > 1 else settings.GPS_TCP_PORT

    configure_logging(session_id_run=str(uuid.uuid4()))
    logger = logging.getLogger(__name__)

    fanout = CompositeFanout([LoggingFanout()])
    redis_fanout = None
    if settings.REDIS_PUBSUB_ENABLED:
        redis_fanout = RedisFanout(settings.get_redis_url(), settings.REDIS_CHANNEL_PREFIX)
        if await redis_fanout.connect():
            fanout.add_sink(redis_fanout)

    registry = DeviceRegistry(
        fanout=fanout,
        online_window_seconds=settings.DEVICE_ONLINE_WINDOW_SECONDS,
        enforce_unique_vehicle=settings.ENFORCE_UNIQUE_VEHICLE,
    )

    server = GPSTrackerTCPServer(
        registry,
        host=settings.GPS_TCP_HOST,
        port=port,
        max_buffer_size=settings.GPS_MAX_BUFFER_SIZE,
    )

    logger.info(f"Starting GPS TCP Server on port {port}")
    logger.info("Press Ctrl+C to stop")

    try:
        await server.run()
    except OSError as e:
        logger.critical(f"Could not listen on {settings.GPS_TCP_HOST}:{port}: {e}")
        raise SystemExit(1)
    finally:
        if redis_fanout:
            await redis_fanout.disconnect()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nServer stopped")
