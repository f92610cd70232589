"""
GPS Tracker TCP Server
Accepts BW32 tracker connections, writes acknowledgements and hands decoded
events to the device registry
"""
import asyncio
import logging
import signal
import socket
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from tcp_server.protocols import (
    BW32FrameDecoder,
    BW32ProtocolHandler,
    DeviceFrame,
    MAX_BUFFER_SIZE,
    RegistryEventSink,
)

logger = logging.getLogger(__name__)

DEFAULT_PORT = 50100
LOCAL_PEERS = ('127.0.0.1', 'localhost', '::1')


class GPSClientProtocol(asyncio.Protocol):
    """
    One tracker connection. Owns the byte buffer, latches the first device
    id seen for diagnostics and writes acks as frames are processed.
    Frames are handled synchronously, in arrival order.
    """

    def __init__(self, server: "GPSTrackerTCPServer"):
        self.server = server
        self.transport = None
        self.device_id = None
        self.buffer = b""
        self.peername = None
        self.conn_id = None
        self.connected_at = None
        self.last_activity = time.time()
        self.message_count = 0

    def connection_made(self, transport):
        """Handle new connection"""
        self.transport = transport
        self.peername = transport.get_extra_info('peername')
        self.conn_id = f"{self.peername}_{time.time()}"
        self.connected_at = datetime.now(timezone.utc)

        # Set socket options for reliability
        sock = transport.get_extra_info('socket')
        if sock is not None:
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            except OSError as e:
                logger.debug(f"Could not set socket options for {self.peername}: {e}")

        self.server.active_connections[self.conn_id] = self

        if self.peername and self.peername[0] not in LOCAL_PEERS:
            logger.info(f"GPS tracker connected from {self.peername} "
                        f"(total: {len(self.server.active_connections)})")
        else:
            logger.debug(f"Local connection from {self.peername}")

    def connection_lost(self, exc):
        """Drop the buffer and the connection entry; the registry keeps the device"""
        if exc:
            logger.info(f"GPS tracker disconnected from {self.peername} "
                        f"(Device: {self.device_id or 'Unknown'}): {exc}")
        else:
            logger.info(f"GPS tracker disconnected from {self.peername} "
                        f"(Device: {self.device_id or 'Unknown'})")

        self.buffer = b""
        self.server.active_connections.pop(self.conn_id, None)

    def data_received(self, data):
        """Handle incoming data from GPS tracker"""
        self.last_activity = time.time()
        logger.debug(f"Raw data from {self.peername}: {data[:100]!r}")

        decoder = self.server.frame_decoder
        try:
            raw_frames, self.buffer = decoder.split_frames(self.buffer + data)
        except Exception:
            logger.exception(f"Error buffering data from {self.peername}")
            self.buffer = b""
            self.server.stats['errors'] += 1
            return

        for raw in raw_frames:
            self.server.stats['frames_received'] += 1
            try:
                frame = decoder.parse_frame(raw)
            except Exception:
                logger.exception(f"Error parsing frame from {self.peername}")
                frame = None
            if frame is None:
                self.server.stats['malformed_frames'] += 1
                continue
            self.process_frame(frame)

    def process_frame(self, frame: DeviceFrame):
        """Interpret one frame, ack it and pass the event on. Errors stay local to the frame."""
        try:
            self.message_count += 1
            self._latch_device(frame.device_id)
            logger.debug(f"Message from {frame.device_id}: {frame.command_token} - {frame.payload[:100]}")

            event, ack = self.server.protocol_handler.interpret(frame)
            if ack:
                self.send_ack(ack, frame.device_id)
            if event is not None:
                self.server.event_sink.dispatch(event)

        except Exception:
            logger.exception(f"Error processing frame from {self.peername}: {frame.raw[:100]}")
            self.server.stats['errors'] += 1

    def _latch_device(self, device_id: str):
        if not self.device_id:
            self.device_id = device_id
        elif self.device_id != device_id:
            logger.warning(f"Device ID mismatch on {self.peername}: "
                           f"connection is {self.device_id}, frame carries {device_id}")

    def send_ack(self, ack: bytes, device_id: str) -> bool:
        """Write an acknowledgement immediately"""
        try:
            if not self.transport or self.transport.is_closing():
                logger.debug(f"Connection closing, ACK {ack!r} to {device_id} not sent")
                return False

            self.transport.write(ack)
            self.server.stats['acks_sent'] += 1
            logger.debug(f"ACK sent to {device_id}: {ack.decode('ascii', errors='replace')}")
            return True

        except Exception as e:
            logger.error(f"Error sending ACK to {device_id}: {e}")
            self.server.stats['errors'] += 1
            return False


class GPSTrackerTCPServer:
    """TCP ingestion server for BW32 GPS trackers"""

    def __init__(self, event_sink: RegistryEventSink, host: str = '0.0.0.0', port: int = DEFAULT_PORT,
                 max_buffer_size: int = MAX_BUFFER_SIZE,
                 frame_decoder: Optional[BW32FrameDecoder] = None,
                 protocol_handler: Optional[BW32ProtocolHandler] = None):
        self.event_sink = event_sink
        self.host = host
        self.port = port
        self.frame_decoder = frame_decoder or BW32FrameDecoder(max_buffer_size)
        self.protocol_handler = protocol_handler or BW32ProtocolHandler()
        self.server = None
        self.active_connections: Dict[str, GPSClientProtocol] = {}
        self.stats = {
            'start_time': None,
            'frames_received': 0,
            'malformed_frames': 0,
            'acks_sent': 0,
            'errors': 0,
        }
        self.shutdown_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self.server is not None and self.server.is_serving()

    @property
    def bound_port(self) -> Optional[int]:
        """Actual listening port (useful when configured with port 0)"""
        if self.server is None or not self.server.sockets:
            return None
        return self.server.sockets[0].getsockname()[1]

    async def start(self):
        """Bind the listening port. A bind failure is raised to the caller, not retried."""
        if self.server is not None:
            logger.warning("GPS TCP Server already running")
            return

        loop = asyncio.get_running_loop()
        self.server = await loop.create_server(
            lambda: GPSClientProtocol(self),
            self.host,
            self.port,
            reuse_address=True,
        )
        self.stats['start_time'] = datetime.now(timezone.utc)
        self.shutdown_event.clear()
        logger.info(f"GPS TCP Server started on {self.host}:{self.bound_port}")

    async def stop(self):
        """Close every connection and stop listening"""
        if self.server is None:
            return

        logger.info("Shutting down GPS TCP Server...")
        server, self.server = self.server, None

        for conn in list(self.active_connections.values()):
            if conn.transport and not conn.transport.is_closing():
                conn.transport.close()

        server.close()
        await server.wait_closed()
        self.shutdown_event.set()
        logger.info("GPS TCP Server stopped")

    async def run(self):
        """Serve until SIGINT/SIGTERM or shutdown()"""
        await self.start()

        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.shutdown)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handler for {sig} not supported here")

        try:
            await self.shutdown_event.wait()
        finally:
            # Restore default signal handling once run() returns
            for sig in installed:
                loop.remove_signal_handler(sig)
            await self.stop()

    def shutdown(self):
        """Request a graceful stop of run()"""
        self.shutdown_event.set()

    def get_status(self) -> Dict[str, Any]:
        """Get detailed server status"""
        start_time = self.stats['start_time']
        uptime = datetime.now(timezone.utc) - start_time if start_time and self.is_running else timedelta(0)

        return {
            'running': self.is_running,
            'host': self.host,
            'port': self.bound_port or self.port,
            'uptime': str(uptime),
            'active_connections': len(self.active_connections),
            'stats': {k: v for k, v in self.stats.items() if k != 'start_time'},
            'connections': [
                {
                    'id': conn_id,
                    'device_id': conn.device_id,
                    'peername': str(conn.peername),
                    'messages': conn.message_count,
                    'connected_at': conn.connected_at.isoformat() if conn.connected_at else None,
                    'last_activity': datetime.fromtimestamp(conn.last_activity, timezone.utc).isoformat(),
                }
                for conn_id, conn in self.active_connections.items()
            ]
        }
