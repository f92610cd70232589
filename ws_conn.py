import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from services.fanout import FanoutSink

logger = logging.getLogger(__name__)

# Subscription key for clients that follow every vehicle
ALL_VEHICLES = "*"


class ConnectionManager(FanoutSink):
    """WebSocket subscribers for live tracking, grouped by vehicle"""

    def __init__(self):
        # Active connections by vehicle_id (or ALL_VEHICLES)
        self.active_connections: Dict[str, Set[WebSocket]] = {}
        self._pending: Set[asyncio.Task] = set()

    async def connect(self, websocket: WebSocket, vehicle_id: Optional[str] = None):
        """Connect a client to one vehicle's updates, or to all of them"""
        await websocket.accept()

        key = vehicle_id or ALL_VEHICLES
        if key not in self.active_connections:
            self.active_connections[key] = set()
        self.active_connections[key].add(websocket)

        # Send confirmation to the client
        await websocket.send_json({
            "type": "connection_status",
            "status": "connected",
            "vehicle_id": vehicle_id,
            "active_viewers": len(self.active_connections[key]),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def disconnect(self, websocket: WebSocket):
        """Remove a client from every subscription"""
        for key in list(self.active_connections.keys()):
            self.active_connections[key].discard(websocket)
            # Clean up empty subscriptions
            if not self.active_connections[key]:
                del self.active_connections[key]

    def subscribers_for(self, vehicle_id: Optional[str]) -> Set[WebSocket]:
        targets = set(self.active_connections.get(ALL_VEHICLES, ()))
        if vehicle_id:
            targets |= self.active_connections.get(vehicle_id, set())
        return targets

    def deliver(self, channel: str, message: Dict[str, Any], vehicle_id: Optional[str]) -> None:
        targets = self.subscribers_for(vehicle_id)
        if not targets:
            return
        envelope = {"type": f"gps:{channel}", "data": message}
        task = asyncio.get_running_loop().create_task(self.broadcast(targets, envelope))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def broadcast(self, targets: Set[WebSocket], message: dict):
        """Send message to the given clients, dropping dead connections"""
        inactive_connections = set()

        for connection in targets:
            try:
                if connection.client_state == WebSocketState.CONNECTED:
                    await connection.send_json(message)
            except Exception as e:
                logger.debug(f"Dropping WebSocket subscriber: {e}")
                inactive_connections.add(connection)

        for inactive in inactive_connections:
            self.disconnect(inactive)

    def get_active_viewers(self, vehicle_id: Optional[str] = None) -> int:
        """Return count of clients subscribed to a vehicle (or to all vehicles)"""
        return len(self.active_connections.get(vehicle_id or ALL_VEHICLES, ()))
