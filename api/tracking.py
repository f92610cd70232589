"""
Live tracking WebSocket endpoints
Clients follow every vehicle or a single one and receive gps:* events as they happen
"""
import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)
router = APIRouter()

# Seconds of client silence before the server pings
IDLE_PING_SECONDS = 30


async def _serve_subscriber(websocket: WebSocket, vehicle_id: Optional[str]):
    manager = websocket.app.state.ws_manager
    await manager.connect(websocket, vehicle_id)
    logger.info(f"Tracking subscriber connected (vehicle: {vehicle_id or 'all'})")

    try:
        while True:
            try:
                data = await asyncio.wait_for(websocket.receive_text(), timeout=IDLE_PING_SECONDS)
            except asyncio.TimeoutError:
                await websocket.send_json({"type": "heartbeat", "timestamp": datetime.now(timezone.utc).isoformat()})
                continue

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid message format"})
                continue

            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({"type": "pong", "timestamp": datetime.now(timezone.utc).isoformat()})

    except WebSocketDisconnect:
        logger.info(f"Tracking subscriber disconnected (vehicle: {vehicle_id or 'all'})")
    finally:
        manager.disconnect(websocket)


@router.websocket("/ws/tracking")
async def track_all_vehicles(websocket: WebSocket):
    await _serve_subscriber(websocket, None)


@router.websocket("/ws/tracking/{vehicle_id}")
async def track_vehicle(websocket: WebSocket, vehicle_id: str):
    await _serve_subscriber(websocket, vehicle_id)
