"""
GPS TCP Server status endpoints for service monitoring
"""
from datetime import datetime, timezone
import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from config import settings

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/gps-tcp", tags=["GPS TCP Server"])


@router.get("/status")
async def get_gps_tcp_status(request: Request) -> Dict[str, Any]:
    """Connections and counters of the in-process TCP server"""
    if not settings.GPS_TCP_ENABLED:
        return JSONResponse(
            content={"running": False, "message": "GPS TCP Server is disabled in configuration"},
            status_code=503
        )

    tcp_server = getattr(request.app.state, 'tcp_server', None)
    if tcp_server is None:
        return JSONResponse(
            content={"running": False, "message": "GPS TCP Server not initialized"},
            status_code=503
        )

    status = tcp_server.get_status()
    status['timestamp'] = datetime.now(timezone.utc).isoformat()
    if not status['running']:
        return JSONResponse(content=status, status_code=503)
    return status


@router.get("/health")
async def check_gps_tcp_health(request: Request):
    """
    Health check for the GPS TCP Server
    Returns 200 if the server is listening, 503 if not
    """
    tcp_server = getattr(request.app.state, 'tcp_server', None)

    if tcp_server is not None and tcp_server.is_running:
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    raise HTTPException(
        status_code=503,
        detail=f"GPS TCP Server not listening on port {settings.GPS_TCP_PORT}"
    )
