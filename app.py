import datetime
import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.gps_devices import router as gps_devices_router
from api.gps_tcp_status import router as gps_tcp_status_router
from api.tracking import router as tracking_router
from config import settings
from logs.logconfig import configure_logging
from rate_limiter import rate_limiter
from services.device_registry import DeviceRegistry
from services.fanout import CompositeFanout
from services.redis_fanout import RedisFanout
from tcp_server.gps_tcp_server import GPSTrackerTCPServer
from ws_conn import ConnectionManager


@asynccontextmanager
async def lifespan(app):
    logger = logging.getLogger(__name__)

    # Fan-out: WebSocket subscribers always, Redis pub/sub when configured
    ws_manager = ConnectionManager()
    fanout = CompositeFanout([ws_manager])

    redis_fanout = None
    if settings.REDIS_PUBSUB_ENABLED:
        redis_fanout = RedisFanout(settings.get_redis_url(), settings.REDIS_CHANNEL_PREFIX)
        if await redis_fanout.connect():
            fanout.add_sink(redis_fanout)
        else:
            logger.warning("Redis fan-out unavailable, continuing with WebSocket only")

    registry = DeviceRegistry(
        fanout=fanout,
        online_window_seconds=settings.DEVICE_ONLINE_WINDOW_SECONDS,
        enforce_unique_vehicle=settings.ENFORCE_UNIQUE_VEHICLE,
    )
    app.state.ws_manager = ws_manager
    app.state.registry = registry

    # Start GPS TCP Server if enabled. A port that cannot be bound stops startup.
    tcp_server = None
    if settings.GPS_TCP_ENABLED:
        tcp_server = GPSTrackerTCPServer(
            registry,
            host=settings.GPS_TCP_HOST,
            port=settings.GPS_TCP_PORT,
            max_buffer_size=settings.GPS_MAX_BUFFER_SIZE,
        )
        try:
            await tcp_server.start()
        except OSError as e:
            logger.critical(f"Failed to bind GPS TCP Server on {settings.GPS_TCP_HOST}:{settings.GPS_TCP_PORT}: {e}")
            if redis_fanout:
                await redis_fanout.disconnect()
            raise
        app.state.tcp_server = tcp_server
    else:
        logger.info("GPS TCP Server is disabled in configuration")

    yield

    logger.info("Starting application shutdown...")

    if tcp_server:
        try:
            await tcp_server.stop()
        except Exception as e:
            logger.error(f"Error stopping GPS TCP Server: {e}")

    if redis_fanout:
        try:
            await redis_fanout.disconnect()
            logger.info("Redis fan-out closed")
        except Exception as e:
            logger.error(f"Error closing Redis connection: {e}")

    logger.info("Application shutdown completed")


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

system_startup_time = datetime.datetime.now(datetime.timezone.utc)

session_id_run = str(uuid.uuid4())

# Initialize logging at the start of your application
configure_logging(session_id_run=session_id_run)

logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_request(request: Request, call_next):
    logger.info(f"Incoming request: {request.method} {request.url}")
    response = await call_next(request)
    logger.info(f"Outgoing response: {response.status_code}")
    return response


app.include_router(gps_devices_router)
app.include_router(gps_tcp_status_router)
app.include_router(tracking_router, tags=['Live Tracking'])

# Attach the rate limiter as a middleware
app.state.limiter = rate_limiter
app.add_middleware(SlowAPIMiddleware)
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.get('/')
async def root():
    """Basic service information"""
    now = datetime.datetime.now(datetime.timezone.utc)

    return {
        'service': settings.APP_NAME,
        'status': 'up',
        'version': '1.0.0',
        'uptime': str(now - system_startup_time),
        'timestamp': now.isoformat(),
        'endpoints': {
            'health': '/health',
            'devices': '/api/gps/devices',
            'tcp_status': '/api/gps-tcp/status',
            'live_tracking': '/ws/tracking'
        }
    }


@app.get('/health')
async def health(request: Request):
    now = datetime.datetime.now(datetime.timezone.utc)

    registry = getattr(request.app.state, 'registry', None)
    tcp_server = getattr(request.app.state, 'tcp_server', None)
    tcp_running = tcp_server is not None and tcp_server.is_running

    healthy = registry is not None and (tcp_running or not settings.GPS_TCP_ENABLED)

    response = {
        'status': 'healthy' if healthy else 'unhealthy',
        'system_startup_time': system_startup_time.isoformat(),
        'current_time': now.isoformat(),
        'uptime': str(now - system_startup_time),
        'registry': registry.get_stats() if registry is not None else None,
        'gps_tcp_server': {
            'enabled': settings.GPS_TCP_ENABLED,
            'running': tcp_running,
        },
    }

    logger.info(f"Healthcheck requested on {now}. Status: {response['status']}")

    return JSONResponse(content=response, status_code=200 if healthy else 503)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
