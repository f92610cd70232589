from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
import logging

from config import settings

logger = logging.getLogger(__name__)


def get_real_client_ip(request: Request) -> str:
    """
    Client IP for rate limiting keys.
    Honours X-Forwarded-For / X-Real-IP when the API sits behind a proxy.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # First entry is the original client
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return get_remote_address(request)


def create_rate_limiter(limit: str = settings.API_RATE_LIMIT) -> Limiter:
    return Limiter(key_func=get_real_client_ip, default_limits=[limit])


rate_limiter = create_rate_limiter()
