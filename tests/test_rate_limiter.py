"""Tests for the proxy-aware rate limit key."""
from starlette.requests import Request

from rate_limiter import get_real_client_ip


def make_request(headers=None, client=("203.0.113.7", 5000)):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/gps/devices",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


def test_forwarded_for_uses_first_hop():
    request = make_request({"X-Forwarded-For": "198.51.100.1, 10.0.0.2"})
    assert get_real_client_ip(request) == "198.51.100.1"


def test_real_ip_header():
    assert get_real_client_ip(make_request({"X-Real-IP": "198.51.100.9"})) == "198.51.100.9"


def test_falls_back_to_peer_address():
    assert get_real_client_ip(make_request()) == "203.0.113.7"
