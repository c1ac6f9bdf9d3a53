"""
Rate Limiter Configuration

In-memory slowapi limiter keyed by the real client IP.
Manual sync triggers hit OTA APIs, so they get a stricter limit.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request


def get_real_client_ip(request: Request) -> str:
    """Get real client IP behind reverse proxy"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP (original client)
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


limiter = Limiter(
    key_func=get_real_client_ip,
    default_limits=["100/minute"]
)


RATE_LIMITS = {
    "manual_sync": "10/minute",
    "channel_write": "30/minute",
    "read": "200/minute",
}


def get_rate_limit(operation: str) -> str:
    """Get rate limit for a specific operation."""
    return RATE_LIMITS.get(operation, "100/minute")
