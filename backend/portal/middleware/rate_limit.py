"""Request rate limiting (slowapi)."""
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from portal.config import settings


def get_rate_limit_key(request: Request) -> str:
    """
    Get rate limit key from request.
    Uses the authenticated user when known, otherwise the IP address.
    """
    user = getattr(request.state, "user", None)
    if user is not None:
        return f"user:{user.id}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_rate_limit_key,
    enabled=settings.RATE_LIMIT_ENABLED,
)

# Login and registration
auth_limiter = limiter.limit("5/minute")

# Public search API
api_limiter = limiter.limit(f"{settings.RATE_LIMIT_PER_MINUTE}/minute")
