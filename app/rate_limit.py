"""Per-route-class request limits (slowapi)."""
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from starlette.requests import Request
from starlette.responses import JSONResponse

from app.config import settings


def get_client_ip(request: Request) -> str:
    """Client address, preferring the first hop of X-Forwarded-For behind a proxy."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_client_ip,
    default_limits=[settings.default_rate_limit],
    storage_uri=settings.rate_limit_storage_uri,
    enabled=settings.rate_limit_enabled,
)

AUTH_RATE_LIMIT = settings.auth_rate_limit
IMAGE_RATE_LIMIT = settings.image_rate_limit
SUPPORT_RATE_LIMIT = settings.support_rate_limit


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={
            "error": "RateLimited",
            "message": "Too many requests, please try again later.",
            "details": {"limit": str(exc.detail)},
        },
    )
