"""Rate limiting for the generation endpoints using slowapi.

Every generation request costs an upstream model call, so deployments can
cap them per client address. Disabled unless RATE_LIMIT_ENABLED=true.

Both settings are read from the environment when used rather than at import,
so values loaded from .env files by ``create_app`` take effect.
"""

import os

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse


def rate_limit_enabled() -> bool:
    return os.getenv("RATE_LIMIT_ENABLED", "").lower() == "true"


limiter = Limiter(
    key_func=get_remote_address,
    enabled=rate_limit_enabled(),
)


def generate_rate_limit() -> str:
    """Limit for /api/generate-differentials and /api/cases."""
    return os.getenv("GENERATE_RATE_LIMIT", "30/minute")


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded. Please wait before making more requests.",
            "retry_after": exc.detail,
        },
    )
