import os

from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


def _env_list(name: str, default: str) -> list[str]:
    raw = os.getenv(name, "") or default
    return [item.strip() for item in raw.split(",") if item.strip()]


class NoCacheMiddleware(BaseHTTPMiddleware):
    """Keep generated case analyses out of browser and proxy caches."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
        response.headers["Pragma"] = "no-cache"
        return response


def add_cors_middleware(app):
    # All origins by default; ALLOWED_ORIGINS narrows it (comma-separated)
    origins = _env_list("ALLOWED_ORIGINS", "*")
    methods = _env_list("CORS_ALLOW_METHODS", "POST,OPTIONS")

    app.add_middleware(NoCacheMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=methods,
        allow_headers=["Content-Type"],
    )
