import logging
import os
import re
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from vetddx import __version__
from vetddx.api.middleware import add_cors_middleware
from vetddx.api.rate_limit import limiter, rate_limit_enabled, rate_limit_exceeded_handler
from vetddx.api.routes import router
from vetddx.llm.client import LLMProvider, get_api_key_for_provider
from vetddx.server import start_server
from vetddx.storage import get_history_store

_logger = logging.getLogger(__name__)

# Secrets that can end up in exception text or breadcrumbs
_SECRET_PATTERNS = [
    re.compile(r"(?i)([?&]key=)[^&\s]+"),
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._\-]+"),
    re.compile(r"(?i)(x-goog-api-key['\"]?\s*[:=]\s*['\"]?)[A-Za-z0-9._\-]+"),
    re.compile(r"\b(sk-or-v1-)[A-Za-z0-9]+"),
]


def _scrub_secrets(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(r"\1[REDACTED]", text)
    return text


def _init_sentry() -> None:
    dsn = os.getenv("SENTRY_DSN", "")
    if not dsn:
        return
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    def before_send(event, hint):
        if "exception" in event:
            for exc_info in event["exception"].get("values", []):
                if exc_info.get("value"):
                    exc_info["value"] = _scrub_secrets(exc_info["value"])
        for bc in event.get("breadcrumbs", {}).get("values", []):
            if bc.get("message"):
                bc["message"] = _scrub_secrets(bc["message"])
        return event

    sentry_sdk.init(
        dsn=dsn,
        environment=os.getenv("SENTRY_ENVIRONMENT", "development"),
        integrations=[FastApiIntegration(), StarletteIntegration()],
        before_send=before_send,
    )


def _log_configuration() -> None:
    for provider in LLMProvider:
        if get_api_key_for_provider(provider):
            _logger.info("%s API key configured", provider.value)
        else:
            _logger.warning(
                "%s API key missing; calls to that model will fail", provider.value
            )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    _log_configuration()
    get_history_store()
    yield


def _first_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    err = errors[0]
    loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
    msg = err.get("msg", "Invalid value")
    return f"{loc}: {msg}" if loc else msg


def create_app() -> FastAPI:
    load_dotenv(".env.local")
    load_dotenv(".env")
    _init_sentry()
    app = FastAPI(title="VetDDx", version=__version__, lifespan=lifespan)
    limiter.enabled = rate_limit_enabled()
    app.state.limiter = limiter
    add_cors_middleware(app)

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
        detail = exc.detail
        if exc.status_code == 405:
            detail = "Method not allowed"
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": _first_validation_message(exc)},
        )

    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # Catch-all so unexpected errors still answer with the JSON error envelope
    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        _logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error"},
        )

    app.include_router(router)
    return app


app = create_app()


def run():
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    start_server(app)


if __name__ == "__main__":
    run()
