"""FastAPI application entry point."""

import json
import logging
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from linkpeek.api.routes import CORS_HEADERS, error_body, resolver, router
from linkpeek.config import LOG_LEVEL
from linkpeek.exceptions import ErrorCode

# ── Structured JSON logging ──────────────────────────────────────────────────

_RESERVED_ATTRS = frozenset(
    (
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "taskName",
    )
)


class _JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log: dict = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log[key] = value
        if record.exc_info:
            log["exc_type"] = (
                record.exc_info[0].__name__ if record.exc_info[0] else None
            )
        return json.dumps(log, default=str)


_handler = logging.StreamHandler()
_handler.setFormatter(_JsonFormatter())
logging.basicConfig(level=LOG_LEVEL, handlers=[_handler], force=True)

logger = logging.getLogger(__name__)


# ── Lifespan ──────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Drop cached previews on shutdown."""
    yield
    resolver.close()
    logger.info("Preview caches cleared")


# ── App ───────────────────────────────────────────────────────────────────────

API_VERSION = "0.1.0"

app = FastAPI(title="Linkpeek", version=API_VERSION, lifespan=lifespan)


# ── CORS and security headers on every response ──────────────────────────────
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-API-Version"] = API_VERSION
        return response


app.add_middleware(SecurityHeadersMiddleware)

app.include_router(router, prefix="/api")


# ── Global error sanitization ────────────────────────────────────────────────
@app.exception_handler(Exception)
async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return a sanitized error response; never expose internal details."""
    logger.error(
        "unhandled_exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "exc_type": type(exc).__name__,
            "detail": traceback.format_exc(),
        },
    )
    return JSONResponse(
        status_code=500,
        content=error_body(ErrorCode.INTERNAL_ERROR, "Internal server error"),
        headers={**CORS_HEADERS, "Cache-Control": "no-store"},
    )
