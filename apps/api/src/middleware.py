"""Correlation ID, request logging, and optional API key middleware."""
import contextvars
import hmac
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = logging.getLogger("apps.api.access")

_correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="-")

_OPEN_PATHS = {"/health", "/docs", "/openapi.json"}


class CorrelationIdFilter(logging.Filter):
    """Stamp every log record with the current request's correlation id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = _correlation_id.get()
        return True


def configure_logging(level: str) -> None:
    """Root logging at level, with correlation ids on every line."""
    handler = logging.StreamHandler()
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s")
    )
    root = logging.getLogger()
    if not any(isinstance(f, CorrelationIdFilter) for h in root.handlers for f in h.filters):
        root.addHandler(handler)
    root.setLevel(level)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Set request.state.correlation_id from X-Correlation-ID header or generate new."""

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        token = _correlation_id.set(correlation_id[:8])
        try:
            response = await call_next(request)
        finally:
            _correlation_id.reset(token)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status, duration (no bodies, no PII)."""

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start
        logger.info(
            "%s %s %s duration_s=%.3f",
            request.method,
            request.url.path,
            response.status_code,
            duration,
        )
        return response


class ApiKeyMiddleware(BaseHTTPMiddleware):
    """When API_KEY is set, require X-API-Key or Authorization: Bearer <key>; health and docs stay open."""

    async def dispatch(self, request: Request, call_next):
        from .config import get_settings
        settings = get_settings()
        if not settings.api_key or not settings.api_key.strip():
            return await call_next(request)
        path = request.url.path.rstrip("/") or "/"
        if path in _OPEN_PATHS:
            return await call_next(request)
        key = request.headers.get("X-API-Key") or ""
        auth = request.headers.get("Authorization", "")
        if not key and auth.startswith("Bearer "):
            key = auth.split(" ", 1)[1].strip()
        if not hmac.compare_digest(key.encode(), settings.api_key.encode()):
            return JSONResponse(
                status_code=401,
                content={"detail": "Missing or invalid API key"},
            )
        return await call_next(request)
