"""One log line per HTTP request: method, path, status, duration and a session tag.

Headers, bodies and query strings are never logged; they carry the ingest key,
admin tokens and respondents' answers.
"""
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from allocation_survey.core.config import get_settings

logger = logging.getLogger(__name__)

QUIET_PATHS = frozenset({"/health", "/api/health"})


def status_level(path: str, status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.DEBUG if path in QUIET_PATHS else logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.scope.get("path", "")
        sid = request.cookies.get(get_settings().session_cookie_name)
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.log(
            status_level(path, response.status_code),
            "request_finished method=%s path=%s status=%s duration_ms=%.1f",
            request.method, path, response.status_code, duration_ms,
            extra={"sid": sid[:8] if sid else None},
        )
        return response
