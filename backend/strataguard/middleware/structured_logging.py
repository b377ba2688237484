# backend/strataguard/middleware/structured_logging.py
from __future__ import annotations

import logging
import re
import time
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..config import settings

log = logging.getLogger("strataguard.request")

# access-link tokens are bearer secrets; keep them out of log storage
_TOKEN_PATH = re.compile(r"^(/public/violation/)[^/]+")


def loggable_path(path: str) -> str:
    return _TOKEN_PATH.sub(r"\1<token>", path)


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    One log line per request. Fields: method, path (token masked), status_code,
    latency_ms, actor (dev header email, if any) and whether a public session
    header was sent.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            level = logging.WARNING if status_code >= 500 else logging.INFO
            log.log(
                level,
                "http_request",
                extra={
                    "method": request.method,
                    "path": loggable_path(request.url.path),
                    "status_code": status_code,
                    "latency_ms": round((time.perf_counter() - started) * 1000, 1),
                    "actor": request.headers.get(settings.dev_header_user_email),
                    "public_session": bool(request.headers.get(settings.public_session_header)),
                },
            )
