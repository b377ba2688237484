# backend/strataguard/middleware/request_id.py
from __future__ import annotations

import re
import uuid
from contextvars import ContextVar
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

# ids from upstream proxies are reused only when they look like ids
_SAFE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")

request_id_ctx: ContextVar[Optional[str]] = ContextVar("strataguard_request_id", default=None)


def get_request_id() -> Optional[str]:
    return request_id_ctx.get()


def pick_request_id(incoming: Optional[str]) -> str:
    candidate = (incoming or "").strip()
    if candidate and _SAFE_ID.match(candidate):
        return candidate
    return uuid.uuid4().hex


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id (log lines, audit rows, X-Request-ID response header)."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = pick_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = rid

        reset = request_id_ctx.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(reset)

        response.headers[REQUEST_ID_HEADER] = rid
        return response
