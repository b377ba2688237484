# backend/strataguard/errors.py
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .middleware.structured_logging import loggable_path

log = logging.getLogger(__name__)


class StrataGuardError(Exception):
    status_code = 400
    default_detail = "Request failed"

    def __init__(self, detail: Optional[str] = None, *, extra: Optional[dict[str, Any]] = None) -> None:
        self.detail = detail or self.default_detail
        self.extra = dict(extra or {})
        super().__init__(self.detail)

    def as_body(self) -> dict[str, Any]:
        return {"detail": self.detail, **self.extra}


class NotFoundError(StrataGuardError):
    status_code = 404
    default_detail = "Not found"


class ValidationFailed(StrataGuardError):
    status_code = 422
    default_detail = "Validation failed"


class PermissionDenied(StrataGuardError):
    status_code = 403
    default_detail = "Forbidden"


class IllegalTransition(StrataGuardError):
    status_code = 409
    default_detail = "Status transition not allowed"


class ConflictError(StrataGuardError):
    status_code = 409
    default_detail = "Conflict"


class AttachmentRejected(StrataGuardError):
    status_code = 400
    default_detail = "Attachment rejected"


class MalwareDetected(AttachmentRejected):
    status_code = 403
    default_detail = "File failed security scan"


class RateLimited(StrataGuardError):
    status_code = 429
    default_detail = "Too many requests, please try again later"


class PublicFlowError(StrataGuardError):
    """Public dispute flow failure. Messages stay generic; tokens and codes are never echoed."""

    def __init__(self, detail: str, *, status_code: int = 400, extra: Optional[dict[str, Any]] = None) -> None:
        super().__init__(detail, extra=extra)
        self.status_code = int(status_code)


def _handle(request: Request, exc: StrataGuardError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("request failed", exc_info=exc)
    else:
        log.info(
            "request rejected",
            extra={"error": type(exc).__name__, "status_code": exc.status_code, "path": loggable_path(request.url.path)},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.as_body())


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StrataGuardError)
    async def _strataguard_error(request: Request, exc: StrataGuardError) -> JSONResponse:
        return _handle(request, exc)
