# backend/strataguard/routers/health.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..services.runtime_metrics import METRICS

log = logging.getLogger(__name__)

router = APIRouter(tags=["ops"])


@router.get("/health")
def health(db: Session = Depends(get_db)):
    db_ok = True
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        db_ok = False
        log.error("health check: database unreachable", exc_info=True)

    return {
        "ok": db_ok,
        "app": settings.app_name,
        "version": settings.app_version,
        "env": settings.app_env,
        "database": "ok" if db_ok else "unreachable",
        "counters": METRICS.snapshot(),
    }


@router.get("/metrics", response_class=PlainTextResponse)
def metrics():
    # Prometheus text-ish format
    lines = [f"strataguard_{k} {v}" for k, v in METRICS.snapshot().items()]
    return "\n".join(lines) + "\n"
