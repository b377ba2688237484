# backend/strataguard/routers/audit.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from ..auth import Principal, require_adjudicator
from ..db import get_db
from ..models import AuditEvent
from ..schemas import AuditEventOut

router = APIRouter(prefix="/audit-logs", tags=["audit"])


@router.get("", response_model=list[AuditEventOut])
def list_audit(
    action: str | None = Query(default=None),
    target_type: str | None = Query(default=None, alias="targetType"),
    target_id: str | None = Query(default=None, alias="targetId"),
    limit: int = Query(default=200, ge=1, le=1000),
    db: Session = Depends(get_db),
    p: Principal = Depends(require_adjudicator),
):
    q = select(AuditEvent).order_by(desc(AuditEvent.id))
    if action:
        q = q.where(AuditEvent.action == action)
    if target_type:
        q = q.where(AuditEvent.entity_type == target_type)
    if target_id:
        q = q.where(AuditEvent.entity_id == target_id)
    return list(db.scalars(q.limit(limit)).all())
