# backend/strataguard/domain/audit.py
from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..middleware.request_id import get_request_id
from ..models import AuditEvent, utcnow
from ..services.runtime_metrics import METRICS

log = logging.getLogger(__name__)


class AuditAction(str, Enum):
    VIOLATION_CREATED = "VIOLATION_CREATED"
    VIOLATION_DELETED = "VIOLATION_DELETED"
    VIOLATION_STATUS_CHANGED = "VIOLATION_STATUS_CHANGED"
    VIOLATION_APPROVED = "VIOLATION_APPROVED"
    VIOLATION_REJECTED = "VIOLATION_REJECTED"
    VIOLATION_DISPUTED = "VIOLATION_DISPUTED"
    VIOLATION_FINE_SET = "VIOLATION_FINE_SET"
    VIOLATION_COMMENTED = "VIOLATION_COMMENTED"
    CATEGORY_CREATED = "CATEGORY_CREATED"
    CATEGORY_UPDATED = "CATEGORY_UPDATED"
    CATEGORY_DELETED = "CATEGORY_DELETED"
    BYLAW_CREATED = "BYLAW_CREATED"
    BYLAW_UPDATED = "BYLAW_UPDATED"
    BYLAW_DEACTIVATED = "BYLAW_DEACTIVATED"
    BYLAWS_IMPORTED = "BYLAWS_IMPORTED"
    UNIT_CREATED = "UNIT_CREATED"
    USER_LOGIN = "USER_LOGIN"
    PUBLIC_CODE_VERIFIED = "PUBLIC_CODE_VERIFIED"


class TargetType(str, Enum):
    VIOLATION = "VIOLATION"
    CATEGORY = "CATEGORY"
    UNIT = "UNIT"
    BYLAW = "BYLAW"
    USER = "USER"
    PERSON = "PERSON"


def action_for_status(target: str) -> AuditAction:
    return {
        "approved": AuditAction.VIOLATION_APPROVED,
        "rejected": AuditAction.VIOLATION_REJECTED,
        "disputed": AuditAction.VIOLATION_DISPUTED,
    }.get(target, AuditAction.VIOLATION_STATUS_CHANGED)


def _dumps(v: Optional[dict[str, Any]]) -> Optional[str]:
    if v is None:
        return None
    return json.dumps(v, sort_keys=True, default=str)


def audit_write(
    db: Session,
    *,
    actor_user_id: Optional[int],
    action: AuditAction | str,
    entity_type: TargetType | str,
    entity_id: Any,
    details: Optional[dict[str, Any]] = None,
    actor_name: Optional[str] = None,
    actor_email: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> Optional[AuditEvent]:
    """
    Adds an audit row to the caller's transaction without committing.

    The insert runs inside a SAVEPOINT: if it fails, only the audit row is
    rolled back and the surrounding lifecycle write is kept. Returns None in
    that case.
    """
    action_s = action.value if isinstance(action, AuditAction) else str(action)
    entity_s = entity_type.value if isinstance(entity_type, TargetType) else str(entity_type)

    row = AuditEvent(
        actor_user_id=actor_user_id,
        actor_name=actor_name,
        actor_email=actor_email,
        action=action_s,
        entity_type=entity_s,
        entity_id=str(entity_id) if entity_id is not None else None,
        details_json=_dumps(details),
        ip_address=ip_address,
        request_id=get_request_id(),
        created_at=utcnow(),
    )
    try:
        with db.begin_nested():
            db.add(row)
    except Exception:
        METRICS.inc("audit_write_failed")
        log.warning("audit write failed", exc_info=True, extra={"audit_action": action_s})
        return None
    return row
