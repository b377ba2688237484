# backend/strataguard/services/violations.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from sqlalchemy import asc, desc, func, or_, select
from sqlalchemy.orm import Session, selectinload

from ..auth import Principal
from ..config import settings
from ..domain.audit import AuditAction, TargetType, action_for_status, audit_write
from ..domain.violation_states import allowed_targets, check_transition, history_action_for
from ..errors import ConflictError, IllegalTransition, PermissionDenied, ValidationFailed
from ..models import Bylaw, PropertyUnit, Violation, ViolationCategory, ViolationHistory, utcnow
from ..schemas import ViolationCreate
from . import access_links, bylaws, notifications
from .attachments import IncomingFile, remove_files, store_attachments
from .ownership import must_get_category, must_get_unit, must_get_violation
from .runtime_metrics import METRICS

log = logging.getLogger(__name__)

HISTORY_CREATED = "Violation created"
HISTORY_COMMENT = "comment"
HISTORY_FINE_SET = "fine_set"

SORT_COLUMNS = {
    "createdAt": Violation.created_at,
    "violationType": Violation.violation_type,
    "status": Violation.status,
    "fineAmount": Violation.fine_amount,
    "unitNumber": PropertyUnit.unit_number,
    "id": Violation.id,
}

_LOAD = (
    selectinload(Violation.unit),
    selectinload(Violation.category),
    selectinload(Violation.reported_by),
)


@dataclass(frozen=True)
class Actor:
    """Who performed a lifecycle action. user_id is None for public occupants."""

    user_id: Optional[int]
    name: str
    email: Optional[str] = None
    ip_address: Optional[str] = None

    @classmethod
    def from_principal(cls, p: Principal, ip_address: Optional[str] = None) -> "Actor":
        return cls(user_id=p.user_id, name=p.full_name, email=p.email, ip_address=ip_address)


def snapshot(v: Violation) -> dict[str, Any]:
    return {
        "id": v.id,
        "uuid": v.uuid,
        "reference_number": v.reference_number,
        "unit_id": v.unit_id,
        "category_id": v.category_id,
        "violation_type": v.violation_type,
        "status": v.status,
        "fine_amount": v.fine_amount,
        "attachments": list(v.attachments or []),
    }


def append_history(
    db: Session,
    v: Violation,
    *,
    user_id: Optional[int],
    action: str,
    comment: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
    rejection_reason: Optional[str] = None,
) -> ViolationHistory:
    row = ViolationHistory(
        violation_id=int(v.id),
        user_id=user_id,
        action=action,
        comment=comment,
        details=details,
        rejection_reason=rejection_reason,
        created_at=utcnow(),
    )
    db.add(row)
    db.flush()
    return row


def _audit(db: Session, actor: Actor, action: AuditAction, v: Violation, details: dict[str, Any]) -> None:
    audit_write(
        db,
        actor_user_id=actor.user_id,
        actor_name=actor.name,
        actor_email=actor.email,
        action=action,
        entity_type=TargetType.VIOLATION,
        entity_id=v.uuid,
        details=details,
        ip_address=actor.ip_address,
    )


def _bylaw_reference(payload: ViolationCreate, bylaw: Optional[Bylaw], category: Optional[ViolationCategory]) -> Optional[str]:
    # explicit text, then the chosen bylaw, then the category default
    if payload.bylaw_reference:
        return payload.bylaw_reference
    if bylaw is not None:
        return bylaw.reference
    return category.bylaw_reference if category else None


# -----------------------------
# create
# -----------------------------
def create_violation(
    db: Session,
    *,
    payload: ViolationCreate,
    actor: Actor,
    files: Sequence[IncomingFile] = (),
) -> Violation:
    unit = must_get_unit(db, unit_id=payload.unit_id)
    category = must_get_category(db, category_id=payload.category_id) if payload.category_id is not None else None
    bylaw = bylaws.must_get_active_bylaw(db, bylaw_id=payload.bylaw_id) if payload.bylaw_id is not None else None

    violation_type = (payload.violation_type or "").strip() or (category.name if category else "")
    if not violation_type:
        raise ValidationFailed("violationType or categoryId is required")
    if actor.user_id is None:
        raise PermissionDenied("Violations must be reported by a signed-in user")

    # files are validated, written and scanned before any row exists
    stored = store_attachments(list(files))
    try:
        v = Violation(
            unit_id=int(unit.id),
            reported_by_id=int(actor.user_id),
            category_id=int(category.id) if category else None,
            violation_type=violation_type,
            violation_date=payload.violation_date,
            violation_time=payload.violation_time,
            description=payload.description,
            bylaw_reference=_bylaw_reference(payload, bylaw, category),
            status="pending_approval",
            fine_amount=None,
            attachments=stored,
            incident_area=payload.incident_area,
            concierge_name=payload.concierge_name,
            people_involved=payload.people_involved,
            noticed_by=payload.noticed_by,
            damage_to_property=payload.damage_to_property,
            damage_details=payload.damage_details,
            police_involved=payload.police_involved,
            police_details=payload.police_details,
        )
        db.add(v)
        db.flush()
        db.refresh(v)

        append_history(
            db,
            v,
            user_id=actor.user_id,
            action=HISTORY_CREATED,
            details={"status": v.status, "attachments": len(stored), "referenceNumber": v.reference_number},
        )

        links: dict[int, str] = {}
        for r in notifications.notifiable_persons(db, unit_id=int(unit.id)):
            link = access_links.issue_link(db, violation=v, recipient_email=r.email)
            links[int(r.person_id or 0)] = str(link.token)
        notifications.notify_violation_created(db, v, links=links)

        _audit(db, actor, AuditAction.VIOLATION_CREATED, v, {"after": snapshot(v), "category": v.category_name})
        notifications.commit_and_dispatch(db)
    except BaseException:
        db.rollback()
        notifications.discard_pending(db)
        remove_files(stored)
        raise

    METRICS.inc("violations_created")
    log.info("violation created", extra={"violation_id": int(v.id), "user_id": actor.user_id})
    return v


# -----------------------------
# status transitions
# -----------------------------
def apply_status_change(
    db: Session,
    v: Violation,
    *,
    target: str,
    actor: Actor,
    comment: Optional[str] = None,
    rejection_reason: Optional[str] = None,
    extra_details: Optional[dict[str, Any]] = None,
) -> ViolationHistory:
    """
    Validates the edge and writes status, history, audit and outbox rows into the
    caller's transaction. Never touches fine_amount. Does not commit.
    """
    current = str(v.status)
    check = check_transition(current, target, allow_redispute=settings.allow_redispute_after_decision)
    if not check.allowed:
        METRICS.inc("violation_transitions_rejected")
        raise IllegalTransition(
            check.reason,
            extra={
                "currentStatus": current,
                "allowed": sorted(allowed_targets(current, allow_redispute=settings.allow_redispute_after_decision)),
            },
        )

    reason = (rejection_reason or "").strip() or None
    if target == "rejected" and not reason:
        raise ValidationFailed("rejectionReason is required when rejecting a violation")

    v.status = target
    v.updated_at = utcnow()
    db.flush()

    details: dict[str, Any] = {"from": current, "to": target}
    if extra_details:
        details.update(extra_details)
    entry = append_history(
        db,
        v,
        user_id=actor.user_id,
        action=history_action_for(target),
        comment=(comment or "").strip() or None,
        details=details,
        rejection_reason=reason if target == "rejected" else None,
    )

    _audit(db, actor, action_for_status(target), v, {"from": current, "to": target, "comment": entry.comment})

    event_ref = f"history:{entry.id}"
    if target in ("approved", "rejected"):
        notifications.notify_status_decision(db, v, status=target, event_ref=event_ref, reason=reason)
    elif target == "disputed":
        notifications.notify_violation_disputed(db, v, disputed_by=actor.name, comment=entry.comment, event_ref=event_ref)

    METRICS.inc(f"violation_status_{target}")
    return entry


def _guard_expected(v: Violation, expected_status: Optional[str]) -> None:
    if expected_status is not None and expected_status != v.status:
        raise ConflictError(
            "Violation status changed since it was loaded",
            extra={"currentStatus": v.status, "expectedStatus": expected_status},
        )


def change_status(
    db: Session,
    *,
    id_or_uuid: int | str,
    target: str,
    actor: Actor,
    comment: Optional[str] = None,
    rejection_reason: Optional[str] = None,
    expected_status: Optional[str] = None,
) -> Violation:
    v = must_get_violation(db, id_or_uuid=id_or_uuid, for_update=True)
    _guard_expected(v, expected_status)
    try:
        apply_status_change(db, v, target=target, actor=actor, comment=comment, rejection_reason=rejection_reason)
        notifications.commit_and_dispatch(db)
    except BaseException:
        db.rollback()
        notifications.discard_pending(db)
        raise
    return v


def set_fine(db: Session, *, id_or_uuid: int | str, amount: int, actor: Actor) -> Violation:
    v = must_get_violation(db, id_or_uuid=id_or_uuid, for_update=True)
    _write_fine(db, v, amount=amount, actor=actor)
    db.commit()
    return v


def _write_fine(db: Session, v: Violation, *, amount: int, actor: Actor) -> ViolationHistory:
    if int(amount) < 0:
        raise ValidationFailed("amount must be >= 0")

    previous = v.fine_amount
    v.fine_amount = int(amount)
    v.updated_at = utcnow()
    db.flush()

    entry = append_history(
        db,
        v,
        user_id=actor.user_id,
        action=HISTORY_FINE_SET,
        details={"amount": int(amount), "previous": previous},
    )
    _audit(db, actor, AuditAction.VIOLATION_FINE_SET, v, {"amount": int(amount), "previous": previous})
    return entry


def approve_with_fine(
    db: Session,
    *,
    id_or_uuid: int | str,
    amount: int,
    actor: Actor,
    comment: Optional[str] = None,
) -> Violation:
    """Fine and approval commit together or not at all."""
    v = must_get_violation(db, id_or_uuid=id_or_uuid, for_update=True)
    try:
        # validate the edge before writing anything
        check = check_transition(str(v.status), "approved", allow_redispute=settings.allow_redispute_after_decision)
        if not check.allowed:
            raise IllegalTransition(check.reason, extra={"currentStatus": v.status})

        _write_fine(db, v, amount=amount, actor=actor)
        apply_status_change(db, v, target="approved", actor=actor, comment=comment, extra_details={"fineAmount": int(amount)})
        notifications.commit_and_dispatch(db)
    except BaseException:
        db.rollback()
        notifications.discard_pending(db)
        raise
    return v


# -----------------------------
# comments / delete
# -----------------------------
def add_comment(db: Session, *, id_or_uuid: int | str, comment: str, actor: Actor) -> ViolationHistory:
    text = (comment or "").strip()
    if not text:
        raise ValidationFailed("comment must not be empty")

    v = must_get_violation(db, id_or_uuid=id_or_uuid)
    entry = append_history(db, v, user_id=actor.user_id, action=HISTORY_COMMENT, comment=text, details={"comment": text})
    _audit(db, actor, AuditAction.VIOLATION_COMMENTED, v, {"history_id": entry.id})
    db.commit()
    return entry


def can_delete(p: Principal) -> bool:
    if settings.restrict_delete_to_admins:
        return p.is_adjudicator
    return True


def delete_violation(db: Session, *, id_or_uuid: int | str, principal: Principal, actor: Actor) -> None:
    if not can_delete(principal):
        raise PermissionDenied("Only admin or council members may delete violations")

    v = must_get_violation(db, id_or_uuid=id_or_uuid, for_update=True)
    files = list(v.attachments or [])
    _audit(db, actor, AuditAction.VIOLATION_DELETED, v, {"before": snapshot(v)})

    # history, access links and codes go with it (ON DELETE CASCADE)
    db.delete(v)
    db.commit()

    remove_files(files)
    METRICS.inc("violations_deleted")
    log.info("violation deleted", extra={"violation_id": int(v.id), "user_id": actor.user_id})


# -----------------------------
# reads
# -----------------------------
def get_violation(db: Session, *, id_or_uuid: int | str) -> Violation:
    return must_get_violation(db, id_or_uuid=id_or_uuid)


def get_history(db: Session, *, id_or_uuid: int | str) -> List[ViolationHistory]:
    v = must_get_violation(db, id_or_uuid=id_or_uuid)
    q = (
        select(ViolationHistory)
        .options(selectinload(ViolationHistory.user))
        .where(ViolationHistory.violation_id == int(v.id))
        .order_by(ViolationHistory.created_at.asc(), ViolationHistory.id.asc())
    )
    return list(db.scalars(q).all())


def list_violations(
    db: Session,
    *,
    status: Optional[str] = None,
    unit_id: Optional[int] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    sort_by: str = "createdAt",
    sort_order: str = "desc",
) -> Tuple[List[Violation], int]:
    base = select(Violation).join(PropertyUnit, PropertyUnit.id == Violation.unit_id)
    if status:
        base = base.where(Violation.status == status)
    if unit_id is not None:
        base = base.where(Violation.unit_id == int(unit_id))
    if search and search.strip():
        like = f"%{search.strip()}%"
        base = base.where(
            or_(
                Violation.description.ilike(like),
                Violation.violation_type.ilike(like),
                PropertyUnit.unit_number.ilike(like),
            )
        )

    total = int(db.scalar(select(func.count()).select_from(base.subquery())) or 0)

    col = SORT_COLUMNS.get(sort_by, Violation.created_at)
    direction = asc if str(sort_order).lower() == "asc" else desc
    page = max(1, int(page))
    limit = max(1, int(limit))

    q = base.options(*_LOAD).order_by(direction(col), direction(Violation.id)).offset((page - 1) * limit).limit(limit)
    return list(db.scalars(q).all()), total


def recent_violations(db: Session, *, limit: int = 5) -> List[Violation]:
    q = select(Violation).options(*_LOAD).order_by(Violation.created_at.desc(), Violation.id.desc()).limit(int(limit))
    return list(db.scalars(q).all())


def pending_approval(db: Session, *, principal: Principal) -> List[Violation]:
    q = select(Violation).options(*_LOAD).where(Violation.status == "pending_approval")
    if not principal.is_adjudicator:
        q = q.where(Violation.reported_by_id == int(principal.user_id))
    return list(db.scalars(q.order_by(Violation.created_at.asc(), Violation.id.asc())).all())
