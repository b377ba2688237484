# backend/strataguard/services/public_dispute.py
from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..auth import PublicPrincipal
from ..config import settings
from ..domain.audit import AuditAction, TargetType, audit_write
from ..errors import NotFoundError, PublicFlowError
from ..models import (
    EmailVerificationCode,
    Person,
    PublicUserSession,
    Violation,
    ViolationHistory,
    utcnow,
)
from . import access_links, notifications
from .mailer import MailTransportError, OutgoingEmail, send_email
from .ownership import violation_key_clause
from .rate_limit import ensure_code_quota
from .runtime_metrics import METRICS
from .violations import Actor, apply_status_change

log = logging.getLogger(__name__)

MSG_INVALID_LINK = "Invalid or expired link"
MSG_INVALID_CODE = "Invalid or expired verification code"
MSG_INVALID_PERSON = "Please select a person associated with this unit"
MSG_SEND_FAILED = "Could not send the verification code. Please choose a person and try again."

CODE_DIGITS = 6


def obfuscate_email(email: str) -> str:
    """jane.doe@example.com -> j***e@example.com"""
    local, _, domain = (email or "").partition("@")
    if not local or not domain:
        return "***"
    return f"{local[0]}***{local[-1]}@{domain}"


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** CODE_DIGITS):0{CODE_DIGITS}d}"


def hash_code(code: str) -> str:
    return hmac.new(settings.verification_code_pepper.encode("utf-8"), code.strip().encode("utf-8"), hashlib.sha256).hexdigest()


# -----------------------------
# Link resolution
# -----------------------------
def persons_for_violation(db: Session, v: Violation) -> List[dict[str, Any]]:
    return [
        {"id": r.person_id, "full_name": r.name, "email": obfuscate_email(r.email), "role": r.role}
        for r in notifications.notifiable_persons(db, unit_id=int(v.unit_id))
    ]


def public_violation_view(db: Session, v: Violation, *, include_persons: bool = True) -> dict[str, Any]:
    return {
        "id": v.id,
        "uuid": v.uuid,
        "reference_number": v.reference_number,
        "unit_number": v.unit_number,
        "violation_type": v.violation_type,
        "violation_date": v.violation_date,
        "violation_time": v.violation_time,
        "description": v.description,
        "bylaw_reference": v.bylaw_reference,
        "status": v.status,
        "fine_amount": v.fine_amount,
        "created_at": v.created_at,
        "persons": persons_for_violation(db, v) if include_persons else [],
    }


def link_status(db: Session, *, token: str) -> Tuple[int, dict[str, Any]]:
    """Returns (http_status, body). Only a valid link discloses the violation."""
    found = access_links.lookup(db, token=token)
    if found.status == access_links.LINK_VALID and found.violation is not None:
        return 200, {"status": found.status, "violation": public_violation_view(db, found.violation)}
    if found.status == access_links.LINK_USED:
        return 200, {"status": found.status}
    if found.status == access_links.LINK_EXPIRED:
        return 410, {"status": found.status}
    return 404, {"status": access_links.LINK_INVALID}


def _require_valid_link(db: Session, token: str) -> access_links.LinkLookup:
    found = access_links.lookup(db, token=token)
    if found.status != access_links.LINK_VALID or found.violation is None:
        status_code = {access_links.LINK_EXPIRED: 410, access_links.LINK_INVALID: 404}.get(found.status, 400)
        raise PublicFlowError(MSG_INVALID_LINK, status_code=status_code, extra={"status": found.status})
    return found


def _require_notifiable_person(db: Session, v: Violation, person_id: int) -> Tuple[Person, str]:
    for r in notifications.notifiable_persons(db, unit_id=int(v.unit_id)):
        if int(r.person_id or 0) == int(person_id):
            person = db.get(Person, int(person_id))
            if person is not None:
                return person, str(r.role)
    raise PublicFlowError(MSG_INVALID_PERSON, status_code=400)


# -----------------------------
# Code issuance / verification
# -----------------------------
@dataclass(frozen=True)
class CodeSent:
    email: str  # obfuscated
    expires_in_minutes: int

    def as_dict(self) -> dict[str, Any]:
        return {"ok": True, "email": self.email, "expires_in_minutes": self.expires_in_minutes}


def send_code(db: Session, *, token: str, person_id: int) -> CodeSent:
    found = _require_valid_link(db, token)
    v = found.violation
    person, _role = _require_notifiable_person(db, v, person_id)

    ensure_code_quota(
        db,
        person_id=int(person.id),
        violation_id=int(v.id),
        per_hour=int(settings.verification_codes_per_hour),
    )

    ttl = int(settings.verification_code_ttl_minutes)
    code = generate_code()
    now = utcnow()
    db.add(
        EmailVerificationCode(
            person_id=int(person.id),
            violation_id=int(v.id),
            code_hash=hash_code(code),
            expires_at=now + timedelta(minutes=ttl),
            created_at=now,
        )
    )
    db.commit()

    body = "\n\n".join(
        [
            f"Dear {person.full_name},",
            f"Your StrataGuard verification code is: {code}",
            f"This code expires in {ttl} minutes. If you did not request it, you can ignore this email.",
            notifications.SIGNATURE,
        ]
    )
    try:
        send_email(OutgoingEmail(to=str(person.email), to_name=str(person.full_name), subject="[StrataGuard] Your verification code", body=body))
    except MailTransportError:
        METRICS.inc("verification_code_send_failed")
        log.warning("verification code email failed", exc_info=True, extra={"person_id": int(person.id), "violation_id": int(v.id)})
        raise PublicFlowError(MSG_SEND_FAILED, status_code=502)

    METRICS.inc("verification_codes_sent")
    return CodeSent(email=obfuscate_email(str(person.email)), expires_in_minutes=ttl)


def verify_code(
    db: Session,
    *,
    token: str,
    person_id: int,
    code: str,
    ip_address: Optional[str] = None,
) -> Tuple[PublicUserSession, Violation, Person, str]:
    """
    On a match: marks that code used and opens a public session for the person.
    A wrong or expired code leaves every stored code untouched.
    """
    found = _require_valid_link(db, token)
    v = found.violation
    person, role = _require_notifiable_person(db, v, person_id)

    candidate = (code or "").strip()
    if not (len(candidate) == CODE_DIGITS and candidate.isdigit()):
        METRICS.inc("verification_code_mismatch")
        raise PublicFlowError(MSG_INVALID_CODE, status_code=400)

    now = utcnow()
    rows = db.scalars(
        select(EmailVerificationCode)
        .where(
            EmailVerificationCode.person_id == int(person.id),
            EmailVerificationCode.violation_id == int(v.id),
            EmailVerificationCode.used_at.is_(None),
            EmailVerificationCode.expires_at > now,
        )
        .order_by(EmailVerificationCode.created_at.desc())
    ).all()

    digest = hash_code(candidate)
    match = next((r for r in rows if hmac.compare_digest(str(r.code_hash), digest)), None)
    if match is None:
        METRICS.inc("verification_code_mismatch")
        raise PublicFlowError(MSG_INVALID_CODE, status_code=400)

    match.used_at = now
    session = PublicUserSession(
        person_id=int(person.id),
        unit_id=int(v.unit_id),
        email=str(person.email).lower(),
        full_name=str(person.full_name),
        role=role,
        expires_at=now + timedelta(hours=int(settings.public_session_ttl_hours)),
        created_at=now,
    )
    db.add(session)
    db.flush()

    audit_write(
        db,
        actor_user_id=None,
        actor_name=str(person.full_name),
        actor_email=str(person.email),
        action=AuditAction.PUBLIC_CODE_VERIFIED,
        entity_type=TargetType.PERSON,
        entity_id=person.id,
        details={"violation_uuid": v.uuid},
        ip_address=ip_address,
    )
    db.commit()
    METRICS.inc("public_sessions_opened")
    return session, v, person, role


def end_session(db: Session, *, session_id: str) -> None:
    row = db.scalar(select(PublicUserSession).where(PublicUserSession.session_id == session_id))
    if row is not None:
        row.expires_at = utcnow()
        db.commit()


# -----------------------------
# Session-scoped reads and the dispute
# -----------------------------
def _must_get_unit_violation(db: Session, p: PublicPrincipal, id_or_uuid: int | str, *, for_update: bool = False) -> Violation:
    q = select(Violation).options(selectinload(Violation.unit)).where(Violation.unit_id == int(p.unit_id))
    q = q.where(violation_key_clause(id_or_uuid))
    if for_update:
        q = q.with_for_update()
    row = db.scalar(q)
    if row is None:
        # other units' violations look the same as missing ones
        raise NotFoundError("violation not found")
    return row


def unit_violations(db: Session, p: PublicPrincipal) -> List[dict[str, Any]]:
    rows = db.scalars(
        select(Violation)
        .options(selectinload(Violation.unit))
        .where(Violation.unit_id == int(p.unit_id))
        .order_by(Violation.created_at.desc(), Violation.id.desc())
    ).all()
    return [public_violation_view(db, v, include_persons=False) for v in rows]


def violation_detail(db: Session, p: PublicPrincipal, *, id_or_uuid: int | str) -> dict[str, Any]:
    v = _must_get_unit_violation(db, p, id_or_uuid)
    history = db.scalars(
        select(ViolationHistory)
        .where(ViolationHistory.violation_id == int(v.id))
        .order_by(ViolationHistory.created_at.asc(), ViolationHistory.id.asc())
    ).all()
    visible = [h for h in history if "internal" not in (h.action or "").lower()]
    return {"violation": public_violation_view(db, v, include_persons=False), "history": visible}


def submit_dispute(
    db: Session,
    p: PublicPrincipal,
    *,
    id_or_uuid: int | str,
    comment: str,
    ip_address: Optional[str] = None,
) -> Violation:
    text = (comment or "").strip()
    if not text:
        raise PublicFlowError("Please describe why you dispute this violation", status_code=422)

    v = _must_get_unit_violation(db, p, id_or_uuid, for_update=True)
    actor = Actor(user_id=None, name=p.full_name, email=p.email, ip_address=ip_address)
    try:
        apply_status_change(
            db,
            v,
            target="disputed",
            actor=actor,
            comment=text,
            extra_details={"disputedBy": p.full_name, "role": p.role, "personId": p.person_id},
        )
        access_links.consume_links(db, violation_id=int(v.id), recipient_email=p.email)
        notifications.commit_and_dispatch(db)
    except BaseException:
        db.rollback()
        notifications.discard_pending(db)
        raise

    log.info("violation disputed via public session", extra={"violation_id": int(v.id), "person_id": p.person_id})
    return v
