# backend/strataguard/services/notifications.py
from __future__ import annotations

import hashlib
import logging
import random
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from ..config import settings
from ..models import (
    AppUser,
    NotificationOutbox,
    Person,
    UnitPersonRole,
    Violation,
    utcnow,
)
from .mailer import MailTransportError, OutgoingEmail, send_email
from .runtime_metrics import METRICS

log = logging.getLogger(__name__)

_PENDING_KEY = "strataguard.pending_outbox"

KIND_NEW_VIOLATION_OCCUPANT = "violation_created.occupant"
KIND_NEW_VIOLATION_ADJUDICATOR = "violation_created.adjudicator"
KIND_APPROVED_OCCUPANT = "violation_approved.occupant"
KIND_REJECTED_OCCUPANT = "violation_rejected.occupant"
KIND_DISPUTED_ADJUDICATOR = "violation_disputed.adjudicator"

SIGNATURE = "Thank you,\nStrataGuard System"


def format_fine(amount: Optional[int]) -> str:
    return f"${int(amount or 0):.2f}"


def dispute_link_url(token: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/public/violation-dispute/{token}"


# -----------------------------
# Recipients
# -----------------------------
@dataclass(frozen=True)
class Recipient:
    email: str
    name: str
    person_id: Optional[int] = None
    role: Optional[str] = None


def notifiable_persons(db: Session, *, unit_id: int) -> List[Recipient]:
    """Owners and tenants of a unit who opted into email, one entry per person."""
    rows = db.execute(
        select(Person, UnitPersonRole.role)
        .join(UnitPersonRole, UnitPersonRole.person_id == Person.id)
        .where(
            UnitPersonRole.unit_id == int(unit_id),
            UnitPersonRole.receive_email_notifications.is_(True),
        )
        .order_by(UnitPersonRole.role.asc(), Person.id.asc())
    ).all()

    out: List[Recipient] = []
    seen: set[int] = set()
    for person, role in rows:
        if int(person.id) in seen or not person.email:
            continue
        seen.add(int(person.id))
        out.append(Recipient(email=str(person.email), name=str(person.full_name), person_id=int(person.id), role=str(role)))
    return out


def adjudicators(db: Session) -> List[Recipient]:
    rows = db.scalars(
        select(AppUser)
        .where(AppUser.role.in_(("admin", "council")), AppUser.is_active.is_(True))
        .order_by(AppUser.id.asc())
    ).all()
    return [Recipient(email=str(u.email), name=str(u.full_name or u.email), role=str(u.role)) for u in rows]


# -----------------------------
# Outbox
# -----------------------------
def _idempotency_key(kind: str, email: str, violation_id: Optional[int], event_ref: str) -> str:
    raw = "|".join([kind, email.strip().lower(), str(violation_id or ""), event_ref])
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:40]


def queue_notification(
    db: Session,
    *,
    kind: str,
    recipient: Recipient,
    subject: str,
    body: str,
    violation_id: Optional[int],
    event_ref: str,
) -> Optional[NotificationOutbox]:
    """
    Adds an outbox row to the caller's transaction. Delivery starts only after
    the caller commits and calls dispatch_pending(). Returns None for a
    duplicate event.
    """
    key = _idempotency_key(kind, recipient.email, violation_id, event_ref)
    # autoflush is off, so rows queued earlier in this transaction are checked by hand
    if any(r.idempotency_key == key for r in db.info.get(_PENDING_KEY, [])):
        return None
    if db.scalar(select(NotificationOutbox.id).where(NotificationOutbox.idempotency_key == key)) is not None:
        return None

    row = NotificationOutbox(
        kind=kind,
        violation_id=violation_id,
        recipient_email=recipient.email,
        recipient_name=recipient.name,
        subject=subject,
        body=body,
        idempotency_key=key,
        status="pending",
        attempts=0,
        created_at=utcnow(),
    )
    db.add(row)
    db.info.setdefault(_PENDING_KEY, []).append(row)
    return row


def dispatch_pending(db: Session) -> List[int]:
    """
    Hands rows queued in this session to the worker. Call after commit.
    Broker failures are logged; the periodic sweep picks those rows up.
    """
    rows: List[NotificationOutbox] = db.info.pop(_PENDING_KEY, [])
    ids = [int(r.id) for r in rows if r.id is not None]
    if not ids:
        return []

    from ..workers.notification_tasks import deliver_notification

    for outbox_id in ids:
        try:
            deliver_notification.delay(outbox_id)
            METRICS.inc("notifications_enqueued")
        except Exception:
            METRICS.inc("notifications_enqueue_failed")
            log.warning("notification enqueue failed", exc_info=True, extra={"outbox_id": outbox_id})
    return ids


def discard_pending(db: Session) -> None:
    db.info.pop(_PENDING_KEY, None)


def commit_and_dispatch(db: Session) -> List[int]:
    try:
        db.commit()
    except Exception:
        discard_pending(db)
        raise
    return dispatch_pending(db)


# -----------------------------
# Delivery (runs in the worker)
# -----------------------------
@dataclass(frozen=True)
class DeliveryResult:
    outbox_id: int
    status: str  # sent | retry | failed | skipped | missing
    attempts: int = 0
    retry_in_seconds: Optional[int] = None
    error: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "outbox_id": self.outbox_id,
            "status": self.status,
            "attempts": self.attempts,
            "retry_in_seconds": self.retry_in_seconds,
            "error": self.error,
        }


def backoff_seconds(attempts: int) -> int:
    """Exponential backoff with +/-20% jitter, capped."""
    base = int(settings.notification_retry_base_seconds or 5)
    cap = int(settings.notification_retry_max_seconds or 120)
    delay = min(cap, base * (2 ** max(0, int(attempts) - 1)))
    jitter = int(delay * 0.2)
    if jitter > 0:
        delay = max(1, delay + random.randint(-jitter, jitter))
    return delay


def deliver(db: Session, *, outbox_id: int) -> DeliveryResult:
    row = db.get(NotificationOutbox, int(outbox_id))
    if row is None:
        return DeliveryResult(int(outbox_id), "missing")
    if row.status != "pending":
        # at-least-once hand-off; a redelivered id that already finished is a no-op
        return DeliveryResult(int(row.id), "skipped", attempts=int(row.attempts))

    row.attempts = int(row.attempts or 0) + 1
    try:
        send_email(
            OutgoingEmail(
                to=row.recipient_email,
                to_name=row.recipient_name,
                subject=row.subject,
                body=row.body,
                idempotency_key=row.idempotency_key,
            )
        )
    except MailTransportError as e:
        row.last_error = str(e)
        if row.attempts >= int(settings.notification_max_attempts):
            row.status = "failed"
            row.next_attempt_at = None
            db.commit()
            METRICS.inc("notifications_failed")
            log.error("notification delivery failed permanently", extra={"outbox_id": int(row.id)})
            return DeliveryResult(int(row.id), "failed", attempts=int(row.attempts), error=str(e))

        delay = backoff_seconds(int(row.attempts))
        row.next_attempt_at = utcnow() + timedelta(seconds=delay)
        db.commit()
        METRICS.inc("notifications_retried")
        log.warning("notification delivery failed, will retry", extra={"outbox_id": int(row.id)})
        return DeliveryResult(int(row.id), "retry", attempts=int(row.attempts), retry_in_seconds=delay, error=str(e))

    row.status = "sent"
    row.sent_at = utcnow()
    row.last_error = None
    row.next_attempt_at = None
    db.commit()
    METRICS.inc("notifications_sent")
    return DeliveryResult(int(row.id), "sent", attempts=int(row.attempts))


def due_outbox_ids(db: Session, *, limit: int, grace_seconds: int = 60) -> List[int]:
    """Pending rows whose retry time passed, or whose first hand-off looks lost."""
    now = utcnow()
    q = (
        select(NotificationOutbox.id)
        .where(
            NotificationOutbox.status == "pending",
            or_(
                NotificationOutbox.next_attempt_at <= now,
                (NotificationOutbox.next_attempt_at.is_(None))
                & (NotificationOutbox.created_at <= now - timedelta(seconds=int(grace_seconds))),
            ),
        )
        .order_by(NotificationOutbox.id.asc())
        .limit(int(limit))
    )
    return [int(x) for x in db.scalars(q).all()]


# -----------------------------
# Templates
# -----------------------------
def _details_block(v: Violation) -> str:
    lines = [
        "Violation Details:",
        f"- Reference: {v.reference_number}",
        f"- Unit: {v.unit_number}",
        f"- Type: {v.violation_type}",
        f"- Date: {v.violation_date.isoformat()}",
    ]
    if v.bylaw_reference:
        lines.append(f"- Bylaw: {v.bylaw_reference}")
    return "\n".join(lines)


def notify_violation_created(db: Session, v: Violation, *, links: dict[int, str]) -> None:
    """links maps person_id to the access-link token issued for that person."""
    subject = f"[StrataGuard] New Violation Report for Unit {v.unit_number}"
    for r in notifiable_persons(db, unit_id=int(v.unit_id)):
        token = links.get(int(r.person_id or 0))
        if token is None:
            continue
        body = "\n\n".join(
            [
                f"Dear {r.name},",
                f"A new violation has been reported for Unit {v.unit_number}.",
                _details_block(v),
                "You can review this violation and submit a dispute using the secure link below. "
                f"The link can be used once and expires in {settings.access_link_ttl_days} days.",
                dispute_link_url(token),
                "If no dispute is received, the strata council will review the violation "
                "and a fine may be levied as per the strata bylaws.",
                SIGNATURE,
            ]
        )
        queue_notification(
            db,
            kind=KIND_NEW_VIOLATION_OCCUPANT,
            recipient=r,
            subject=subject,
            body=body,
            violation_id=int(v.id),
            event_ref=token,
        )

    admin_subject = f"[StrataGuard] Violation Pending Approval for Unit {v.unit_number}"
    for r in adjudicators(db):
        body = "\n\n".join(
            [
                f"Dear {r.name},",
                f"A new violation was reported by {v.reporter_name} and is awaiting approval.",
                _details_block(v),
                SIGNATURE,
            ]
        )
        queue_notification(
            db,
            kind=KIND_NEW_VIOLATION_ADJUDICATOR,
            recipient=r,
            subject=admin_subject,
            body=body,
            violation_id=int(v.id),
            event_ref="created",
        )


def notify_status_decision(db: Session, v: Violation, *, status: str, event_ref: str, reason: Optional[str] = None) -> None:
    if status == "approved":
        subject = f"[StrataGuard] Violation Approved for Unit {v.unit_number}"
        kind = KIND_APPROVED_OCCUPANT
        text = [
            f"The violation reported for Unit {v.unit_number} has been approved by the strata council.",
            _details_block(v) + f"\n- Fine Amount: {format_fine(v.fine_amount)}",
            "This fine will be added to your strata fee account. Please ensure that the payment "
            "is made with your next strata fee payment.",
        ]
    elif status == "rejected":
        subject = f"[StrataGuard] Violation Rejected for Unit {v.unit_number}"
        kind = KIND_REJECTED_OCCUPANT
        text = [
            f"The violation reported for Unit {v.unit_number} has been rejected by the strata council.",
            _details_block(v),
            f"Reason: {reason or 'Not provided'}",
            "No further action is required.",
        ]
    else:
        return

    for r in notifiable_persons(db, unit_id=int(v.unit_id)):
        body = "\n\n".join([f"Dear {r.name},", *text, SIGNATURE])
        queue_notification(db, kind=kind, recipient=r, subject=subject, body=body, violation_id=int(v.id), event_ref=event_ref)


def notify_violation_disputed(db: Session, v: Violation, *, disputed_by: str, comment: Optional[str], event_ref: str) -> None:
    subject = f"[StrataGuard] Violation Disputed for Unit {v.unit_number}"
    for r in adjudicators(db):
        body = "\n\n".join(
            [
                f"Dear {r.name},",
                f"{disputed_by} has disputed the violation for Unit {v.unit_number}.",
                _details_block(v),
                f"Dispute comment:\n{comment or '(none)'}",
                SIGNATURE,
            ]
        )
        queue_notification(
            db,
            kind=KIND_DISPUTED_ADJUDICATOR,
            recipient=r,
            subject=subject,
            body=body,
            violation_id=int(v.id),
            event_ref=event_ref,
        )
