# backend/strataguard/services/access_links.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..config import settings
from ..models import Violation, ViolationAccessLink, utcnow

LINK_VALID = "valid"
LINK_USED = "used"
LINK_EXPIRED = "expired"
LINK_INVALID = "invalid"


@dataclass(frozen=True)
class LinkLookup:
    status: str
    link: Optional[ViolationAccessLink] = None
    violation: Optional[Violation] = None


def issue_link(db: Session, *, violation: Violation, recipient_email: str, ttl_days: Optional[int] = None) -> ViolationAccessLink:
    days = int(ttl_days if ttl_days is not None else settings.access_link_ttl_days)
    now = utcnow()
    row = ViolationAccessLink(
        violation_id=int(violation.id),
        violation_uuid=str(violation.uuid),
        recipient_email=recipient_email.strip().lower(),
        expires_at=now + timedelta(days=days),
        created_at=now,
    )
    db.add(row)
    db.flush()
    return row


def lookup(db: Session, *, token: str) -> LinkLookup:
    """Expiry wins over usage: an expired link reports expired even if it was used."""
    row = db.scalar(select(ViolationAccessLink).where(ViolationAccessLink.token == str(token).strip()))
    if row is None:
        return LinkLookup(LINK_INVALID)

    if row.expires_at <= utcnow():
        return LinkLookup(LINK_EXPIRED, link=row)
    if row.used_at is not None:
        return LinkLookup(LINK_USED, link=row)

    violation = db.get(Violation, int(row.violation_id))
    if violation is None:
        return LinkLookup(LINK_INVALID)
    return LinkLookup(LINK_VALID, link=row, violation=violation)


def consume_links(db: Session, *, violation_id: int, recipient_email: str) -> int:
    """Marks every still-unused link for (violation, email) as used. Returns rows touched."""
    res = db.execute(
        update(ViolationAccessLink)
        .where(
            ViolationAccessLink.violation_id == int(violation_id),
            ViolationAccessLink.recipient_email == recipient_email.strip().lower(),
            ViolationAccessLink.used_at.is_(None),
        )
        .values(used_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return int(res.rowcount or 0)
