# backend/strataguard/services/rate_limit.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..errors import RateLimited
from ..models import EmailVerificationCode, PublicRateBucket, utcnow
from .runtime_metrics import METRICS


def _window_start(now: datetime, window_seconds: int) -> datetime:
    epoch = int(now.replace(tzinfo=timezone.utc).timestamp())
    return datetime.fromtimestamp(epoch - (epoch % int(window_seconds)), tz=timezone.utc).replace(tzinfo=None)


def consume(db: Session, *, key: str, limit: int, window_seconds: int, now: datetime | None = None) -> int:
    """
    Counts one hit against a fixed window (within the caller's transaction).
    Returns remaining hits in the window.
    Raises RateLimited once the limit is exceeded.
    """
    now = now or utcnow()
    start = _window_start(now, window_seconds)

    row = db.scalar(
        select(PublicRateBucket).where(PublicRateBucket.bucket_key == key, PublicRateBucket.window_start == start)
    )
    if row is None:
        row = PublicRateBucket(bucket_key=key, window_start=start, hits=0, updated_at=now)
        db.add(row)
        db.flush()

    if int(row.hits) >= int(limit):
        METRICS.inc("public_rate_limited")
        raise RateLimited()

    row.hits = int(row.hits) + 1
    row.updated_at = now
    db.flush()

    return max(int(limit) - int(row.hits), 0)


def prune(db: Session, *, older_than: timedelta) -> int:
    cutoff = utcnow() - older_than
    rows = list(db.scalars(select(PublicRateBucket).where(PublicRateBucket.window_start < cutoff)).all())
    for r in rows:
        db.delete(r)
    return len(rows)


def ensure_code_quota(db: Session, *, person_id: int, violation_id: int, per_hour: int) -> None:
    """Verification codes issued for (person, violation) over the trailing hour."""
    since = utcnow() - timedelta(hours=1)
    issued = db.scalar(
        select(func.count(EmailVerificationCode.id)).where(
            EmailVerificationCode.person_id == int(person_id),
            EmailVerificationCode.violation_id == int(violation_id),
            EmailVerificationCode.created_at >= since,
        )
    )
    if int(issued or 0) >= int(per_hour):
        METRICS.inc("verification_code_rate_limited")
        raise RateLimited("Too many verification codes requested, please try again later")
