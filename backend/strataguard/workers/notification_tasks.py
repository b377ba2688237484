# backend/strataguard/workers/notification_tasks.py
from __future__ import annotations

import logging
from datetime import timedelta

from ..config import settings
from ..db import SessionLocal
from ..services import rate_limit
from ..services.notifications import deliver, due_outbox_ids
from .celery_app import celery_app

log = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=None,  # the outbox row's attempt counter is the limit
    name="strataguard.workers.notification_tasks.deliver_notification",
)
def deliver_notification(self, outbox_id: int) -> dict:
    """
    Delivers one outbox row.

    Safe to run more than once for the same id: rows that are no longer
    pending are skipped. Transport failures reschedule with backoff until
    notification_max_attempts, after which the row is marked failed.
    """
    db = SessionLocal()
    try:
        result = deliver(db, outbox_id=int(outbox_id))
    finally:
        db.close()

    if result.status == "retry" and not self.request.is_eager:
        raise self.retry(countdown=int(result.retry_in_seconds or settings.notification_retry_base_seconds))
    return result.as_dict()


@celery_app.task(name="strataguard.workers.notification_tasks.sweep_notification_outbox")
def sweep_notification_outbox() -> dict:
    """
    Periodic self-healing sweep (celery beat).
    Re-enqueues pending rows whose retry is due or whose first hand-off was lost.
    """
    db = SessionLocal()
    try:
        ids = due_outbox_ids(db, limit=int(settings.notification_sweep_batch))
    finally:
        db.close()

    enqueued = 0
    for outbox_id in ids:
        try:
            deliver_notification.delay(outbox_id)
            enqueued += 1
        except Exception:
            log.warning("sweep enqueue failed", exc_info=True, extra={"outbox_id": outbox_id})
    return {"ok": True, "due": len(ids), "enqueued": enqueued}


@celery_app.task(name="strataguard.workers.notification_tasks.prune_rate_buckets")
def prune_rate_buckets() -> dict:
    db = SessionLocal()
    try:
        window = int(settings.public_rate_limit_window_seconds)
        removed = rate_limit.prune(db, older_than=timedelta(seconds=window * 4))
        db.commit()
        return {"ok": True, "removed": removed}
    finally:
        db.close()
