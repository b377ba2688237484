# backend/strataguard/workers/celery_app.py
from __future__ import annotations

from celery import Celery

from ..config import settings

celery_app = Celery(
    "strataguard",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["strataguard.workers.notification_tasks"],
)

celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    timezone="UTC",
    task_always_eager=bool(settings.celery_task_always_eager),
    task_eager_propagates=False,
)

celery_app.conf.task_routes = {
    "strataguard.workers.notification_tasks.*": {"queue": "notifications"},
}

celery_app.conf.beat_schedule = {
    "sweep-notification-outbox": {
        "task": "strataguard.workers.notification_tasks.sweep_notification_outbox",
        "schedule": 60.0,
    },
    "prune-public-rate-buckets": {
        "task": "strataguard.workers.notification_tasks.prune_rate_buckets",
        "schedule": 60.0 * 60,
    },
}
