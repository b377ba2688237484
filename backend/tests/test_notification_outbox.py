# backend/tests/test_notification_outbox.py
from __future__ import annotations

from datetime import timedelta

from sqlalchemy import select

from conftest import ADMIN, COUNCIL, report_violation
from strataguard.config import settings
from strataguard.db import SessionLocal
from strataguard.models import NotificationOutbox, utcnow
from strataguard.services import notifications
from strataguard.services.mailer import MailTransportError
from strataguard.services.notifications import Recipient, deliver, due_outbox_ids, queue_notification
from strataguard.services.runtime_metrics import METRICS
from strataguard.workers.notification_tasks import sweep_notification_outbox


def _outbox(violation_id: int | None = None) -> list[NotificationOutbox]:
    with SessionLocal() as s:
        q = select(NotificationOutbox).order_by(NotificationOutbox.id.asc())
        if violation_id is not None:
            q = q.where(NotificationOutbox.violation_id == violation_id)
        return list(s.scalars(q).all())


def _queue_one(event_ref: str = "t1") -> int:
    with SessionLocal() as s:
        row = queue_notification(
            s,
            kind="test",
            recipient=Recipient(email="olivia@test.local", name="Olivia Owner"),
            subject="hello",
            body="body",
            violation_id=None,
            event_ref=event_ref,
        )
        s.commit()
        notifications.discard_pending(s)
        return int(row.id)


def test_new_violation_fans_out_to_occupants_and_adjudicators(client, unit_101):
    # provision the adjudicators first
    client.get("/api/auth/me", headers=ADMIN)
    client.get("/api/auth/me", headers=COUNCIL)

    v = report_violation(client, unit_101["unit_id"])
    rows = _outbox(v["id"])

    occupants = [r for r in rows if r.kind == "violation_created.occupant"]
    admins = [r for r in rows if r.kind == "violation_created.adjudicator"]
    assert sorted(r.recipient_email for r in occupants) == ["olivia@test.local", "tom@test.local"]
    assert sorted(r.recipient_email for r in admins) == ["admin@test.local", "council@test.local"]

    assert all(r.status == "sent" and r.attempts == 1 for r in rows)
    assert all(r.subject == "[StrataGuard] New Violation Report for Unit 101" for r in occupants)
    assert all("/public/violation-dispute/" in r.body for r in occupants)
    # each occupant gets their own link
    assert len({r.body for r in occupants}) == 2


def test_rejection_email_carries_reason(client, unit_101):
    v = report_violation(client, unit_101["unit_id"])
    client.patch(
        f"/api/violations/{v['id']}/status",
        json={"status": "rejected", "rejectionReason": "Photo shows unit 102"},
        headers=ADMIN,
    )

    rejected = [r for r in _outbox(v["id"]) if r.kind == "violation_rejected.occupant"]
    assert len(rejected) == 2
    assert all("Reason: Photo shows unit 102" in r.body for r in rejected)


def test_opted_out_occupant_gets_nothing(client, unit_101, db):
    from strataguard.models import UnitPersonRole

    role = db.scalar(select(UnitPersonRole).where(UnitPersonRole.person_id == unit_101["tenant_id"]))
    role.receive_email_notifications = False
    db.commit()

    v = report_violation(client, unit_101["unit_id"])
    assert [r.recipient_email for r in _outbox(v["id"]) if r.kind.endswith(".occupant")] == ["olivia@test.local"]


def test_same_event_is_queued_once():
    with SessionLocal() as s:
        r = Recipient(email="olivia@test.local", name="Olivia Owner")
        first = queue_notification(s, kind="k", recipient=r, subject="s", body="b", violation_id=None, event_ref="e")
        again = queue_notification(s, kind="k", recipient=r, subject="s", body="b", violation_id=None, event_ref="e")
        assert first is not None
        assert again is None
        s.commit()
        notifications.discard_pending(s)
        assert queue_notification(s, kind="k", recipient=r, subject="s", body="b", violation_id=None, event_ref="e") is None


def test_transport_failures_retry_then_fail(monkeypatch):
    def fail(_mail):
        raise MailTransportError("connection refused")

    monkeypatch.setattr(notifications, "send_email", fail)
    monkeypatch.setattr(settings, "notification_max_attempts", 3)
    oid = _queue_one()

    results = []
    for _ in range(3):
        with SessionLocal() as s:
            results.append(deliver(s, outbox_id=oid))

    assert [r.status for r in results] == ["retry", "retry", "failed"]
    assert results[0].retry_in_seconds and results[0].retry_in_seconds > 0

    row = _outbox()[0]
    assert row.status == "failed"
    assert row.attempts == 3
    assert row.last_error == "connection refused"
    assert METRICS.get("notifications_failed") == 1


def test_redelivery_of_sent_row_is_skipped():
    oid = _queue_one()
    with SessionLocal() as s:
        assert deliver(s, outbox_id=oid).status == "sent"
    with SessionLocal() as s:
        assert deliver(s, outbox_id=oid).status == "skipped"
        assert deliver(s, outbox_id=999999).status == "missing"


def test_sweep_picks_up_due_rows():
    oid = _queue_one()
    with SessionLocal() as s:
        row = s.get(NotificationOutbox, oid)
        row.next_attempt_at = utcnow() - timedelta(seconds=5)
        s.commit()
        assert due_outbox_ids(s, limit=10) == [oid]

    out = sweep_notification_outbox.apply().get()
    assert out["due"] == 1
    assert _outbox()[0].status == "sent"


def test_fresh_rows_wait_for_the_grace_period():
    _queue_one()
    with SessionLocal() as s:
        assert due_outbox_ids(s, limit=10, grace_seconds=60) == []
