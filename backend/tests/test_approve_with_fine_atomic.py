# backend/tests/test_approve_with_fine_atomic.py
from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import select

from strataguard.db import SessionLocal
from strataguard.models import AppUser, NotificationOutbox, Violation, ViolationHistory
from strataguard.schemas import ViolationCreate
from strataguard.services import violations as svc


def _actor(db) -> svc.Actor:
    user = AppUser(email="chair@t.local", full_name="Chair", role="council")
    db.add(user)
    db.commit()
    return svc.Actor(user_id=int(user.id), name="Chair", email="chair@t.local")


def test_status_failure_rolls_back_the_fine(unit_101, monkeypatch):
    db = SessionLocal()
    try:
        actor = _actor(db)
        v = svc.create_violation(
            db,
            payload=ViolationCreate(
                unit_id=unit_101["unit_id"],
                violation_type="Noise",
                violation_date=date(2026, 10, 1),
                description="Party",
            ),
            actor=actor,
        )
        vid = int(v.id)

        def boom(*a, **kw):
            raise RuntimeError("status write failed")

        monkeypatch.setattr(svc, "apply_status_change", boom)

        with pytest.raises(RuntimeError):
            svc.approve_with_fine(db, id_or_uuid=vid, amount=250, actor=actor)
    finally:
        db.close()

    with SessionLocal() as s:
        row = s.get(Violation, vid)
        assert row.fine_amount is None
        assert row.status == "pending_approval"
        actions = s.scalars(select(ViolationHistory.action).where(ViolationHistory.violation_id == vid)).all()
        assert list(actions) == ["Violation created"]


def test_successful_approval_queues_fine_email(unit_101):
    db = SessionLocal()
    try:
        actor = _actor(db)
        v = svc.create_violation(
            db,
            payload=ViolationCreate(
                unit_id=unit_101["unit_id"],
                violation_type="Noise",
                violation_date=date(2026, 10, 1),
                description="Party",
            ),
            actor=actor,
        )
        svc.approve_with_fine(db, id_or_uuid=v.uuid, amount=150, actor=actor)
        vid = int(v.id)
    finally:
        db.close()

    with SessionLocal() as s:
        approved = s.scalars(
            select(NotificationOutbox).where(
                NotificationOutbox.violation_id == vid,
                NotificationOutbox.kind == "violation_approved.occupant",
            )
        ).all()
        assert sorted(r.recipient_email for r in approved) == ["olivia@test.local", "tom@test.local"]
        assert all("$150.00" in r.body for r in approved)
        assert all(r.status == "sent" for r in approved)
