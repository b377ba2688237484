# backend/tests/conftest.py
from __future__ import annotations

import os
import tempfile

# must be set before anything imports strataguard.config
_TMP = tempfile.mkdtemp(prefix="strataguard-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP, 'test.db')}")
os.environ.setdefault("UPLOAD_DIR", os.path.join(_TMP, "uploads"))
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("AUTH_MODE", "dev")
os.environ.setdefault("MAIL_TRANSPORT", "log")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "1")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

import pytest
from fastapi.testclient import TestClient

from strataguard import models  # noqa: F401
from strataguard.db import Base, SessionLocal, engine
from strataguard.main import create_app
from strataguard.models import Person, PropertyUnit, UnitPersonRole, ViolationCategory
from strataguard.services.runtime_metrics import METRICS

ADMIN = {"X-User-Email": "admin@test.local", "X-User-Role": "admin"}
COUNCIL = {"X-User-Email": "council@test.local", "X-User-Role": "council"}
RESIDENT = {"X-User-Email": "concierge@test.local", "X-User-Role": "user"}


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    METRICS.reset()
    yield


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app())


@pytest.fixture
def unit_101(db) -> dict:
    """Unit 101 with an owner and a tenant, both opted into email."""
    unit = PropertyUnit(unit_number="101", strata_lot="SL-1", floor="1")
    owner = Person(full_name="Olivia Owner", email="olivia@test.local")
    tenant = Person(full_name="Tom Tenant", email="tom@test.local")
    db.add_all([unit, owner, tenant])
    db.flush()
    db.add_all(
        [
            UnitPersonRole(unit_id=unit.id, person_id=owner.id, role="owner", receive_email_notifications=True),
            UnitPersonRole(unit_id=unit.id, person_id=tenant.id, role="tenant", receive_email_notifications=True),
        ]
    )
    db.commit()
    return {"unit_id": int(unit.id), "owner_id": int(owner.id), "tenant_id": int(tenant.id)}


@pytest.fixture
def noise_category(db) -> int:
    row = ViolationCategory(name="Noise", description="Excessive noise", bylaw_reference="Bylaw 3.1", default_fine_amount=100)
    db.add(row)
    db.commit()
    return int(row.id)


def report_violation(client: TestClient, unit_id: int, *, headers: dict | None = None, files=None, **fields) -> dict:
    data = {
        "unitId": str(unit_id),
        "violationType": "Noise",
        "violationDate": "2026-10-01",
        "description": "Loud music after 11pm",
    }
    data.update({k: v for k, v in fields.items() if v is not None})
    r = client.post("/api/violations", data=data, files=files, headers=headers or RESIDENT)
    assert r.status_code == 201, r.text
    return r.json()
