# backend/tests/test_auth_and_audit.py
from __future__ import annotations

import json

import pytest
from sqlalchemy import select

from conftest import ADMIN, RESIDENT, report_violation
from strataguard.auth import create_access_token, hash_password, verify_password
from strataguard.config import Settings
from strataguard.db import SessionLocal
from strataguard.models import AppUser, AuditEvent


def _user(db, email: str, role: str, password: str) -> AppUser:
    row = AppUser(email=email, full_name="Pat Admin", role=role, password_hash=hash_password(password))
    db.add(row)
    db.commit()
    return row


def test_password_hash_roundtrip():
    h = hash_password("s3cret")
    assert h.startswith("pbkdf2_sha256$")
    assert verify_password("s3cret", h)
    assert not verify_password("wrong", h)
    assert not verify_password("s3cret", "garbage")


def test_login_sets_cookie_and_token(client, db):
    _user(db, "pat@test.local", "admin", "s3cret")

    r = client.post("/api/auth/login", json={"email": "Pat@test.local", "password": "nope"})
    assert r.status_code == 401

    r = client.post("/api/auth/login", json={"email": "Pat@test.local", "password": "s3cret"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["tokenType"] == "bearer"
    assert body["user"]["role"] == "admin"
    assert "strataguard_jwt" in r.cookies

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['accessToken']}"})
    assert me.status_code == 200
    assert me.json()["email"] == "pat@test.local"

    with SessionLocal() as s:
        assert s.scalar(select(AuditEvent).where(AuditEvent.action == "USER_LOGIN")) is not None


def test_bad_or_expired_tokens_are_rejected(client, db):
    user = _user(db, "pat@test.local", "admin", "s3cret")
    expired = create_access_token(user=user, minutes=-1)

    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert r.status_code == 401
    r = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_dev_headers_provision_users(client):
    r = client.get("/api/auth/me", headers=RESIDENT)
    assert r.status_code == 200
    assert r.json()["role"] == "user"


def test_lifecycle_actions_are_audited(client, unit_101):
    v = report_violation(client, unit_101["unit_id"])
    client.patch(f"/api/violations/{v['id']}/fine", json={"amount": 60}, headers=ADMIN)
    client.patch(f"/api/violations/{v['id']}/status", json={"status": "approved"}, headers=ADMIN)

    assert client.get("/api/audit-logs", headers=RESIDENT).status_code == 403

    r = client.get("/api/audit-logs", params={"targetType": "VIOLATION", "targetId": v["uuid"]}, headers=ADMIN)
    assert r.status_code == 200
    actions = [e["action"] for e in r.json()]
    assert actions == ["VIOLATION_APPROVED", "VIOLATION_FINE_SET", "VIOLATION_CREATED"]

    approved = r.json()[0]
    assert approved["actorEmail"] == "admin@test.local"
    assert json.loads(approved["detailsJson"])["from"] == "pending_approval"


def test_health_and_request_id(client):
    r = client.get("/api/health", headers={"X-Request-ID": "abc-123"})
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.headers["X-Request-ID"] == "abc-123"
    assert r.headers["X-Content-Type-Options"] == "nosniff"

    m = client.get("/api/metrics")
    assert m.status_code == 200


def test_prod_settings_refuse_the_log_mail_transport():
    hardened = dict(
        app_env="prod",
        auth_mode="jwt",
        jwt_secret="s3cret",
        verification_code_pepper="pepper",
        cors_allow_origins=["https://strata.example"],
    )
    assert Settings(**hardened, mail_transport="smtp").is_prod

    with pytest.raises(ValueError, match="mail_transport"):
        Settings(**hardened, mail_transport="log")
