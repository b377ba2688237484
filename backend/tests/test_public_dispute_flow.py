# backend/tests/test_public_dispute_flow.py
from __future__ import annotations

import json
import logging
from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import ADMIN, report_violation
from strataguard.config import settings
from strataguard.db import SessionLocal
from strataguard.logging_config import JsonFormatter
from strataguard.models import EmailVerificationCode, Person, PropertyUnit, UnitPersonRole, ViolationAccessLink, utcnow
from strataguard.services import public_dispute

SESSION = "X-Public-Session-Id"


def _token_for(violation_id: int, email: str) -> str:
    with SessionLocal() as s:
        return s.scalar(
            select(ViolationAccessLink.token).where(
                ViolationAccessLink.violation_id == violation_id,
                ViolationAccessLink.recipient_email == email,
            )
        )


@pytest.fixture
def fixed_code(monkeypatch):
    monkeypatch.setattr(public_dispute, "generate_code", lambda: "123456")
    return "123456"


@pytest.fixture
def reported(client, unit_101) -> dict:
    v = report_violation(client, unit_101["unit_id"])
    return {**unit_101, "violation": v, "token": _token_for(v["id"], "olivia@test.local")}


def _open_session(client, token: str, person_id: int, code: str) -> str:
    r = client.post(f"/public/violation/{token}/send-code", json={"personId": person_id})
    assert r.status_code == 200, r.text
    r = client.post(f"/public/violation/{token}/verify-code", json={"personId": person_id, "code": code})
    assert r.status_code == 200, r.text
    return r.json()["sessionId"]


def test_valid_link_shows_violation_and_obfuscated_people(client, reported):
    r = client.get(f"/public/violation/{reported['token']}/status")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "valid"
    assert body["violation"]["uuid"] == reported["violation"]["uuid"]

    people = {p["fullName"]: p for p in body["violation"]["persons"]}
    assert people["Olivia Owner"]["email"] == "o***a@test.local"
    assert people["Tom Tenant"]["role"] == "tenant"
    assert r.headers["Cache-Control"] == "no-store"


def test_full_dispute_flow(client, reported, fixed_code):
    token = reported["token"]
    owner_id = reported["owner_id"]

    r = client.post(f"/public/violation/{token}/send-code", json={"personId": owner_id})
    assert r.status_code == 200, r.text
    assert r.json()["email"] == "o***a@test.local"
    assert r.json()["expiresInMinutes"] == settings.verification_code_ttl_minutes

    r = client.post(f"/public/violation/{token}/verify-code", json={"personId": owner_id, "code": fixed_code})
    assert r.status_code == 200, r.text
    session_id = r.json()["sessionId"]
    assert r.json()["person"]["role"] == "owner"

    # a code verifies once
    r = client.post(f"/public/violation/{token}/verify-code", json={"personId": owner_id, "code": fixed_code})
    assert r.status_code == 400

    mine = client.get("/public/violations", headers={SESSION: session_id})
    assert mine.status_code == 200
    assert [x["id"] for x in mine.json()] == [reported["violation"]["id"]]

    vid = reported["violation"]["id"]
    r = client.post(f"/public/violations/{vid}/dispute", json={"comment": "I was not home that night"}, headers={SESSION: session_id})
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "disputed"

    hist = client.get(f"/api/violations/{vid}/history", headers=ADMIN).json()
    assert hist[-1]["action"] == "Status changed to disputed"
    assert hist[-1]["comment"] == "I was not home that night"
    assert hist[-1]["userId"] is None
    assert hist[-1]["details"]["disputedBy"] == "Olivia Owner"

    r = client.get(f"/public/violation/{token}/status")
    assert r.status_code == 200
    assert r.json() == {"status": "used"}

    detail = client.get(f"/public/violations/{vid}", headers={SESSION: session_id}).json()
    assert detail["violation"]["status"] == "disputed"
    assert [h["action"] for h in detail["history"]][-1] == "Status changed to disputed"

    # disputed -> disputed is not an edge
    r = client.post(f"/public/violations/{vid}/dispute", json={"comment": "again"}, headers={SESSION: session_id})
    assert r.status_code == 409

    r = client.post("/public/logout", headers={SESSION: session_id})
    assert r.status_code == 200
    assert client.get("/public/violations", headers={SESSION: session_id}).status_code == 401


def test_wrong_code_does_not_consume_the_real_one(client, reported, fixed_code):
    token, owner_id = reported["token"], reported["owner_id"]
    client.post(f"/public/violation/{token}/send-code", json={"personId": owner_id})

    for bad in ("000000", "12345", "abcdef"):
        r = client.post(f"/public/violation/{token}/verify-code", json={"personId": owner_id, "code": bad})
        assert r.status_code == 400
        assert r.json()["detail"] == "Invalid or expired verification code"

    with SessionLocal() as s:
        assert s.scalar(select(EmailVerificationCode.used_at)) is None

    r = client.post(f"/public/violation/{token}/verify-code", json={"personId": owner_id, "code": fixed_code})
    assert r.status_code == 200


def test_codes_are_stored_hashed(client, reported, fixed_code):
    client.post(f"/public/violation/{reported['token']}/send-code", json={"personId": reported["owner_id"]})
    with SessionLocal() as s:
        stored = s.scalar(select(EmailVerificationCode.code_hash))
    assert stored != fixed_code
    assert stored == public_dispute.hash_code(fixed_code)


def test_expired_code_is_rejected(client, reported, fixed_code):
    token, owner_id = reported["token"], reported["owner_id"]
    client.post(f"/public/violation/{token}/send-code", json={"personId": owner_id})
    with SessionLocal() as s:
        row = s.scalar(select(EmailVerificationCode))
        row.expires_at = utcnow() - timedelta(seconds=1)
        s.commit()

    r = client.post(f"/public/violation/{token}/verify-code", json={"personId": owner_id, "code": fixed_code})
    assert r.status_code == 400


def test_person_must_belong_to_the_unit(client, reported, db):
    stranger = Person(full_name="Sam Stranger", email="sam@test.local")
    db.add(stranger)
    db.commit()

    r = client.post(f"/public/violation/{reported['token']}/send-code", json={"personId": int(stranger.id)})
    assert r.status_code == 400
    assert r.json()["detail"] == "Please select a person associated with this unit"


def test_opted_out_person_cannot_request_a_code(client, reported):
    with SessionLocal() as s:
        role = s.scalar(select(UnitPersonRole).where(UnitPersonRole.person_id == reported["tenant_id"]))
        role.receive_email_notifications = False
        s.commit()

    r = client.post(f"/public/violation/{reported['token']}/send-code", json={"personId": reported["tenant_id"]})
    assert r.status_code == 400


def test_link_states(client, reported):
    assert client.get("/public/violation/not-a-token/status").status_code == 404
    assert client.get("/public/violation/not-a-token/status").json() == {"status": "invalid"}

    with SessionLocal() as s:
        link = s.scalar(select(ViolationAccessLink).where(ViolationAccessLink.token == reported["token"]))
        link.used_at = utcnow()
        s.commit()
    assert client.get(f"/public/violation/{reported['token']}/status").json() == {"status": "used"}

    # expiry wins over usage
    with SessionLocal() as s:
        link = s.scalar(select(ViolationAccessLink).where(ViolationAccessLink.token == reported["token"]))
        link.expires_at = utcnow() - timedelta(minutes=1)
        s.commit()
    r = client.get(f"/public/violation/{reported['token']}/status")
    assert r.status_code == 410
    assert r.json() == {"status": "expired"}

    r = client.post(f"/public/violation/{reported['token']}/send-code", json={"personId": reported["owner_id"]})
    assert r.status_code == 410


def test_session_only_sees_its_own_unit(client, reported, fixed_code, db):
    other = PropertyUnit(unit_number="202")
    db.add(other)
    db.commit()
    foreign = report_violation(client, int(other.id))

    session_id = _open_session(client, reported["token"], reported["owner_id"], fixed_code)

    assert client.get(f"/public/violations/{foreign['id']}", headers={SESSION: session_id}).status_code == 404
    r = client.post(
        f"/public/violations/{foreign['id']}/dispute",
        json={"comment": "not mine"},
        headers={SESSION: session_id},
    )
    assert r.status_code == 404
    assert client.get(f"/api/violations/{foreign['id']}", headers=ADMIN).json()["status"] == "pending_approval"


def test_missing_or_expired_session_is_unauthorized(client, reported, fixed_code):
    assert client.get("/public/violations").status_code == 401
    assert client.get("/public/violations", headers={SESSION: "nope"}).status_code == 401


def test_code_requests_are_capped_per_hour(client, reported, monkeypatch):
    monkeypatch.setattr(settings, "verification_codes_per_hour", 2)
    token, owner_id = reported["token"], reported["owner_id"]

    assert client.post(f"/public/violation/{token}/send-code", json={"personId": owner_id}).status_code == 200
    assert client.post(f"/public/violation/{token}/send-code", json={"personId": owner_id}).status_code == 200
    r = client.post(f"/public/violation/{token}/send-code", json={"personId": owner_id})
    assert r.status_code == 429


def test_public_endpoints_are_rate_limited_per_ip(client, reported, monkeypatch):
    monkeypatch.setattr(settings, "public_rate_limit_max", 3)

    codes = [client.get("/public/violation/whatever/status").status_code for _ in range(4)]
    assert codes == [404, 404, 404, 429]
    # the bucket is shared by every public endpoint
    r = client.post(f"/public/violation/{reported['token']}/send-code", json={"personId": reported["owner_id"]})
    assert r.status_code == 429


def test_mail_failure_on_send_code_returns_generic_error(client, reported, monkeypatch):
    from strataguard.services.mailer import MailTransportError

    def fail(_mail):
        raise MailTransportError("relay down")

    monkeypatch.setattr(public_dispute, "send_email", fail)
    r = client.post(f"/public/violation/{reported['token']}/send-code", json={"personId": reported["owner_id"]})
    assert r.status_code == 502
    assert "relay" not in r.text


def test_codes_and_tokens_stay_out_of_the_logs(client, reported, monkeypatch, caplog):
    monkeypatch.setattr(public_dispute, "generate_code", lambda: "987654")
    caplog.set_level(logging.INFO)

    r = client.post(f"/public/violation/{reported['token']}/send-code", json={"personId": reported["owner_id"]})
    assert r.status_code == 200, r.text
    # rejected requests are logged too
    assert client.get("/public/violation/guessed-secret-value/status").status_code == 404

    fmt = JsonFormatter()
    lines = [fmt.format(rec) for rec in caplog.records if rec.name.startswith("strataguard")]
    assert any(json.loads(line).get("mail_to") == "olivia@test.local" for line in lines)
    joined = "\n".join(lines)
    assert "987654" not in joined
    assert reported["token"] not in joined
    assert "guessed-secret-value" not in joined


def test_public_reads_with_odd_ids_are_not_found(client, reported, fixed_code):
    session_id = _open_session(client, reported["token"], reported["owner_id"], fixed_code)

    for key in ("²", "99999999999999999999999"):
        assert client.get(f"/public/violations/{key}", headers={SESSION: session_id}).status_code == 404, key
        r = client.post(f"/public/violations/{key}/dispute", json={"comment": "not mine"}, headers={SESSION: session_id})
        assert r.status_code == 404, key
