# backend/tests/test_attachments.py
from __future__ import annotations

import os
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from conftest import RESIDENT, report_violation
from strataguard.config import settings
from strataguard.db import SessionLocal
from strataguard.errors import AttachmentRejected
from strataguard.main import create_app
from strataguard.models import Violation
from strataguard.services import attachments, notifications
from strataguard.services.attachments import IncomingFile, validate_file

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 200
PDF = b"%PDF-1.4\n" + b"0" * 200


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "upload_dir", str(tmp_path))
    return tmp_path


def _form(unit_id: int) -> dict:
    return {
        "unitId": str(unit_id),
        "violationType": "Garbage",
        "violationDate": "2026-10-02",
        "description": "Bags left in the hallway",
    }


def _count_violations() -> int:
    with SessionLocal() as s:
        return int(s.scalar(select(func.count(Violation.id))) or 0)


def test_valid_files_are_stored_and_served(client, unit_101, upload_dir):
    v = report_violation(
        client,
        unit_101["unit_id"],
        files=[
            ("attachments", ("hall.png", PNG, "image/png")),
            ("attachments", ("notice.pdf", PDF, "application/pdf")),
        ],
    )
    names = v["attachments"]
    assert len(names) == 2
    assert names[0].endswith(".png") and names[1].endswith(".pdf")
    assert sorted(os.listdir(upload_dir)) == sorted(names)

    r = client.get(f"/api/violations/{v['id']}/attachments/{names[0]}", headers=RESIDENT)
    assert r.status_code == 200
    assert r.content == PNG
    assert client.get(f"/api/violations/{v['id']}/attachments/other.png", headers=RESIDENT).status_code == 404


def test_one_bad_file_rejects_the_whole_report(client, unit_101, upload_dir):
    r = client.post(
        "/api/violations",
        data=_form(unit_101["unit_id"]),
        files=[
            ("attachments", ("hall.png", PNG, "image/png")),
            ("attachments", ("fake.png", b"MZ" + b"\x00" * 200, "image/png")),
        ],
        headers=RESIDENT,
    )
    assert r.status_code == 400
    assert os.listdir(upload_dir) == []
    assert _count_violations() == 0


def test_malware_verdict_removes_written_files(client, unit_101, upload_dir, monkeypatch):
    monkeypatch.setattr(settings, "virus_scanning_enabled", True)
    monkeypatch.setattr(
        attachments.subprocess,
        "run",
        lambda *a, **kw: SimpleNamespace(returncode=1, stdout="Eicar-Signature FOUND", stderr=""),
    )

    r = client.post(
        "/api/violations",
        data=_form(unit_101["unit_id"]),
        files=[("attachments", ("hall.png", PNG, "image/png"))],
        headers=RESIDENT,
    )
    assert r.status_code == 403
    assert os.listdir(upload_dir) == []
    assert _count_violations() == 0


def test_scanner_fault_is_service_unavailable(client, unit_101, upload_dir, monkeypatch):
    monkeypatch.setattr(settings, "virus_scanning_enabled", True)
    monkeypatch.setattr(
        attachments.subprocess,
        "run",
        lambda *a, **kw: SimpleNamespace(returncode=2, stdout="", stderr="cannot connect to clamd"),
    )

    r = client.post(
        "/api/violations",
        data=_form(unit_101["unit_id"]),
        files=[("attachments", ("hall.png", PNG, "image/png"))],
        headers=RESIDENT,
    )
    assert r.status_code == 503
    assert os.listdir(upload_dir) == []


def test_database_failure_after_upload_removes_files(unit_101, upload_dir, monkeypatch):
    def boom(*a, **kw):
        raise RuntimeError("outbox unavailable")

    monkeypatch.setattr(notifications, "notify_violation_created", boom)
    client = TestClient(create_app(), raise_server_exceptions=False)

    r = client.post(
        "/api/violations",
        data=_form(unit_101["unit_id"]),
        files=[("attachments", ("hall.png", PNG, "image/png"))],
        headers=RESIDENT,
    )
    assert r.status_code == 500
    assert os.listdir(upload_dir) == []
    assert _count_violations() == 0


def test_too_many_files(client, unit_101, upload_dir, monkeypatch):
    monkeypatch.setattr(settings, "max_attachments", 1)
    r = client.post(
        "/api/violations",
        data=_form(unit_101["unit_id"]),
        files=[
            ("attachments", ("a.png", PNG, "image/png")),
            ("attachments", ("b.png", PNG, "image/png")),
        ],
        headers=RESIDENT,
    )
    assert r.status_code == 400
    assert os.listdir(upload_dir) == []


@pytest.mark.parametrize(
    "incoming",
    [
        IncomingFile("../etc/passwd.png", "image/png", PNG),
        IncomingFile("C:evil.png", "image/png", PNG),
        IncomingFile("x" * 252 + ".png", "image/png", PNG),
        IncomingFile("script.js", "application/javascript", b"alert(1)"),
        IncomingFile("hall.exe", "image/png", PNG),
        IncomingFile("tiny.png", "image/png", b"\x89PNG" + b"\x00" * 10),
        IncomingFile("doc.pdf", "image/png", PDF),
        IncomingFile("xss.gif", "image/gif", b"GIF89a<script>alert(1)</script>" + b"\x00" * 120),
    ],
)
def test_validate_file_rejects(incoming):
    with pytest.raises(AttachmentRejected):
        validate_file(incoming)


def test_validate_file_accepts_pdf_with_active_content():
    validate_file(IncomingFile("form.pdf", "application/pdf", b"%PDF-1.7 /OpenAction /JavaScript " + b"0" * 100))


def test_validate_file_size_limit(monkeypatch):
    monkeypatch.setattr(settings, "max_attachment_bytes", 150)
    with pytest.raises(AttachmentRejected):
        validate_file(IncomingFile("hall.png", "image/png", PNG))
