# backend/tests/test_violation_lifecycle.py
from __future__ import annotations

from sqlalchemy import func, select

from conftest import ADMIN, COUNCIL, RESIDENT, report_violation
from strataguard.db import SessionLocal
from strataguard.models import AuditEvent, ViolationAccessLink, ViolationHistory


def _history(client, vid) -> list[dict]:
    r = client.get(f"/api/violations/{vid}/history", headers=ADMIN)
    assert r.status_code == 200, r.text
    return r.json()


def test_create_starts_pending_with_one_history_entry(client, unit_101):
    v = report_violation(client, unit_101["unit_id"])

    assert v["status"] == "pending_approval"
    assert v["fineAmount"] is None
    assert v["unitNumber"] == "101"
    assert v["attachments"] == []

    hist = _history(client, v["id"])
    assert len(hist) == 1
    assert hist[0]["action"] == "Violation created"

    other = report_violation(client, unit_101["unit_id"])
    assert other["uuid"] != v["uuid"]

    by_uuid = client.get(f"/api/violations/{v['uuid']}", headers=RESIDENT)
    assert by_uuid.status_code == 200
    assert by_uuid.json()["id"] == v["id"]


def test_create_issues_one_link_per_notifiable_person(client, unit_101):
    v = report_violation(client, unit_101["unit_id"])

    with SessionLocal() as s:
        emails = sorted(s.scalars(select(ViolationAccessLink.recipient_email).where(ViolationAccessLink.violation_id == v["id"])).all())
    assert emails == ["olivia@test.local", "tom@test.local"]


def test_create_requires_type_or_category_and_known_unit(client, unit_101):
    r = client.post(
        "/api/violations",
        data={"unitId": str(unit_101["unit_id"]), "violationDate": "2026-10-01", "description": "x"},
        headers=RESIDENT,
    )
    assert r.status_code == 422

    r = client.post(
        "/api/violations",
        data={"unitId": "999", "violationType": "Noise", "violationDate": "2026-10-01", "description": "x"},
        headers=RESIDENT,
    )
    assert r.status_code == 404


def test_create_from_category_copies_name_and_bylaw(client, unit_101, noise_category):
    v = report_violation(client, unit_101["unit_id"], violationType="", categoryId=str(noise_category))
    assert v["violationType"] == "Noise"
    assert v["bylawReference"] == "Bylaw 3.1"
    assert v["categoryName"] == "Noise"
    # category default fine is a suggestion only
    assert v["fineAmount"] is None


def test_blank_category_from_a_form_means_no_category(client, unit_101):
    v = report_violation(client, unit_101["unit_id"], categoryId="")
    assert v["categoryId"] is None
    assert v["violationType"] == "Noise"


def test_approve_without_fine_leaves_fine_empty(client, unit_101):
    v = report_violation(client, unit_101["unit_id"])

    r = client.patch(f"/api/violations/{v['id']}/status", json={"status": "approved"}, headers=ADMIN)
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "approved"
    assert r.json()["fineAmount"] is None

    hist = _history(client, v["id"])
    assert [h["action"] for h in hist] == ["Violation created", "Status changed to approved"]
    assert hist[-1]["details"]["from"] == "pending_approval"


def test_status_change_requires_adjudicator(client, unit_101):
    v = report_violation(client, unit_101["unit_id"])
    r = client.patch(f"/api/violations/{v['id']}/status", json={"status": "approved"}, headers=RESIDENT)
    assert r.status_code == 403


def test_fine_is_independent_of_status(client, unit_101):
    v = report_violation(client, unit_101["unit_id"])

    r = client.patch(f"/api/violations/{v['id']}/fine", json={"amount": 75}, headers=COUNCIL)
    assert r.status_code == 200, r.text
    assert r.json()["fineAmount"] == 75
    assert r.json()["status"] == "pending_approval"

    r = client.patch(f"/api/violations/{v['id']}/fine", json={"amount": 120}, headers=COUNCIL)
    assert r.json()["fineAmount"] == 120

    fines = [h for h in _history(client, v["id"]) if h["action"] == "fine_set"]
    assert [f["details"] for f in fines] == [{"amount": 75, "previous": None}, {"amount": 120, "previous": 75}]

    r = client.patch(f"/api/violations/{v['id']}/status", json={"status": "rejected", "rejectionReason": "no evidence"}, headers=ADMIN)
    assert r.json()["fineAmount"] == 120

    r = client.patch(f"/api/violations/{v['id']}/fine", json={"amount": -1}, headers=COUNCIL)
    assert r.status_code == 422


def test_approve_with_fine_writes_both(client, unit_101):
    v = report_violation(client, unit_101["unit_id"])

    r = client.post(f"/api/violations/{v['id']}/approve", json={"amount": 150, "comment": "repeat"}, headers=ADMIN)
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "approved"
    assert r.json()["fineAmount"] == 150

    actions = [h["action"] for h in _history(client, v["id"])]
    assert actions == ["Violation created", "fine_set", "Status changed to approved"]


def test_approve_with_fine_on_decided_violation_writes_nothing(client, unit_101):
    v = report_violation(client, unit_101["unit_id"])
    client.patch(f"/api/violations/{v['id']}/status", json={"status": "approved"}, headers=ADMIN)

    r = client.post(f"/api/violations/{v['id']}/approve", json={"amount": 200}, headers=ADMIN)
    assert r.status_code == 409

    after = client.get(f"/api/violations/{v['id']}", headers=ADMIN).json()
    assert after["fineAmount"] is None
    assert len(_history(client, v["id"])) == 2


def test_reject_requires_reason(client, unit_101):
    v = report_violation(client, unit_101["unit_id"])

    r = client.patch(f"/api/violations/{v['id']}/status", json={"status": "rejected"}, headers=ADMIN)
    assert r.status_code == 422
    r = client.patch(f"/api/violations/{v['id']}/status", json={"status": "rejected", "rejectionReason": "   "}, headers=ADMIN)
    assert r.status_code == 422
    assert client.get(f"/api/violations/{v['id']}", headers=ADMIN).json()["status"] == "pending_approval"

    r = client.patch(
        f"/api/violations/{v['id']}/status",
        json={"status": "rejected", "rejectionReason": "Wrong unit"},
        headers=ADMIN,
    )
    assert r.status_code == 200
    assert _history(client, v["id"])[-1]["rejectionReason"] == "Wrong unit"


def test_illegal_transition_reports_current_status(client, unit_101):
    v = report_violation(client, unit_101["unit_id"])
    client.patch(f"/api/violations/{v['id']}/status", json={"status": "approved"}, headers=ADMIN)

    r = client.patch(f"/api/violations/{v['id']}/status", json={"status": "pending_approval"}, headers=ADMIN)
    assert r.status_code == 409
    body = r.json()
    assert body["currentStatus"] == "approved"
    assert body["allowed"] == ["disputed"]

    r = client.patch(f"/api/violations/{v['id']}/status", json={"status": "approved"}, headers=ADMIN)
    assert r.status_code == 409

    r = client.patch(f"/api/violations/{v['id']}/status", json={"status": "new"}, headers=ADMIN)
    assert r.status_code == 409
    assert len(_history(client, v["id"])) == 2


def test_expected_status_guards_concurrent_decisions(client, unit_101):
    v = report_violation(client, unit_101["unit_id"])
    client.patch(f"/api/violations/{v['id']}/status", json={"status": "approved"}, headers=ADMIN)

    r = client.patch(
        f"/api/violations/{v['id']}/status",
        json={"status": "disputed", "expectedStatus": "pending_approval"},
        headers=COUNCIL,
    )
    assert r.status_code == 409
    assert r.json()["currentStatus"] == "approved"


def test_comments_append_to_history(client, unit_101):
    v = report_violation(client, unit_101["unit_id"])

    r = client.post(f"/api/violations/{v['id']}/comments", json={"comment": "Neighbour confirmed"}, headers=RESIDENT)
    assert r.status_code == 201, r.text
    assert r.json()["action"] == "comment"
    assert r.json()["comment"] == "Neighbour confirmed"

    r = client.post(f"/api/violations/{v['id']}/comments", json={"comment": "  "}, headers=RESIDENT)
    assert r.status_code == 422


def test_delete_removes_violation_and_history(client, unit_101):
    v = report_violation(client, unit_101["unit_id"])
    client.post(f"/api/violations/{v['id']}/comments", json={"comment": "x"}, headers=RESIDENT)

    r = client.delete(f"/api/violations/{v['id']}", headers=ADMIN)
    assert r.status_code == 204

    assert client.get(f"/api/violations/{v['id']}", headers=ADMIN).status_code == 404
    assert client.get(f"/api/violations/{v['id']}/history", headers=ADMIN).status_code == 404
    assert client.delete(f"/api/violations/{v['id']}", headers=ADMIN).status_code == 404

    with SessionLocal() as s:
        left = s.scalar(select(func.count(ViolationHistory.id)).where(ViolationHistory.violation_id == v["id"]))
        links = s.scalar(select(func.count(ViolationAccessLink.id)).where(ViolationAccessLink.violation_id == v["id"]))
        audit = s.scalar(select(AuditEvent).where(AuditEvent.action == "VIOLATION_DELETED"))
        assert left == 0
        assert links == 0
        assert audit is not None and audit.entity_id == v["uuid"]


def test_list_filters_search_and_pages(client, unit_101):
    a = report_violation(client, unit_101["unit_id"], description="Dog barking all night")
    report_violation(client, unit_101["unit_id"], violationType="Parking", description="Blocked stall")
    report_violation(client, unit_101["unit_id"], violationType="Parking", description="Visitor stall")
    client.patch(f"/api/violations/{a['id']}/status", json={"status": "approved"}, headers=ADMIN)

    r = client.get("/api/violations", params={"search": "barking"}, headers=RESIDENT)
    assert r.status_code == 200
    assert [x["id"] for x in r.json()["violations"]] == [a["id"]]

    r = client.get("/api/violations", params={"status": "pending_approval", "limit": 1, "page": 2}, headers=RESIDENT)
    body = r.json()
    assert body["total"] == 2
    assert len(body["violations"]) == 1
    assert body["page"] == 2

    r = client.get("/api/violations", params={"search": "101", "sortBy": "id", "sortOrder": "asc"}, headers=RESIDENT)
    ids = [x["id"] for x in r.json()["violations"]]
    assert ids == sorted(ids) and len(ids) == 3

    pending = client.get("/api/violations/pending-approval", headers=ADMIN).json()
    assert len(pending) == 2
    assert len(client.get("/api/violations/recent", params={"limit": 2}, headers=ADMIN).json()) == 2


def test_unauthenticated_requests_are_rejected(client, unit_101):
    assert client.get("/api/violations").status_code == 401


def test_odd_ids_are_not_found(client, unit_101):
    report_violation(client, unit_101["unit_id"])

    for key in ("²", "99999999999999999999999", "not-a-uuid"):
        r = client.get(f"/api/violations/{key}", headers=RESIDENT)
        assert r.status_code == 404, key
