# backend/strataguard/routers/violations.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_adjudicator
from ..config import settings
from ..db import get_db
from ..errors import NotFoundError
from ..schemas import (
    ApproveIn,
    CommentIn,
    FineIn,
    HistoryOut,
    StatusChangeIn,
    ViolationCreate,
    ViolationListOut,
    ViolationOut,
    ViolationStatusLiteral,
)
from ..services import violations as svc
from ..services.attachments import IncomingFile, stored_path

router = APIRouter(prefix="/violations", tags=["violations"])


def client_ip(request: Request) -> Optional[str]:
    fwd = request.headers.get("X-Forwarded-For")
    if fwd:
        return fwd.split(",")[0].strip()
    return request.client.host if request.client else None


def _actor(p: Principal, request: Request) -> svc.Actor:
    return svc.Actor.from_principal(p, ip_address=client_ip(request))


@router.get("", response_model=ViolationListOut)
def list_violations(
    status: Optional[ViolationStatusLiteral] = Query(default=None),
    unit_id: Optional[int] = Query(default=None, alias="unitId"),
    search: Optional[str] = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    sort_by: str = Query(default="createdAt", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    rows, total = svc.list_violations(
        db,
        status=status,
        unit_id=unit_id,
        search=search,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return ViolationListOut(violations=rows, total=total, page=page, limit=limit)


@router.get("/recent", response_model=list[ViolationOut])
def recent_violations(
    limit: int = Query(default=5, ge=1, le=100),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return svc.recent_violations(db, limit=limit)


@router.get("/pending-approval", response_model=list[ViolationOut])
def pending_approval(db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return svc.pending_approval(db, principal=p)


@router.post("", response_model=ViolationOut, status_code=201)
def create_violation(
    request: Request,
    unit_id: int = Form(..., alias="unitId"),
    category_id: Optional[str] = Form(default=None, alias="categoryId"),
    violation_type: Optional[str] = Form(default=None, alias="violationType"),
    violation_date: str = Form(..., alias="violationDate"),
    violation_time: Optional[str] = Form(default=None, alias="violationTime"),
    description: str = Form(...),
    bylaw_reference: Optional[str] = Form(default=None, alias="bylawReference"),
    bylaw_id: Optional[str] = Form(default=None, alias="bylawId"),
    incident_area: Optional[str] = Form(default=None, alias="incidentArea"),
    concierge_name: Optional[str] = Form(default=None, alias="conciergeName"),
    people_involved: Optional[str] = Form(default=None, alias="peopleInvolved"),
    noticed_by: Optional[str] = Form(default=None, alias="noticedBy"),
    damage_to_property: Optional[str] = Form(default=None, alias="damageToProperty"),
    damage_details: Optional[str] = Form(default=None, alias="damageDetails"),
    police_involved: Optional[str] = Form(default=None, alias="policeInvolved"),
    police_details: Optional[str] = Form(default=None, alias="policeDetails"),
    attachments: List[UploadFile] = File(default=[]),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    """
    Multipart create. Attachments are validated and stored before the row is
    written; a failure anywhere leaves no files behind.
    """
    try:
        payload = ViolationCreate(
            unit_id=unit_id,
            category_id=category_id,
            violation_type=violation_type,
            violation_date=violation_date,
            violation_time=violation_time,
            description=description,
            bylaw_reference=bylaw_reference,
            bylaw_id=bylaw_id,
            incident_area=incident_area,
            concierge_name=concierge_name,
            people_involved=people_involved,
            noticed_by=noticed_by,
            damage_to_property=damage_to_property,
            damage_details=damage_details,
            police_involved=police_involved,
            police_details=police_details,
        )
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False, include_context=False))

    files = [
        IncomingFile(
            filename=f.filename or "",
            content_type=(f.content_type or "").lower(),
            data=f.file.read(int(settings.max_attachment_bytes) + 1),
        )
        for f in attachments
        if f.filename
    ]
    return svc.create_violation(db, payload=payload, actor=_actor(p, request), files=files)


@router.get("/{id_or_uuid}", response_model=ViolationOut)
def get_violation(id_or_uuid: str, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return svc.get_violation(db, id_or_uuid=id_or_uuid)


@router.get("/{id_or_uuid}/history", response_model=list[HistoryOut])
def get_history(id_or_uuid: str, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return svc.get_history(db, id_or_uuid=id_or_uuid)


@router.get("/{id_or_uuid}/attachments/{name}")
def get_attachment(id_or_uuid: str, name: str, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    v = svc.get_violation(db, id_or_uuid=id_or_uuid)
    if name not in (v.attachments or []):
        raise NotFoundError("attachment not found")
    return FileResponse(stored_path(name))


@router.patch("/{id_or_uuid}/status", response_model=ViolationOut)
def change_status(
    id_or_uuid: str,
    payload: StatusChangeIn,
    request: Request,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_adjudicator),
):
    return svc.change_status(
        db,
        id_or_uuid=id_or_uuid,
        target=payload.status,
        actor=_actor(p, request),
        comment=payload.comment,
        rejection_reason=payload.rejection_reason,
        expected_status=payload.expected_status,
    )


@router.patch("/{id_or_uuid}/fine", response_model=ViolationOut)
def set_fine(
    id_or_uuid: str,
    payload: FineIn,
    request: Request,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_adjudicator),
):
    return svc.set_fine(db, id_or_uuid=id_or_uuid, amount=payload.amount, actor=_actor(p, request))


@router.post("/{id_or_uuid}/approve", response_model=ViolationOut)
def approve_with_fine(
    id_or_uuid: str,
    payload: ApproveIn,
    request: Request,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_adjudicator),
):
    return svc.approve_with_fine(
        db,
        id_or_uuid=id_or_uuid,
        amount=payload.amount,
        comment=payload.comment,
        actor=_actor(p, request),
    )


@router.post("/{id_or_uuid}/comments", response_model=HistoryOut, status_code=201)
def add_comment(
    id_or_uuid: str,
    payload: CommentIn,
    request: Request,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return svc.add_comment(db, id_or_uuid=id_or_uuid, comment=payload.comment, actor=_actor(p, request))


@router.delete("/{id_or_uuid}", status_code=204)
def delete_violation(
    id_or_uuid: str,
    request: Request,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    svc.delete_violation(db, id_or_uuid=id_or_uuid, principal=p, actor=_actor(p, request))
    return Response(status_code=204)
