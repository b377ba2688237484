# backend/strataguard/routers/public_violations.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..auth import PublicPrincipal, get_public_principal
from ..config import settings
from ..db import get_db
from ..schemas import (
    DisputeIn,
    LinkStatusOut,
    PublicPersonOut,
    PublicViolationDetailOut,
    PublicViolationOut,
    SendCodeIn,
    SendCodeOut,
    VerifyCodeIn,
    VerifyCodeOut,
)
from ..services import public_dispute
from ..services.rate_limit import consume
from .violations import client_ip

router = APIRouter(prefix="/public", tags=["public"])


def public_rate_limit(request: Request, db: Session = Depends(get_db)) -> None:
    """Per-IP fixed window; the hit is committed even when the request later fails."""
    consume(
        db,
        key=f"public:{client_ip(request) or 'unknown'}",
        limit=int(settings.public_rate_limit_max),
        window_seconds=int(settings.public_rate_limit_window_seconds),
    )
    db.commit()


@router.get("/violation/{token}/status", response_model=LinkStatusOut, dependencies=[Depends(public_rate_limit)])
def link_status(token: str, db: Session = Depends(get_db)):
    status_code, body = public_dispute.link_status(db, token=token)
    out = LinkStatusOut.model_validate(body)
    return JSONResponse(status_code=status_code, content=out.model_dump(mode="json", by_alias=True, exclude_none=True))


@router.post("/violation/{token}/send-code", response_model=SendCodeOut, dependencies=[Depends(public_rate_limit)])
def send_code(token: str, payload: SendCodeIn, db: Session = Depends(get_db)):
    sent = public_dispute.send_code(db, token=token, person_id=payload.person_id)
    return SendCodeOut.model_validate(sent.as_dict())


@router.post("/violation/{token}/verify-code", response_model=VerifyCodeOut, dependencies=[Depends(public_rate_limit)])
def verify_code(token: str, payload: VerifyCodeIn, request: Request, db: Session = Depends(get_db)):
    session, v, person, role = public_dispute.verify_code(
        db,
        token=token,
        person_id=payload.person_id,
        code=payload.code,
        ip_address=client_ip(request),
    )
    return VerifyCodeOut(
        session_id=session.session_id,
        expires_at=session.expires_at,
        violation_id=int(v.id),
        violation_uuid=str(v.uuid),
        person=PublicPersonOut(
            id=int(person.id),
            full_name=str(person.full_name),
            email=public_dispute.obfuscate_email(str(person.email)),
            role=role,
        ),
    )


@router.get("/violations", response_model=list[PublicViolationOut])
def my_unit_violations(db: Session = Depends(get_db), pp: PublicPrincipal = Depends(get_public_principal)):
    return public_dispute.unit_violations(db, pp)


@router.get("/violations/{id_or_uuid}", response_model=PublicViolationDetailOut)
def my_unit_violation(id_or_uuid: str, db: Session = Depends(get_db), pp: PublicPrincipal = Depends(get_public_principal)):
    return public_dispute.violation_detail(db, pp, id_or_uuid=id_or_uuid)


@router.post("/violations/{id_or_uuid}/dispute", response_model=PublicViolationOut)
def dispute(
    id_or_uuid: str,
    payload: DisputeIn,
    request: Request,
    db: Session = Depends(get_db),
    pp: PublicPrincipal = Depends(get_public_principal),
):
    v = public_dispute.submit_dispute(db, pp, id_or_uuid=id_or_uuid, comment=payload.comment, ip_address=client_ip(request))
    return public_dispute.public_violation_view(db, v, include_persons=False)


@router.post("/logout")
def logout(db: Session = Depends(get_db), pp: PublicPrincipal = Depends(get_public_principal)):
    public_dispute.end_session(db, session_id=pp.session_id)
    return {"ok": True}
