# backend/strataguard/routers/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..auth import Principal, create_access_token, get_principal, verify_password
from ..config import settings
from ..db import get_db
from ..domain.audit import AuditAction, TargetType, audit_write
from ..models import AppUser, utcnow
from ..schemas import LoginIn, LoginOut, PrincipalOut
from .violations import client_ip

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=LoginOut)
def login(payload: LoginIn, request: Request, response: Response, db: Session = Depends(get_db)):
    """Sets the JWT as an HttpOnly cookie and also returns it for bearer clients."""
    email = payload.email.strip().lower()

    user = db.scalar(select(AppUser).where(AppUser.email == email))
    if user is None or not user.password_hash or not user.is_active:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not verify_password(payload.password, str(user.password_hash)):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    user.last_login_at = utcnow()
    audit_write(
        db,
        actor_user_id=int(user.id),
        actor_name=user.full_name,
        actor_email=user.email,
        action=AuditAction.USER_LOGIN,
        entity_type=TargetType.USER,
        entity_id=user.id,
        ip_address=client_ip(request),
    )
    db.commit()

    token = create_access_token(user=user)
    response.set_cookie(
        settings.jwt_cookie_name,
        token,
        httponly=True,
        secure=bool(settings.jwt_cookie_secure),
        samesite=str(settings.jwt_cookie_samesite),
        max_age=int(settings.jwt_exp_minutes) * 60,
        path="/",
    )
    return LoginOut(
        access_token=token,
        user=PrincipalOut(
            user_id=int(user.id),
            email=str(user.email),
            full_name=str(user.full_name or user.email),
            role=str(user.role),
        ),
    )


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie(settings.jwt_cookie_name, path="/")
    return {"ok": True}


@router.get("/me", response_model=PrincipalOut)
def me(p: Principal = Depends(get_principal)):
    return PrincipalOut(user_id=p.user_id, email=p.email, full_name=p.full_name, role=p.role)
