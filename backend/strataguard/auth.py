# backend/strataguard/auth.py
from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import jwt
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .models import AppUser, PublicUserSession, USER_ROLES, utcnow

PBKDF2_ITERS = 210_000
ADJUDICATOR_ROLES = ("admin", "council")


@dataclass(frozen=True)
class Principal:
    user_id: int
    email: str
    full_name: str
    role: str  # admin | council | user

    @property
    def is_adjudicator(self) -> bool:
        return self.role in ADJUDICATOR_ROLES


@dataclass(frozen=True)
class PublicPrincipal:
    """An occupant who proved control of their email through a verification code."""

    session_id: str
    person_id: int
    unit_id: int
    email: str
    full_name: str
    role: str  # owner | tenant


# -------------------------
# Password hashing
# -------------------------
def hash_password(password: str) -> str:
    salt = secrets.token_bytes(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ITERS)
    return f"pbkdf2_sha256${PBKDF2_ITERS}${base64.b64encode(salt).decode()}${base64.b64encode(dk).decode()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        algo, iters_s, salt_b64, dk_b64 = stored.split("$", 3)
    except ValueError:
        return False
    if algo != "pbkdf2_sha256":
        return False
    salt = base64.b64decode(salt_b64.encode())
    dk = base64.b64decode(dk_b64.encode())
    test = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, int(iters_s))
    return hmac.compare_digest(test, dk)


# -------------------------
# JWT helpers
# -------------------------
def create_access_token(*, user: AppUser, minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    ttl = int(minutes if minutes is not None else settings.jwt_exp_minutes)
    payload: dict[str, Any] = {
        "sub": str(user.id),
        "email": str(user.email),
        "role": str(user.role),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=ttl)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def decode_access_token(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def _principal_from_user(user: AppUser) -> Principal:
    return Principal(
        user_id=int(user.id),
        email=str(user.email),
        full_name=str(user.full_name or user.email.split("@")[0]),
        role=str(user.role),
    )


def _dev_principal(request: Request, db: Session) -> Principal:
    email = (request.headers.get(settings.dev_header_user_email) or "").strip().lower()
    role_hint = (request.headers.get(settings.dev_header_user_role) or "user").strip().lower()
    if not email:
        raise HTTPException(status_code=401, detail="Not authenticated")

    user = db.scalar(select(AppUser).where(AppUser.email == email))
    if user is None and settings.dev_auto_provision:
        user = AppUser(
            email=email,
            full_name=email.split("@")[0],
            role=role_hint if role_hint in USER_ROLES else "user",
            created_at=utcnow(),
        )
        db.add(user)
        db.commit()
        db.refresh(user)

    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="Dev auth could not provision user")
    return _principal_from_user(user)


# -------------------------
# get_principal
# -------------------------
def get_principal(
    request: Request,
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> Principal:
    """
    Auth modes (priority order):
      1) JWT cookie (HttpOnly) or Authorization: Bearer <token>
      2) dev header spoofing, only when settings.auth_mode == "dev"
    """
    token = request.cookies.get(settings.jwt_cookie_name) if settings.jwt_cookie_name else None
    if not token and authorization and str(authorization).lower().startswith("bearer "):
        token = str(authorization).split(" ", 1)[1].strip()

    if token:
        claims = decode_access_token(token)
        sub = str(claims.get("sub") or "")
        if not sub.isdigit():
            raise HTTPException(status_code=401, detail="Token missing sub")

        user = db.get(AppUser, int(sub))
        if user is None or not user.is_active:
            raise HTTPException(status_code=401, detail="Unknown user")
        return _principal_from_user(user)

    if settings.auth_mode == "dev":
        return _dev_principal(request, db)

    raise HTTPException(status_code=401, detail="Not authenticated")


def require_adjudicator(p: Principal = Depends(get_principal)) -> Principal:
    if not p.is_adjudicator:
        raise HTTPException(status_code=403, detail="Requires admin or council role")
    return p


def require_admin(p: Principal = Depends(get_principal)) -> Principal:
    if p.role != "admin":
        raise HTTPException(status_code=403, detail="Requires admin role")
    return p


# -------------------------
# Public (occupant) sessions
# -------------------------
def get_public_principal(
    db: Session = Depends(get_db),
    x_public_session_id: Optional[str] = Header(default=None, alias=settings.public_session_header),
) -> PublicPrincipal:
    sid = str(x_public_session_id or "").strip()
    if not sid:
        raise HTTPException(status_code=401, detail="Not authenticated")

    row = db.scalar(select(PublicUserSession).where(PublicUserSession.session_id == sid))
    if row is None or row.expires_at <= utcnow():
        raise HTTPException(status_code=401, detail="Session expired")

    return PublicPrincipal(
        session_id=str(row.session_id),
        person_id=int(row.person_id),
        unit_id=int(row.unit_id),
        email=str(row.email),
        full_name=str(row.full_name),
        role=str(row.role),
    )
