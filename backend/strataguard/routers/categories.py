# backend/strataguard/routers/categories.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_adjudicator
from ..db import get_db
from ..domain.audit import AuditAction, TargetType, audit_write
from ..errors import ConflictError
from ..models import Violation, ViolationCategory, utcnow
from ..schemas import CategoryIn, CategoryOut
from ..services.ownership import must_get_category

router = APIRouter(prefix="/violation-categories", tags=["categories"])


def _dump(row: ViolationCategory) -> dict:
    return CategoryOut.model_validate(row).model_dump()


@router.get("", response_model=list[CategoryOut])
def list_categories(
    active_only: bool = Query(default=False, alias="activeOnly"),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    q = select(ViolationCategory)
    if active_only:
        q = q.where(ViolationCategory.active.is_(True))
    return list(db.scalars(q.order_by(ViolationCategory.name.asc())).all())


@router.post("", response_model=CategoryOut, status_code=201)
def create_category(payload: CategoryIn, db: Session = Depends(get_db), p: Principal = Depends(require_adjudicator)):
    row = ViolationCategory(**payload.model_dump(), created_at=utcnow(), updated_at=utcnow())
    db.add(row)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError("category name already exists")

    audit_write(
        db,
        actor_user_id=p.user_id,
        actor_name=p.full_name,
        actor_email=p.email,
        action=AuditAction.CATEGORY_CREATED,
        entity_type=TargetType.CATEGORY,
        entity_id=row.id,
        details={"after": _dump(row)},
    )
    db.commit()
    return row


@router.put("/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: int,
    payload: CategoryIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_adjudicator),
):
    row = must_get_category(db, category_id=category_id)
    before = _dump(row)

    for k, v in payload.model_dump().items():
        setattr(row, k, v)
    row.updated_at = utcnow()
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError("category name already exists")

    audit_write(
        db,
        actor_user_id=p.user_id,
        actor_name=p.full_name,
        actor_email=p.email,
        action=AuditAction.CATEGORY_UPDATED,
        entity_type=TargetType.CATEGORY,
        entity_id=row.id,
        details={"before": before, "after": _dump(row)},
    )
    db.commit()
    return row


@router.delete("/{category_id}", status_code=204)
def delete_category(category_id: int, db: Session = Depends(get_db), p: Principal = Depends(require_adjudicator)):
    row = must_get_category(db, category_id=category_id)

    in_use = int(db.scalar(select(func.count(Violation.id)).where(Violation.category_id == row.id)) or 0)
    if in_use:
        raise ConflictError(
            "category is referenced by violations; deactivate it instead",
            extra={"violations": in_use},
        )

    audit_write(
        db,
        actor_user_id=p.user_id,
        actor_name=p.full_name,
        actor_email=p.email,
        action=AuditAction.CATEGORY_DELETED,
        entity_type=TargetType.CATEGORY,
        entity_id=row.id,
        details={"before": _dump(row)},
    )
    db.delete(row)
    db.commit()
    return Response(status_code=204)
