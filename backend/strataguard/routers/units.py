# backend/strataguard/routers/units.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..auth import Principal, get_principal, require_adjudicator
from ..db import get_db
from ..domain.audit import AuditAction, TargetType, audit_write
from ..errors import ConflictError
from ..models import Person, PropertyUnit, UnitPersonRole, utcnow
from ..schemas import UnitCreate, UnitOut, UnitPersonOut
from ..services.ownership import must_get_unit

router = APIRouter(prefix="/units", tags=["units"])


def _unit_out(unit: PropertyUnit) -> UnitOut:
    persons = [
        UnitPersonOut(
            person_id=int(r.person.id),
            full_name=r.person.full_name,
            email=r.person.email,
            phone=r.person.phone,
            role=r.role,
            receive_email_notifications=bool(r.receive_email_notifications),
        )
        for r in sorted(unit.roles, key=lambda x: (x.role, x.person_id))
    ]
    return UnitOut(
        id=int(unit.id),
        unit_number=unit.unit_number,
        strata_lot=unit.strata_lot,
        floor=unit.floor,
        townhouse=bool(unit.townhouse),
        phone=unit.phone,
        notes=unit.notes,
        created_at=unit.created_at,
        persons=persons,
    )


@router.post("", response_model=UnitOut, status_code=201)
def create_unit(payload: UnitCreate, db: Session = Depends(get_db), p: Principal = Depends(require_adjudicator)):
    """Creates a unit with its owners/tenants. A person is matched by email and reused across units."""
    if db.scalar(select(PropertyUnit.id).where(PropertyUnit.unit_number == payload.unit_number)) is not None:
        raise ConflictError("unit number already exists")

    unit = PropertyUnit(**payload.model_dump(exclude={"persons"}), created_at=utcnow(), updated_at=utcnow())
    db.add(unit)
    db.flush()

    for item in payload.persons:
        person = db.scalar(select(Person).where(Person.email == item.email))
        if person is None:
            person = Person(full_name=item.full_name, email=item.email, phone=item.phone, created_at=utcnow())
            db.add(person)
            db.flush()
        db.add(
            UnitPersonRole(
                unit_id=int(unit.id),
                person_id=int(person.id),
                role=item.role,
                receive_email_notifications=item.receive_email_notifications,
                created_at=utcnow(),
            )
        )
    db.flush()

    audit_write(
        db,
        actor_user_id=p.user_id,
        actor_name=p.full_name,
        actor_email=p.email,
        action=AuditAction.UNIT_CREATED,
        entity_type=TargetType.UNIT,
        entity_id=unit.id,
        details={"unit_number": unit.unit_number, "persons": len(payload.persons)},
    )
    db.commit()
    db.refresh(unit)
    return _unit_out(unit)


@router.get("", response_model=list[UnitOut])
def list_units(
    limit: int = Query(default=500, ge=1, le=5000),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    q = (
        select(PropertyUnit)
        .options(selectinload(PropertyUnit.roles).selectinload(UnitPersonRole.person))
        .order_by(PropertyUnit.unit_number.asc())
        .limit(limit)
    )
    return [_unit_out(u) for u in db.scalars(q).all()]


@router.get("/{unit_id}", response_model=UnitOut)
def get_unit(unit_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return _unit_out(must_get_unit(db, unit_id=unit_id))
