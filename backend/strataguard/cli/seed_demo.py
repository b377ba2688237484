# backend/strataguard/cli/seed_demo.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from strataguard.auth import hash_password
from strataguard.db import SessionLocal
from strataguard.models import AppUser, Bylaw, Person, PropertyUnit, UnitPersonRole, ViolationCategory


@dataclass(frozen=True)
class SeedResult:
    admin_email: str
    unit_number: str
    unit_id: int
    category_ids: tuple[int, ...]
    bylaw_ids: tuple[int, ...]


DEMO_CATEGORIES = (
    ("Noise", "Excessive noise disturbing other residents", "Bylaw 3.1", 100),
    ("Parking", "Unauthorized use of parking stalls", "Bylaw 5.4", 50),
)

# (section, title, content, order, part, part title)
DEMO_BYLAWS = (
    (
        "Section 4",
        "Use of Property",
        "4.1 An owner, tenant, occupant or visitor must not use a strata lot or the common property in a way that causes unreasonable noise or a nuisance to another person.",
        4,
        "PART 2",
        "DUTIES OF OWNERS, TENANTS, OCCUPANTS AND VISITORS",
    ),
    (
        "Section 5",
        "No Smoking",
        "5.1 An owner, tenant, occupant or visitor must not smoke anywhere on the strata lot, limited common property or common property.",
        5,
        "PART 2",
        "DUTIES OF OWNERS, TENANTS, OCCUPANTS AND VISITORS",
    ),
)


def _get_or_create_user(db: Session, email: str, full_name: str, role: str, password: Optional[str]) -> AppUser:
    row = db.scalar(select(AppUser).where(AppUser.email == email))
    if row:
        return row
    row = AppUser(
        email=email,
        full_name=full_name,
        role=role,
        password_hash=hash_password(password) if password else None,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def _get_or_create_unit(db: Session, unit_number: str) -> PropertyUnit:
    row = db.scalar(select(PropertyUnit).where(PropertyUnit.unit_number == unit_number))
    if row:
        return row
    row = PropertyUnit(unit_number=unit_number, strata_lot="SL-" + unit_number, floor=unit_number[:1])
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def _ensure_person(db: Session, unit: PropertyUnit, *, full_name: str, email: str, role: str) -> Person:
    person = db.scalar(select(Person).where(Person.email == email))
    if person is None:
        person = Person(full_name=full_name, email=email)
        db.add(person)
        db.flush()

    link = db.scalar(
        select(UnitPersonRole).where(
            UnitPersonRole.unit_id == int(unit.id),
            UnitPersonRole.person_id == int(person.id),
            UnitPersonRole.role == role,
        )
    )
    if link is None:
        db.add(UnitPersonRole(unit_id=int(unit.id), person_id=int(person.id), role=role, receive_email_notifications=True))
    db.commit()
    return person


def _get_or_create_category(db: Session, name: str, description: str, bylaw: str, fine: int) -> ViolationCategory:
    row = db.scalar(select(ViolationCategory).where(ViolationCategory.name == name))
    if row:
        return row
    row = ViolationCategory(name=name, description=description, bylaw_reference=bylaw, default_fine_amount=fine)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def _get_or_create_bylaw(
    db: Session, section: str, title: str, content: str, order: int, part: str, part_title: str, created_by: int
) -> Bylaw:
    row = db.scalar(select(Bylaw).where(Bylaw.section_number == section))
    if row:
        return row
    row = Bylaw(
        section_number=section,
        title=title,
        content=content,
        section_order=order,
        part_number=part,
        part_title=part_title,
        created_by_id=created_by,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def seed_demo(
    *,
    admin_email: str = "admin@strataguard.local",
    admin_password: str = "change-me",
    unit_number: str = "101",
) -> SeedResult:
    db = SessionLocal()
    try:
        admin = _get_or_create_user(db, admin_email, "Demo Admin", "admin", admin_password)
        _get_or_create_user(db, "council@strataguard.local", "Demo Council", "council", admin_password)

        unit = _get_or_create_unit(db, unit_number)
        _ensure_person(db, unit, full_name="Olivia Owner", email="owner@strataguard.local", role="owner")
        _ensure_person(db, unit, full_name="Tom Tenant", email="tenant@strataguard.local", role="tenant")

        cats = tuple(int(_get_or_create_category(db, *c).id) for c in DEMO_CATEGORIES)
        bylaw_ids = tuple(int(_get_or_create_bylaw(db, *b, created_by=int(admin.id)).id) for b in DEMO_BYLAWS)
        return SeedResult(
            admin_email=admin_email,
            unit_number=unit.unit_number,
            unit_id=int(unit.id),
            category_ids=cats,
            bylaw_ids=bylaw_ids,
        )
    finally:
        db.close()
