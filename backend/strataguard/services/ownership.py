# backend/strataguard/services/ownership.py
from __future__ import annotations

from sqlalchemy import ColumnElement, select
from sqlalchemy.orm import Session

from ..errors import NotFoundError
from ..models import PropertyUnit, Violation, ViolationCategory

# larger values cannot be a row id and would overflow a 64-bit INTEGER bind
_MAX_ID_DIGITS = 18
_MAX_ROW_ID = 2**63 - 1


def is_row_id(value: int) -> bool:
    return 0 < int(value) <= _MAX_ROW_ID


def violation_key_clause(id_or_uuid: int | str) -> ColumnElement[bool]:
    """Matches a violation by integer id when the key is plain ASCII digits, otherwise by uuid."""
    key = str(id_or_uuid).strip()
    if key.isascii() and key.isdigit() and len(key) <= _MAX_ID_DIGITS:
        return Violation.id == int(key)
    return Violation.uuid == key


def must_get_violation(db: Session, *, id_or_uuid: int | str, for_update: bool = False) -> Violation:
    """Accepts the integer id or the external uuid."""
    q = select(Violation).where(violation_key_clause(id_or_uuid))
    if for_update:
        # no-op on SQLite
        q = q.with_for_update()
    row = db.scalar(q)
    if not row:
        raise NotFoundError("violation not found")
    return row


def must_get_unit(db: Session, *, unit_id: int) -> PropertyUnit:
    row = db.get(PropertyUnit, int(unit_id)) if is_row_id(unit_id) else None
    if not row:
        raise NotFoundError("unit not found")
    return row


def must_get_category(db: Session, *, category_id: int) -> ViolationCategory:
    row = db.get(ViolationCategory, int(category_id)) if is_row_id(category_id) else None
    if not row:
        raise NotFoundError("category not found")
    return row
