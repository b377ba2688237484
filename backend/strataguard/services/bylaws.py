# backend/strataguard/services/bylaws.py
from __future__ import annotations

import logging
from typing import Any, List, Optional, Tuple
from xml.etree.ElementTree import Element, ParseError

from defusedxml import DefusedXmlException
from defusedxml import ElementTree as SafeET
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ..auth import Principal
from ..domain.audit import AuditAction, TargetType, audit_write
from ..errors import ConflictError, NotFoundError, ValidationFailed
from ..models import Bylaw, BylawRevision, utcnow
from ..schemas import BylawIn, BylawOut, BylawUpdate
from .ownership import is_row_id

log = logging.getLogger(__name__)

SUGGESTION_MIN_CHARS = 2
SUGGESTION_LIMIT = 10
DEFAULT_REVISION_NOTE = "Updated via admin interface"


def _dump(row: Bylaw) -> dict[str, Any]:
    return BylawOut.model_validate(row).model_dump(mode="json")


def _audit(db: Session, p: Principal, action: AuditAction, entity_id: Any, details: dict[str, Any]) -> None:
    audit_write(
        db,
        actor_user_id=p.user_id,
        actor_name=p.full_name,
        actor_email=p.email,
        action=action,
        entity_type=TargetType.BYLAW,
        entity_id=entity_id,
        details=details,
    )


def must_get_bylaw(db: Session, *, bylaw_id: int) -> Bylaw:
    row = db.get(Bylaw, int(bylaw_id)) if is_row_id(bylaw_id) else None
    if row is None:
        raise NotFoundError("bylaw not found")
    return row


def must_get_active_bylaw(db: Session, *, bylaw_id: int) -> Bylaw:
    row = must_get_bylaw(db, bylaw_id=bylaw_id)
    if not row.is_active:
        raise NotFoundError("bylaw not found")
    return row


def _check_parent(db: Session, parent_id: Optional[int], *, self_id: Optional[int] = None) -> None:
    if parent_id is None:
        return
    if self_id is not None and int(parent_id) == int(self_id):
        raise ValidationFailed("a bylaw cannot be its own parent section")
    if not is_row_id(parent_id) or db.get(Bylaw, int(parent_id)) is None:
        raise ValidationFailed("parentSectionId does not exist")


def _flush_or_conflict(db: Session) -> None:
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError("bylaw section number already exists")


# -----------------------------
# reads
# -----------------------------
def list_bylaws(
    db: Session,
    *,
    search: Optional[str] = None,
    part: Optional[str] = None,
    include_inactive: bool = False,
) -> List[Bylaw]:
    q = select(Bylaw)
    if not include_inactive:
        q = q.where(Bylaw.is_active.is_(True))
    term = (search or "").strip()
    if term:
        like = f"%{term.lower()}%"
        q = q.where(
            or_(
                func.lower(Bylaw.title).like(like),
                func.lower(Bylaw.content).like(like),
                func.lower(Bylaw.section_number).like(like),
            )
        )
    if part:
        q = q.where(Bylaw.part_number == part)
    return list(db.scalars(q.order_by(Bylaw.section_order.asc(), Bylaw.id.asc())).all())


def structure(db: Session) -> List[dict[str, Any]]:
    """Active sections grouped by part, in section order. Sections without a part land in a trailing group."""
    parts: dict[Optional[str], dict[str, Any]] = {}
    for b in list_bylaws(db):
        group = parts.setdefault(
            b.part_number,
            {"part_number": b.part_number, "part_title": b.part_title, "sections": []},
        )
        group["sections"].append(
            {"id": b.id, "section_number": b.section_number, "title": b.title, "section_order": b.section_order}
        )
    return sorted(parts.values(), key=lambda g: g["part_number"] is None)


def suggestions(db: Session, *, q: Optional[str]) -> List[Bylaw]:
    """Lookup for the violation form: matches section number or title."""
    term = (q or "").strip()
    if len(term) < SUGGESTION_MIN_CHARS:
        return []
    like = f"%{term.lower()}%"
    return list(
        db.scalars(
            select(Bylaw)
            .where(
                Bylaw.is_active.is_(True),
                or_(func.lower(Bylaw.section_number).like(like), func.lower(Bylaw.title).like(like)),
            )
            .order_by(Bylaw.section_order.asc(), Bylaw.id.asc())
            .limit(SUGGESTION_LIMIT)
        ).all()
    )


def revisions(db: Session, *, bylaw_id: int) -> List[BylawRevision]:
    b = must_get_bylaw(db, bylaw_id=bylaw_id)
    return list(
        db.scalars(
            select(BylawRevision)
            .options(selectinload(BylawRevision.created_by))
            .where(BylawRevision.bylaw_id == int(b.id))
            .order_by(BylawRevision.created_at.desc(), BylawRevision.id.desc())
        ).all()
    )


# -----------------------------
# writes
# -----------------------------
def create_bylaw(db: Session, *, payload: BylawIn, principal: Principal) -> Bylaw:
    _check_parent(db, payload.parent_section_id)
    now = utcnow()
    row = Bylaw(**payload.model_dump(), created_by_id=principal.user_id, created_at=now, updated_at=now)
    db.add(row)
    _flush_or_conflict(db)

    _audit(db, principal, AuditAction.BYLAW_CREATED, row.id, {"after": _dump(row)})
    db.commit()
    return row


def update_bylaw(db: Session, *, bylaw_id: int, payload: BylawUpdate, principal: Principal) -> Bylaw:
    """
    Applies the fields that were sent. The wording in force before the edit
    is kept as a BylawRevision row.
    """
    row = must_get_bylaw(db, bylaw_id=bylaw_id)
    changes = payload.model_dump(exclude_unset=True)
    notes = changes.pop("revision_notes", None)
    if "parent_section_id" in changes:
        _check_parent(db, changes["parent_section_id"], self_id=row.id)
    for key in ("section_number", "title", "content", "section_order", "is_active"):
        # not nullable; an explicit null means "leave as is"
        if key in changes and changes[key] is None:
            changes.pop(key)

    before = _dump(row)
    db.add(
        BylawRevision(
            bylaw_id=int(row.id),
            title=row.title,
            content=row.content,
            revision_notes=notes or DEFAULT_REVISION_NOTE,
            effective_date=row.effective_date,
            created_by_id=principal.user_id,
            created_at=utcnow(),
        )
    )

    for k, v in changes.items():
        setattr(row, k, v)
    row.updated_by_id = principal.user_id
    row.updated_at = utcnow()
    _flush_or_conflict(db)

    _audit(db, principal, AuditAction.BYLAW_UPDATED, row.id, {"before": before, "after": _dump(row)})
    db.commit()
    return row


def deactivate_bylaw(db: Session, *, bylaw_id: int, principal: Principal) -> Bylaw:
    """Bylaws are never hard-deleted; violations may quote them."""
    row = must_get_bylaw(db, bylaw_id=bylaw_id)
    row.is_active = False
    row.updated_by_id = principal.user_id
    row.updated_at = utcnow()
    _audit(db, principal, AuditAction.BYLAW_DEACTIVATED, row.id, {"sectionNumber": row.section_number})
    db.commit()
    return row


# -----------------------------
# XML import
# -----------------------------
def _child_text(section: Element, tag: str, *, keep_markup_text: bool = False) -> Optional[str]:
    el = section.find(tag)
    if el is None:
        return None
    # nested markup inside <content> is flattened to its text
    text = "".join(el.itertext()) if keep_markup_text else (el.text or "")
    return text.strip() or None


def parse_bylaws_xml(data: bytes) -> List[dict[str, Any]]:
    """
    Reads <bylaws><section><number/><title/><content/><part/><partTitle/></section>...</bylaws>.
    Sections missing a number, title or content are skipped.
    """
    try:
        root = SafeET.fromstring(data)
    except (ParseError, DefusedXmlException) as e:
        raise ValidationFailed(f"bylaws file is not valid XML: {type(e).__name__}") from e

    out: List[dict[str, Any]] = []
    for section in root.iter("section"):
        number = _child_text(section, "number")
        title = _child_text(section, "title")
        content = _child_text(section, "content", keep_markup_text=True)
        if not (number and title and content):
            continue
        out.append(
            {
                "section_number": number[:60],
                "title": title[:255],
                "content": content,
                "part_number": (_child_text(section, "part") or "")[:40] or None,
                "part_title": (_child_text(section, "partTitle") or "")[:255] or None,
            }
        )
    return out


def import_bylaws(db: Session, *, sections: List[dict[str, Any]], principal: Principal) -> Tuple[int, int]:
    """
    Inserts sections in file order after the existing ones. A section number
    that already exists (or repeats within the file) is skipped.
    Returns (imported, skipped).
    """
    existing = set(db.scalars(select(Bylaw.section_number)).all())
    next_order = int(db.scalar(select(func.max(Bylaw.section_order))) or 0) + 1
    now = utcnow()

    imported = skipped = 0
    for s in sections:
        if s["section_number"] in existing:
            skipped += 1
            continue
        db.add(Bylaw(**s, section_order=next_order, created_by_id=principal.user_id, created_at=now, updated_at=now))
        existing.add(s["section_number"])
        next_order += 1
        imported += 1
    _flush_or_conflict(db)

    _audit(db, principal, AuditAction.BYLAWS_IMPORTED, None, {"imported": imported, "skipped": skipped})
    db.commit()
    log.info("bylaws imported", extra={"imported": imported, "skipped": skipped})
    return imported, skipped
