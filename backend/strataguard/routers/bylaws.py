# backend/strataguard/routers/bylaws.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_adjudicator
from ..config import settings
from ..db import get_db
from ..errors import ValidationFailed
from ..schemas import (
    BylawImportOut,
    BylawIn,
    BylawOut,
    BylawPartOut,
    BylawRevisionOut,
    BylawSuggestionOut,
    BylawUpdate,
)
from ..services import bylaws as svc

router = APIRouter(prefix="/bylaws", tags=["bylaws"])

_XML_CONTENT_TYPES = ("text/xml", "application/xml")


@router.get("", response_model=list[BylawOut])
def list_bylaws(
    search: Optional[str] = Query(default=None, max_length=200),
    part: Optional[str] = Query(default=None),
    include_inactive: bool = Query(default=False, alias="includeInactive"),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return svc.list_bylaws(db, search=search, part=part, include_inactive=include_inactive)


@router.get("/structure", response_model=list[BylawPartOut])
def bylaw_structure(db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return svc.structure(db)


@router.get("/search/suggestions", response_model=list[BylawSuggestionOut])
def bylaw_suggestions(
    q: Optional[str] = Query(default=None, max_length=100),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return svc.suggestions(db, q=q)


@router.post("/import", response_model=BylawImportOut, status_code=201)
def import_bylaws(
    bylaws_file: UploadFile = File(..., alias="bylawsFile"),
    db: Session = Depends(get_db),
    p: Principal = Depends(require_adjudicator),
):
    """Bulk load from an XML export. Existing section numbers are left untouched."""
    name = (bylaws_file.filename or "").lower()
    if (bylaws_file.content_type or "").lower() not in _XML_CONTENT_TYPES and not name.endswith(".xml"):
        raise ValidationFailed("Only XML files are allowed")

    data = bylaws_file.file.read(int(settings.bylaw_import_max_bytes) + 1)
    if len(data) > int(settings.bylaw_import_max_bytes):
        raise ValidationFailed("bylaws file is too large")

    imported, skipped = svc.import_bylaws(db, sections=svc.parse_bylaws_xml(data), principal=p)
    return BylawImportOut(imported=imported, skipped=skipped)


@router.get("/{bylaw_id}", response_model=BylawOut)
def get_bylaw(bylaw_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return svc.must_get_bylaw(db, bylaw_id=bylaw_id)


@router.get("/{bylaw_id}/revisions", response_model=list[BylawRevisionOut])
def bylaw_revisions(bylaw_id: int, db: Session = Depends(get_db), p: Principal = Depends(require_adjudicator)):
    return svc.revisions(db, bylaw_id=bylaw_id)


@router.post("", response_model=BylawOut, status_code=201)
def create_bylaw(payload: BylawIn, db: Session = Depends(get_db), p: Principal = Depends(require_adjudicator)):
    return svc.create_bylaw(db, payload=payload, principal=p)


@router.put("/{bylaw_id}", response_model=BylawOut)
def update_bylaw(
    bylaw_id: int,
    payload: BylawUpdate,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_adjudicator),
):
    return svc.update_bylaw(db, bylaw_id=bylaw_id, payload=payload, principal=p)


@router.delete("/{bylaw_id}", response_model=BylawOut)
def deactivate_bylaw(bylaw_id: int, db: Session = Depends(get_db), p: Principal = Depends(require_adjudicator)):
    return svc.deactivate_bylaw(db, bylaw_id=bylaw_id, principal=p)
