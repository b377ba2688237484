# backend/strataguard/routers/reports.py
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_adjudicator
from ..db import get_db
from ..models import utcnow
from ..schemas import RepeatUnitOut, StatsOut
from ..services import reporting

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/stats", response_model=StatsOut)
def stats(
    date_from: Optional[date] = Query(default=None, alias="from"),
    date_to: Optional[date] = Query(default=None, alias="to"),
    category_id: Optional[int] = Query(default=None, alias="categoryId"),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return reporting.violation_stats(db, date_from=date_from, date_to=date_to, category_id=category_id)


@router.get("/repeat-violations", response_model=list[RepeatUnitOut])
def repeat_violations(
    min_count: int = Query(default=2, ge=1, alias="minCount"),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return reporting.repeat_violations(db, min_count=min_count)


@router.get("/violations-csv")
def violations_csv(
    date_from: Optional[date] = Query(default=None, alias="from"),
    date_to: Optional[date] = Query(default=None, alias="to"),
    category_id: Optional[int] = Query(default=None, alias="categoryId"),
    db: Session = Depends(get_db),
    p: Principal = Depends(require_adjudicator),
):
    body = reporting.violations_csv(db, date_from=date_from, date_to=date_to, category_id=category_id)
    filename = f"violations-{utcnow().strftime('%Y%m%d')}.csv"
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/violations-pdf")
def violations_pdf(
    date_from: Optional[date] = Query(default=None, alias="from"),
    date_to: Optional[date] = Query(default=None, alias="to"),
    category_id: Optional[int] = Query(default=None, alias="categoryId"),
    db: Session = Depends(get_db),
    p: Principal = Depends(require_adjudicator),
):
    body = reporting.violations_pdf(db, date_from=date_from, date_to=date_to, category_id=category_id)
    filename = f"violations-{utcnow().strftime('%Y%m%d')}.pdf"
    return Response(
        content=body,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
