# backend/strataguard/services/reporting.py
from __future__ import annotations

import csv
import io
from collections import Counter, defaultdict
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from ..domain.violation_states import ALL_STATUSES, DECIDED
from ..models import PropertyUnit, Violation, ViolationCategory, ViolationHistory
from .notifications import format_fine
from .ownership import is_row_id

CSV_HEADER = ("ID", "UUID", "Unit", "Status", "Type", "Date", "Fine")
PDF_HEADER = ("ID", "Unit", "Date", "Category", "Status", "Fine", "Description")
# points; the description column takes what is left of the A4 width
PDF_MARGIN = 50
PDF_COL_WIDTHS = (40, 50, 60, 85, 70, 50)


def _filtered(
    db: Session,
    *,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    category_id: Optional[int] = None,
) -> list[Violation]:
    q = select(Violation).options(selectinload(Violation.unit), selectinload(Violation.category))
    if date_from is not None:
        q = q.where(Violation.created_at >= datetime.combine(date_from, time.min))
    if date_to is not None:
        # inclusive end date
        q = q.where(Violation.created_at < datetime.combine(date_to + timedelta(days=1), time.min))
    if category_id is not None:
        if not is_row_id(category_id):
            return []
        q = q.where(Violation.category_id == int(category_id))
    return list(db.scalars(q.order_by(Violation.created_at.asc(), Violation.id.asc())).all())


def _decided_at(db: Session, violation_ids: Iterable[int]) -> dict[int, datetime]:
    """Latest approve/reject history timestamp per violation."""
    ids = list(violation_ids)
    if not ids:
        return {}
    actions = [f"Status changed to {s}" for s in sorted(DECIDED)]
    rows = db.execute(
        select(ViolationHistory.violation_id, func.max(ViolationHistory.created_at))
        .where(ViolationHistory.violation_id.in_(ids), ViolationHistory.action.in_(actions))
        .group_by(ViolationHistory.violation_id)
    ).all()
    return {int(vid): ts for vid, ts in rows if ts is not None}


def violation_stats(
    db: Session,
    *,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    category_id: Optional[int] = None,
) -> dict[str, Any]:
    rows = _filtered(db, date_from=date_from, date_to=date_to, category_id=category_id)

    by_status = {s: 0 for s in ALL_STATUSES}
    by_month: Counter[str] = Counter()
    by_category: dict[Optional[int], dict[str, Any]] = {}
    fines_total = 0

    for v in rows:
        by_status[v.status] = by_status.get(v.status, 0) + 1
        by_month[v.created_at.strftime("%Y-%m")] += 1
        bucket = by_category.setdefault(
            v.category_id,
            {"category_id": v.category_id, "category_name": v.category_name or v.violation_type, "count": 0},
        )
        bucket["count"] += 1
        if v.status == "approved" and v.fine_amount:
            fines_total += int(v.fine_amount)

    resolved = [v for v in rows if v.status in DECIDED]
    decided_at = _decided_at(db, (int(v.id) for v in resolved))
    durations = [
        (decided_at[int(v.id)] - v.created_at).total_seconds() / 86400.0
        for v in resolved
        if int(v.id) in decided_at
    ]
    avg_days = round(sum(durations) / len(durations), 2) if durations else None

    return {
        "total": len(rows),
        "by_status": by_status,
        "resolved": len(resolved),
        "average_resolution_days": avg_days,
        "approved_fines_total": fines_total,
        "by_month": [{"month": m, "count": c} for m, c in sorted(by_month.items())],
        "by_category": sorted(by_category.values(), key=lambda b: (-b["count"], str(b["category_name"]))),
    }


def repeat_violations(db: Session, *, min_count: int = 2) -> list[dict[str, Any]]:
    """Units with at least min_count violations, most frequent first."""
    counts = db.execute(
        select(
            Violation.unit_id,
            PropertyUnit.unit_number,
            func.count(Violation.id),
            func.max(Violation.created_at),
        )
        .join(PropertyUnit, PropertyUnit.id == Violation.unit_id)
        .group_by(Violation.unit_id, PropertyUnit.unit_number)
        .having(func.count(Violation.id) >= int(min_count))
        .order_by(func.count(Violation.id).desc(), PropertyUnit.unit_number.asc())
    ).all()
    if not counts:
        return []

    unit_ids = [int(r[0]) for r in counts]
    by_unit: dict[int, list[Violation]] = defaultdict(list)
    for v in db.scalars(
        select(Violation).where(Violation.unit_id.in_(unit_ids)).order_by(Violation.created_at.desc(), Violation.id.desc())
    ).all():
        by_unit[int(v.unit_id)].append(v)

    out = []
    for unit_id, unit_number, total, last_at in counts:
        vs = by_unit[int(unit_id)]
        out.append(
            {
                "unit_id": int(unit_id),
                "unit_number": unit_number,
                "total": int(total),
                "last_violation_at": last_at,
                "violation_types": sorted({v.violation_type for v in vs}),
                "violations": [
                    {"id": v.id, "uuid": v.uuid, "status": v.status, "violation_type": v.violation_type, "created_at": v.created_at}
                    for v in vs
                ],
            }
        )
    return out


def violations_csv(
    db: Session,
    *,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    category_id: Optional[int] = None,
) -> str:
    buf = io.StringIO()
    w = csv.writer(buf)
    w.writerow(CSV_HEADER)
    for v in _filtered(db, date_from=date_from, date_to=date_to, category_id=category_id):
        w.writerow(
            [
                v.id,
                v.uuid,
                v.unit_number or "",
                v.status,
                v.violation_type,
                v.violation_date.isoformat(),
                format_fine(v.fine_amount) if v.fine_amount is not None else "",
            ]
        )
    return buf.getvalue()


def _date_label(d: Optional[date]) -> str:
    return d.strftime("%b %d, %Y") if d else "N/A"


def violations_pdf(
    db: Session,
    *,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    category_id: Optional[int] = None,
) -> bytes:
    """Printable report: applied filters, summary figures, then one row per violation."""
    rows = _filtered(db, date_from=date_from, date_to=date_to, category_id=category_id)
    stats = violation_stats(db, date_from=date_from, date_to=date_to, category_id=category_id)

    category_label = "All Categories"
    if category_id is not None:
        category = db.get(ViolationCategory, int(category_id)) if is_row_id(category_id) else None
        category_label = category.name if category else f"#{category_id}"

    total, resolved = int(stats["total"]), int(stats["resolved"])
    rate = f"{resolved / total * 100:.1f}" if total else "0"
    avg = stats["average_resolution_days"]

    styles = getSampleStyleSheet()
    body = styles["BodyText"]
    cell = body.clone("ReportCell", fontSize=7, leading=9)

    story: list[Any] = [
        Paragraph("Violations Report", styles["Title"]),
        Paragraph("<u>Filters Applied</u>", body),
        Paragraph(escape(f"Date Range: {_date_label(date_from)} - {_date_label(date_to)}"), body),
        Paragraph(escape(f"Category: {category_label}"), body),
        Spacer(1, 12),
        Paragraph("<u>Summary Statistics</u>", body),
        Paragraph(f"Total Violations: {total}", body),
        Paragraph(f"Resolved Violations: {resolved}", body),
        Paragraph(f"Resolution Rate: {rate} %", body),
        Paragraph(f"Average Resolution Time: {f'{avg} days' if avg is not None else 'N/A'}", body),
        Spacer(1, 18),
        Paragraph("<u>Detailed Violations List</u>", styles["Heading3"]),
    ]

    table_rows: list[list[Any]] = [list(PDF_HEADER)]
    for v in rows:
        table_rows.append(
            [
                f"VIO-{v.id}",
                v.unit_number or "",
                v.created_at.strftime("%Y-%m-%d"),
                Paragraph(escape(v.category_name or v.violation_type or "N/A"), cell),
                v.status,
                format_fine(v.fine_amount) if v.fine_amount else "N/A",
                Paragraph(escape(v.description or "No description"), cell),
            ]
        )

    desc_width = A4[0] - 2 * PDF_MARGIN - sum(PDF_COL_WIDTHS)
    table = Table(table_rows, colWidths=[*PDF_COL_WIDTHS, desc_width], repeatRows=1)
    table.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 7),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("ALIGN", (5, 0), (5, -1), "RIGHT"),
                ("LINEBELOW", (0, 0), (-1, 0), 0.5, colors.grey),
            ]
        )
    )
    story.append(table)

    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=PDF_MARGIN,
        rightMargin=PDF_MARGIN,
        topMargin=PDF_MARGIN,
        bottomMargin=PDF_MARGIN,
        title="Violations Report",
    )
    doc.build(story)
    return buf.getvalue()
