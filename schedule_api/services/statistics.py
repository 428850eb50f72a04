# schedule_api/services/statistics.py
"""
Shift-hour statistics over a date range.

Trashed assignments are deliberately included: statistics describe what was
scheduled, not what is currently visible on the planner.
"""
from __future__ import annotations

from datetime import date
from typing import Optional, Sequence

from schedule_api.common.errors import ValidationError
from schedule_api.models.assignment import Assignment, AssignmentShift, AssignmentStatus, ShiftKind
from schedule_api.models.workplace import Workplace


def _check_values(values, allowed, field):
    out = []
    for v in values or ():
        v = str(v).strip().upper()
        if not v:
            continue
        if v not in allowed:
            raise ValidationError(f"{field} must be one of {', '.join(allowed)}")
        out.append(v)
    return out


def shift_rows(
    date_from: date,
    date_to: date,
    user_id: Optional[int] = None,
    workplace_id: Optional[int] = None,
    statuses: Sequence[str] = (),
    kinds: Sequence[str] = (),
    org_id: Optional[int] = None,
):
    statuses = _check_values(statuses, AssignmentStatus.ALL, "assignment_statuses")
    kinds = _check_values(kinds, ShiftKind.ALL, "kinds")

    q = (
        AssignmentShift.query
        .join(Assignment, Assignment.id == AssignmentShift.assignment_id)
        .join(Workplace, Workplace.id == Assignment.workplace_id)
        .filter(AssignmentShift.date >= date_from, AssignmentShift.date <= date_to)
    )
    if kinds:
        q = q.filter(AssignmentShift.kind.in_(kinds))
    if statuses:
        q = q.filter(Assignment.status.in_(statuses))
    if user_id is not None:
        q = q.filter(Assignment.user_id == user_id)
    if workplace_id is not None:
        q = q.filter(Assignment.workplace_id == workplace_id)
    if org_id is not None:
        q = q.filter(Workplace.org_id == org_id)

    rows = []
    for s in q.order_by(AssignmentShift.date.asc(), AssignmentShift.starts_at.asc()).all():
        a = s.assignment
        u = a.user
        w = a.workplace
        rows.append({
            "shift_id": s.id,
            "date": s.date.isoformat(),
            "user_id": a.user_id,
            "user_name": u.display_name if u is not None else None,
            "workplace_id": a.workplace_id,
            "workplace_name": w.name if w is not None else None,
            "assignment_status": a.status,
            "assignment_trashed": a.deleted_at is not None,
            "shift_kind": s.kind,
            "starts_at": s.starts_at.isoformat() if s.starts_at else None,
            "ends_at": s.ends_at.isoformat() if s.ends_at else None,
            "hours": round(s.hours, 2),
        })
    return rows


def aggregate(rows) -> dict:
    """Pure: totals, per-employee (with per-kind split) and per-workplace hours."""
    by_user = {}
    by_workplace = {}
    total = 0.0
    for r in rows:
        total += r["hours"]

        u = by_user.get(r["user_id"])
        if u is None:
            u = by_user[r["user_id"]] = {
                "user_id": r["user_id"], "user_name": r["user_name"], "total_hours": 0.0, "by_kind": {},
            }
        u["total_hours"] += r["hours"]
        u["by_kind"][r["shift_kind"]] = u["by_kind"].get(r["shift_kind"], 0.0) + r["hours"]

        w = by_workplace.get(r["workplace_id"])
        if w is None:
            w = by_workplace[r["workplace_id"]] = {
                "workplace_id": r["workplace_id"], "workplace_name": r["workplace_name"], "total_hours": 0.0,
            }
        w["total_hours"] += r["hours"]

    for u in by_user.values():
        u["total_hours"] = round(u["total_hours"], 2)
        u["by_kind"] = {k: round(v, 2) for k, v in u["by_kind"].items()}
    for w in by_workplace.values():
        w["total_hours"] = round(w["total_hours"], 2)

    return {
        "total_shifts": len(rows),
        "total_hours": round(total, 2),
        "by_user": sorted(by_user.values(), key=lambda x: ((x["user_name"] or "").lower(), x["user_id"])),
        "by_workplace": sorted(by_workplace.values(), key=lambda x: ((x["workplace_name"] or "").lower(), x["workplace_id"])),
    }


def get_statistics(date_from: date, date_to: date, **filters) -> dict:
    if date_from is None or date_to is None:
        raise ValidationError("from and to are required")
    if date_to < date_from:
        raise ValidationError("to must not be before from")
    rows = shift_rows(date_from, date_to, **filters)
    out = aggregate(rows)
    out["from"] = date_from.isoformat()
    out["to"] = date_to.isoformat()
    out["rows"] = rows
    return out
