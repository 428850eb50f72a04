# schedule_api/services/planner.py
"""
Planner matrix assembly: assignments/shifts -> calendar rows.

A row is one employee (MODE_EMPLOYEE) or one workplace (MODE_WORKPLACE) and
carries the intervals visible inside the requested window, each already
placed on a lane so clients can draw bars without re-packing.
"""
from __future__ import annotations

import calendar
from datetime import datetime, date, time, timedelta
from typing import Iterable, List, Optional, Sequence
import logging

from sqlalchemy import or_
from sqlalchemy.orm import selectinload

from schedule_api.common.errors import ValidationError
from schedule_api.models.assignment import Assignment, AssignmentStatus
from schedule_api.models.user import User
from schedule_api.models.workplace import Workplace
from schedule_api.services.lanes import LaneInterval, pack_lanes
from schedule_api.services.plans import slots_for_user

log = logging.getLogger(__name__)

MODE_EMPLOYEE = "by_employee"
MODE_WORKPLACE = "by_workplace"

_MODE_ALIASES = {
    "by_employee": MODE_EMPLOYEE,
    "byemployee": MODE_EMPLOYEE,
    "byusers": MODE_EMPLOYEE,
    "users": MODE_EMPLOYEE,
    "by_workplace": MODE_WORKPLACE,
    "byworkplace": MODE_WORKPLACE,
    "byworkplaces": MODE_WORKPLACE,
    "workplaces": MODE_WORKPLACE,
}

# open-ended records with nothing else to bound them
DEFAULT_OPEN_SPAN = timedelta(days=30)


def normalize_mode(raw: Optional[str]) -> str:
    if not raw:
        return MODE_EMPLOYEE
    mode = _MODE_ALIASES.get(str(raw).strip().lower())
    if mode is None:
        raise ValidationError("mode must be by_employee or by_workplace")
    return mode


def normalize_statuses(raw: Optional[str]) -> tuple:
    """None -> ACTIVE only (archived is hidden from the calendar by default); 'ALL' -> both."""
    if not raw:
        return (AssignmentStatus.ACTIVE,)
    v = str(raw).strip().upper()
    if v == "ALL":
        return AssignmentStatus.ALL
    if v not in AssignmentStatus.ALL:
        raise ValidationError("status must be ACTIVE, ARCHIVED or ALL")
    return (v,)


# ---------- window ----------

def _month_bounds(today: date):
    last = calendar.monthrange(today.year, today.month)[1]
    return (
        datetime.combine(today.replace(day=1), time.min),
        datetime.combine(today.replace(day=last), time.max),
    )


def resolve_window(
    date_from: Optional[datetime],
    date_to: Optional[datetime],
    records: Sequence = (),
    today: Optional[date] = None,
):
    """
    Return (from, to). Missing bounds default to the earliest start / latest
    end among `records`; with no end anywhere the window spans 30 days from
    its start; with no records at all it is the current month.
    """
    if date_from is not None and date_to is not None:
        if date_to < date_from:
            raise ValidationError("to must not be before from")
        return date_from, date_to

    records = list(records)
    if not records:
        if date_from is None and date_to is None:
            return _month_bounds(today or datetime.utcnow().date())
        if date_from is None:
            return date_to - DEFAULT_OPEN_SPAN, date_to
        return date_from, date_from + DEFAULT_OPEN_SPAN

    start = date_from or min(r.starts_at for r in records)
    if date_to is not None:
        end = date_to
    else:
        ends = [r.ends_at for r in records if r.ends_at is not None]
        if ends:
            end = max(ends + [r.starts_at for r in records])
        else:
            end = max([start + DEFAULT_OPEN_SPAN] + [r.starts_at for r in records])
    if end < start:
        end = start
    return start, end


# ---------- pure shaping ----------

def _visible(start: datetime, end: Optional[datetime], w_from: datetime, w_to: datetime) -> bool:
    return start <= w_to and (end is None or end >= w_from)


def _clip(start: datetime, end: Optional[datetime], w_from: datetime, w_to: datetime):
    return max(start, w_from), (min(end, w_to) if end is not None else None)


def assignment_intervals(a, w_from: datetime, w_to: datetime) -> List[dict]:
    """
    Visible intervals of one assignment. Shifts are used when present;
    an assignment without shifts is one bar over its own range, an open end
    running to the window edge.
    """
    out = []
    shifts = list(getattr(a, "shifts", None) or [])
    if shifts:
        for s in shifts:
            if not _visible(s.starts_at, s.ends_at or s.starts_at, w_from, w_to):
                continue
            c_from, c_to = _clip(s.starts_at, s.ends_at, w_from, w_to)
            out.append({
                "id": f"{a.id}:{s.id}",
                "assignment_id": a.id,
                "shift_id": s.id,
                "date": s.date.isoformat() if s.date else None,
                "from": c_from,
                "to": c_to,
                "kind": s.kind,
            })
        return out

    if not _visible(a.starts_at, a.ends_at, w_from, w_to):
        return out
    c_from, c_to = _clip(a.starts_at, a.ends_at, w_from, w_to)
    out.append({
        "id": str(a.id),
        "assignment_id": a.id,
        "shift_id": None,
        "date": None,
        "from": c_from,
        "to": c_to if c_to is not None else w_to,
        "kind": None,
    })
    return out


def _user_title(u, fallback) -> str:
    if u is None:
        return str(fallback)
    return (u.full_name or "").strip() or u.email


def _finish_row(row: dict) -> dict:
    row["slots"].sort(key=lambda s: (s["from"], s["to"] or s["from"], s["id"]))
    layout = pack_lanes(LaneInterval(s["id"], s["from"], s["to"]) for s in row["slots"])
    for s in row["slots"]:
        s["lane"] = layout.lane_of(s["id"])
        s["from"] = s["from"].isoformat()
        s["to"] = s["to"].isoformat() if s["to"] is not None else None
    row["lanes_count"] = layout.lanes_count
    return row


def build_rows(
    assignments: Iterable,
    mode: str,
    w_from: datetime,
    w_to: datetime,
    workplaces: Iterable = (),
) -> List[dict]:
    """
    Group visible intervals into rows, sorted by title. `workplaces` adds
    empty rows in MODE_WORKPLACE so unstaffed workplaces still render.
    """
    rows = {}
    for a in assignments:
        intervals = assignment_intervals(a, w_from, w_to)
        if not intervals:
            continue
        w = a.workplace
        u = a.user
        wp_meta = w.meta() if w is not None else {"id": a.workplace_id}
        for iv in intervals:
            iv["status"] = a.status
            iv["workplace"] = wp_meta
            iv["user"] = u.brief() if u is not None else {"id": a.user_id}

        if mode == MODE_WORKPLACE:
            key = f"workplace:{a.workplace_id}"
            title = w.label if w is not None else str(a.workplace_id)
            subtitle = (w.location or None) if w is not None else None
            color = w.color if w is not None else None
        else:
            key = f"user:{a.user_id}"
            title = _user_title(u, a.user_id)
            subtitle = u.position if u is not None else None
            color = None
        row = rows.get(key)
        if row is None:
            row = rows[key] = {"key": key, "title": title, "subtitle": subtitle, "color": color, "slots": []}
        row["slots"].extend(intervals)

    if mode == MODE_WORKPLACE:
        for w in workplaces:
            key = f"workplace:{w.id}"
            if key not in rows:
                rows[key] = {
                    "key": key, "title": w.label, "subtitle": w.location or None,
                    "color": w.color, "slots": [],
                }

    ordered = sorted(rows.values(), key=lambda r: ((r["title"] or "").lower(), r["key"]))
    return [_finish_row(r) for r in ordered]


# ---------- queries ----------

def collect_assignments(
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    statuses: Sequence[str] = (AssignmentStatus.ACTIVE,),
    user_id: Optional[int] = None,
    workplace_id: Optional[int] = None,
    org_id: Optional[int] = None,
) -> List[Assignment]:
    """Non-trashed assignments intersecting [date_from, date_to] (either bound optional)."""
    q = (
        Assignment.query
        .join(Workplace, Workplace.id == Assignment.workplace_id)
        .options(selectinload(Assignment.shifts))
        .filter(Assignment.deleted_at.is_(None))
        .filter(Assignment.status.in_(list(statuses)))
    )
    if date_to is not None:
        q = q.filter(Assignment.starts_at <= date_to)
    if date_from is not None:
        q = q.filter(or_(Assignment.ends_at.is_(None), Assignment.ends_at >= date_from))
    if user_id is not None:
        q = q.filter(Assignment.user_id == user_id)
    if workplace_id is not None:
        q = q.filter(Assignment.workplace_id == workplace_id)
    if org_id is not None:
        q = q.filter(Workplace.org_id == org_id)
    return q.order_by(Assignment.starts_at.asc(), Assignment.id.asc()).all()


def _scope_workplaces(org_id: Optional[int], workplace_id: Optional[int]):
    q = Workplace.query.filter(Workplace.deleted_at.is_(None), Workplace.is_active.is_(True))
    if org_id is not None:
        q = q.filter(Workplace.org_id == org_id)
    if workplace_id is not None:
        q = q.filter(Workplace.id == workplace_id)
    return q.order_by(Workplace.code.asc()).all()


def get_matrix(
    mode: str = MODE_EMPLOYEE,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    statuses: Sequence[str] = (AssignmentStatus.ACTIVE,),
    page: int = 1,
    page_size: int = 20,
    user_id: Optional[int] = None,
    workplace_id: Optional[int] = None,
    org_id: Optional[int] = None,
    include_empty: bool = False,
) -> dict:
    records = collect_assignments(date_from, date_to, statuses, user_id, workplace_id, org_id)
    w_from, w_to = resolve_window(date_from, date_to, records)

    extra = _scope_workplaces(org_id, workplace_id) if (include_empty and mode == MODE_WORKPLACE) else ()
    rows = build_rows(records, mode, w_from, w_to, workplaces=extra)

    total = len(rows)
    start = (page - 1) * page_size
    log.debug("planner matrix mode=%s window=[%s, %s] rows=%d", mode, w_from, w_to, total)
    return {
        "mode": mode,
        "from": w_from.isoformat(),
        "to": w_to.isoformat(),
        "page": page,
        "page_size": page_size,
        "total": total,
        "rows": rows[start:start + page_size],
    }


def personal_schedule(
    user: User,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    statuses: Sequence[str] = (AssignmentStatus.ACTIVE,),
) -> dict:
    """
    One employee's mini-planner: a row per workplace they are assigned to,
    plus their slots from non-archived plans in the same window.
    """
    records = collect_assignments(date_from, date_to, statuses, user_id=user.id)
    w_from, w_to = resolve_window(date_from, date_to, records)
    rows = build_rows(records, MODE_WORKPLACE, w_from, w_to)
    return {
        "user": user.brief(),
        "from": w_from.isoformat(),
        "to": w_to.isoformat(),
        "rows": rows,
        "plan_slots": [s.to_dict() for s in slots_for_user(user.id, date_from, date_to)],
    }
