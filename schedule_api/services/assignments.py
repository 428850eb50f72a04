# schedule_api/services/assignments.py
"""
Assignment lifecycle: create / update / complete / trash / restore / purge.

Every write that can make an ACTIVE assignment appear or move locks the
employee row first (SELECT ... FOR UPDATE where the backend supports it) and
runs the overlap check inside the same transaction, so two concurrent
requests for one employee cannot both pass the check.
"""
from __future__ import annotations

from datetime import datetime, date, time, timedelta
from typing import Iterable, List, Optional, Sequence
import logging

from flask import current_app
from sqlalchemy import or_

from schedule_api.common.errors import NotFound, ValidationError
from schedule_api.common.parsing import as_int, parse_date_any, parse_datetime, parse_time, pick
from schedule_api.extensions import db
from schedule_api.models.assignment import Assignment, AssignmentShift, AssignmentStatus, ShiftKind
from schedule_api.models.notification import NotificationType
from schedule_api.models.user import User
from schedule_api.models.workplace import Workplace
from schedule_api.services import notifications
from schedule_api.services.overlap import ensure_no_overlap, validate_range

log = logging.getLogger(__name__)

_MISSING = object()


# ---------- lookups ----------

def lock_user(user_id: int) -> User:
    u = (
        db.session.query(User)
        .filter(User.id == user_id)
        .with_for_update()
        .one_or_none()
    )
    if u is None:
        raise NotFound("User not found")
    return u


def get_assignment(assignment_id: int, org_id: Optional[int] = None, trashed: Optional[bool] = False) -> Assignment:
    """`trashed`: False -> live only, True -> trash only, None -> either."""
    a = db.session.get(Assignment, assignment_id)
    if a is None:
        raise NotFound("Assignment not found")
    if trashed is False and a.deleted_at is not None:
        raise NotFound("Assignment not found")
    if trashed is True and a.deleted_at is None:
        raise NotFound("Assignment is not in trash")
    if org_id is not None and (a.workplace is None or a.workplace.org_id != org_id):
        raise NotFound("Assignment not found")
    return a


def writable_workplace(workplace_id, org_id: Optional[int]) -> Workplace:
    w = db.session.get(Workplace, workplace_id)
    if w is None or w.deleted_at is not None:
        raise NotFound("Workplace not found")
    if org_id is not None and w.org_id != org_id:
        raise NotFound("Workplace not found")
    if not w.is_active:
        raise ValidationError("Workplace is inactive")
    return w


def locked_employee(user_id, org_id: Optional[int]) -> User:
    u = lock_user(user_id)
    if org_id is not None and u.org_id != org_id:
        raise NotFound("User not found")
    if not u.is_active:
        raise ValidationError("User is inactive")
    return u


def active_assignments_of(user_id: int, exclude_id: Optional[int] = None) -> List[Assignment]:
    q = Assignment.query.filter(
        Assignment.user_id == user_id,
        Assignment.status == AssignmentStatus.ACTIVE,
        Assignment.deleted_at.is_(None),
    )
    if exclude_id is not None:
        q = q.filter(Assignment.id != exclude_id)
    return q.all()


def active_count(user_id: int) -> int:
    return Assignment.query.filter(
        Assignment.user_id == user_id,
        Assignment.status == AssignmentStatus.ACTIVE,
        Assignment.deleted_at.is_(None),
    ).count()


def advisory(user_id: int) -> dict:
    """Informational only; never blocks a write."""
    n = active_count(user_id)
    threshold = int(current_app.config.get("ACTIVE_ASSIGNMENT_WARN_THRESHOLD", 2))
    return {"active_count": n, "warning": n >= threshold}


# ---------- shifts ----------

def _shift_moment(raw, day: date, field: str) -> Optional[datetime]:
    if raw in (None, ""):
        return None
    s = str(raw).strip()
    if len(s) <= 8 and ":" in s and "T" not in s:
        return datetime.combine(day, parse_time(s, field=field))
    return parse_datetime(s, field=field)


def build_shift(item: dict, a_start: Optional[datetime] = None, a_end: Optional[datetime] = None) -> AssignmentShift:
    """
    One shift from JSON: {date, starts_at, ends_at, kind}. Times may be
    HH:MM (combined with date; end <= start rolls over midnight) or ISO
    datetimes. A DAY_OFF may omit times.
    """
    if not isinstance(item, dict):
        raise ValidationError("each shift must be an object")
    day = parse_date_any(pick(item, "date", "day"))
    if day is None:
        raise ValidationError("shift date is required")
    kind = pick(item, "kind", default=ShiftKind.DEFAULT) or ShiftKind.DEFAULT
    if not isinstance(kind, str):
        raise ValidationError("shift kind must be a string")
    kind = kind.strip().upper()
    if kind not in ShiftKind.ALL:
        raise ValidationError(f"shift kind must be one of {', '.join(ShiftKind.ALL)}")

    raw_start = pick(item, "starts_at", "startsAt", "start")
    raw_end = pick(item, "ends_at", "endsAt", "end")
    starts = _shift_moment(raw_start, day, "shift starts_at")
    ends = _shift_moment(raw_end, day, "shift ends_at")

    if starts is None and ends is None and kind == ShiftKind.DAY_OFF:
        starts = datetime.combine(day, time.min)
    elif starts is None or ends is None:
        raise ValidationError(f"shift on {day.isoformat()} needs both starts_at and ends_at")
    elif ends <= starts and len(str(raw_end).strip()) <= 8:
        ends = ends + timedelta(days=1)
    if ends is not None and ends < starts:
        raise ValidationError(f"shift on {day.isoformat()} ends before it starts")

    if a_start is not None and day < a_start.date():
        raise ValidationError(f"shift date {day.isoformat()} is before the assignment starts")
    if a_end is not None and day > a_end.date():
        raise ValidationError(f"shift date {day.isoformat()} is after the assignment ends")

    return AssignmentShift(date=day, starts_at=starts, ends_at=ends, kind=kind)


def build_shifts(items, a_start=None, a_end=None) -> List[AssignmentShift]:
    if items in (None, ""):
        return []
    if not isinstance(items, list):
        raise ValidationError("shifts must be a list")
    return [build_shift(it, a_start, a_end) for it in items]


def ensure_shifts_within(shifts: Iterable[AssignmentShift], a_start: datetime, a_end: Optional[datetime]):
    """Kept shifts must still fall inside a moved or narrowed range."""
    for s in shifts:
        if s.date < a_start.date() or (a_end is not None and s.date > a_end.date()):
            raise ValidationError(
                f"shift on {s.date.isoformat()} falls outside the new assignment range; send shifts to replace them"
            )


def replace_shifts(a: Assignment, shifts: Sequence[AssignmentShift]):
    a.shifts.clear()
    db.session.flush()
    for s in shifts:
        a.shifts.append(s)


# ---------- writes ----------

def _status_of(raw, default=AssignmentStatus.ACTIVE) -> str:
    if raw in (None, ""):
        return default
    v = str(raw).strip().upper()
    if v not in AssignmentStatus.ALL:
        raise ValidationError("status must be ACTIVE or ARCHIVED")
    return v


def create_assignment(data: dict, org_id: Optional[int] = None):
    """
    Returns (assignment, advisory). Raises ValidationError / NotFound /
    OverlapConflict; nothing is written on failure.
    """
    user_id = as_int(pick(data, "user_id", "userId"), "user_id")
    workplace_id = as_int(pick(data, "workplace_id", "workplaceId"), "workplace_id")
    if not user_id or not workplace_id:
        raise ValidationError("user_id and workplace_id are required")
    starts_at = parse_datetime(pick(data, "starts_at", "startsAt"), field="starts_at")
    ends_at = parse_datetime(pick(data, "ends_at", "endsAt"), field="ends_at")
    validate_range(starts_at, ends_at)
    status = _status_of(pick(data, "status"))

    w = writable_workplace(workplace_id, org_id)
    u = locked_employee(user_id, org_id)
    shifts = build_shifts(pick(data, "shifts"), starts_at, ends_at)

    ensure_no_overlap(u.id, starts_at, ends_at, status, active_assignments_of(u.id))

    a = Assignment(
        user_id=u.id,
        workplace_id=w.id,
        status=status,
        starts_at=starts_at,
        ends_at=ends_at,
        comment=(pick(data, "comment") or None),
    )
    for s in shifts:
        a.shifts.append(s)
    db.session.add(a)
    db.session.flush()

    notifications.notify_assignment(a, NotificationType.ASSIGNMENT_CREATED)
    db.session.commit()
    log.info("assignment created id=%s user=%s workplace=%s", a.id, a.user_id, a.workplace_id)
    return a, advisory(a.user_id)


def update_assignment(assignment_id: int, data: dict, org_id: Optional[int] = None):
    """Partial update. `shifts` present (even empty) replaces all shifts."""
    a = get_assignment(assignment_id, org_id)
    before = {"user_id": a.user_id, "status": a.status, "starts_at": a.starts_at, "ends_at": a.ends_at}
    before_payload = notifications.assignment_payload(a, status=AssignmentStatus.ARCHIVED)
    before_org = a.workplace.org_id if a.workplace is not None else None

    new_user_id = pick(data, "user_id", "userId", default=_MISSING)
    new_wp_id = pick(data, "workplace_id", "workplaceId", default=_MISSING)
    raw_start = pick(data, "starts_at", "startsAt", default=_MISSING)
    raw_end = pick(data, "ends_at", "endsAt", default=_MISSING)

    starts_at = a.starts_at if raw_start is _MISSING else parse_datetime(raw_start, field="starts_at")
    ends_at = a.ends_at if raw_end is _MISSING else parse_datetime(raw_end, field="ends_at")
    validate_range(starts_at, ends_at)
    status = a.status if "status" not in data else _status_of(data.get("status"))

    # lock in id order so two updates swapping employees cannot deadlock
    target_user_id = a.user_id if new_user_id in (_MISSING, None, "") else as_int(new_user_id, "user_id")
    for uid in sorted({a.user_id, target_user_id}):
        lock_user(uid)
    if target_user_id != a.user_id:
        locked_employee(target_user_id, org_id)
    target_wp_id = a.workplace_id if new_wp_id in (_MISSING, None, "") else as_int(new_wp_id, "workplace_id")
    if target_wp_id != a.workplace_id:
        a.workplace = writable_workplace(target_wp_id, org_id)

    ensure_no_overlap(
        target_user_id, starts_at, ends_at, status,
        active_assignments_of(target_user_id, exclude_id=a.id),
        exclude_id=a.id,
    )

    raw_shifts = pick(data, "shifts", default=_MISSING)
    if raw_shifts is not _MISSING:
        replace_shifts(a, build_shifts(raw_shifts, starts_at, ends_at))
    else:
        ensure_shifts_within(a.shifts, starts_at, ends_at)

    a.user_id = target_user_id
    a.starts_at = starts_at
    a.ends_at = ends_at
    a.status = status
    if "comment" in data:
        a.comment = data.get("comment") or None
    db.session.flush()
    db.session.refresh(a)

    if a.user_id != before["user_id"]:
        notifications.notify_many(
            notifications.recipients_for(before["user_id"], before_org),
            NotificationType.ASSIGNMENT_CANCELLED,
            before_payload,
        )
        notifications.notify_assignment(a, NotificationType.ASSIGNMENT_CREATED)
    else:
        notifications.notify_assignment(a, notifications.classify_update(before, a))

    db.session.commit()
    log.info("assignment updated id=%s", a.id)
    return a, advisory(a.user_id)


def complete_assignment(assignment_id: int, org_id: Optional[int] = None) -> Assignment:
    """ACTIVE -> ARCHIVED. An open end is closed at now (never before starts_at)."""
    a = get_assignment(assignment_id, org_id)
    if a.status == AssignmentStatus.ARCHIVED:
        return a
    a.status = AssignmentStatus.ARCHIVED
    if a.ends_at is None:
        a.ends_at = max(datetime.utcnow(), a.starts_at)
    notifications.notify_assignment(a, NotificationType.ASSIGNMENT_CANCELLED)
    db.session.commit()
    return a


def soft_delete(assignment_id: int, org_id: Optional[int] = None) -> Assignment:
    a = get_assignment(assignment_id, org_id)
    a.deleted_at = datetime.utcnow()
    if a.status == AssignmentStatus.ACTIVE:
        notifications.notify_assignment(a, NotificationType.ASSIGNMENT_CANCELLED)
    db.session.commit()
    return a


def restore(assignment_id: int, org_id: Optional[int] = None) -> Assignment:
    """Back from trash; an ACTIVE assignment must still fit the employee's calendar."""
    a = get_assignment(assignment_id, org_id, trashed=True)
    lock_user(a.user_id)
    ensure_no_overlap(
        a.user_id, a.starts_at, a.ends_at, a.status,
        active_assignments_of(a.user_id, exclude_id=a.id),
        exclude_id=a.id,
    )
    a.deleted_at = None
    if a.status == AssignmentStatus.ACTIVE:
        notifications.notify_assignment(a, NotificationType.ASSIGNMENT_CREATED)
    db.session.commit()
    return a


def resend_notification(assignment_id: int, org_id: Optional[int] = None) -> int:
    a = get_assignment(assignment_id, org_id)
    n = notifications.notify_assignment(a, NotificationType.ASSIGNMENT_UPDATED)
    db.session.commit()
    return n


def trashed_by_ids(ids: Iterable[int], org_id: Optional[int] = None) -> List[Assignment]:
    ids = [int(i) for i in ids]
    if not ids:
        raise ValidationError("ids must be a non-empty list")
    q = Assignment.query.filter(Assignment.id.in_(ids), Assignment.deleted_at.isnot(None))
    if org_id is not None:
        q = q.join(Workplace, Workplace.id == Assignment.workplace_id).filter(Workplace.org_id == org_id)
    return q.order_by(Assignment.starts_at.asc()).all()


def purge(ids: Iterable[int], org_id: Optional[int] = None) -> int:
    """Hard delete; only rows already in trash are touched. Shifts cascade."""
    rows = trashed_by_ids(ids, org_id)
    for a in rows:
        db.session.delete(a)
    db.session.commit()
    log.info("purged %d assignments from trash", len(rows))
    return len(rows)


# ---------- reads ----------

def list_assignments(
    trashed: bool = False,
    user_id: Optional[int] = None,
    workplace_id: Optional[int] = None,
    status: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    org_id: Optional[int] = None,
    q: Optional[str] = None,
):
    query = Assignment.query.join(Workplace, Workplace.id == Assignment.workplace_id)
    if trashed:
        query = query.filter(Assignment.deleted_at.isnot(None))
    else:
        query = query.filter(Assignment.deleted_at.is_(None))
    if user_id is not None:
        query = query.filter(Assignment.user_id == user_id)
    if workplace_id is not None:
        query = query.filter(Assignment.workplace_id == workplace_id)
    if status:
        query = query.filter(Assignment.status == _status_of(status))
    if date_from is not None:
        query = query.filter(or_(Assignment.ends_at.is_(None), Assignment.ends_at >= date_from))
    if date_to is not None:
        query = query.filter(Assignment.starts_at <= date_to)
    if org_id is not None:
        query = query.filter(Workplace.org_id == org_id)
    if q:
        like = f"%{q}%"
        query = query.join(User, User.id == Assignment.user_id).filter(or_(
            User.full_name.ilike(like), User.email.ilike(like),
            Workplace.code.ilike(like), Workplace.name.ilike(like),
        ))
    return query.order_by(Assignment.starts_at.desc(), Assignment.id.desc())


def current_for_user(user_id: int, now: Optional[datetime] = None) -> Optional[Assignment]:
    """
    The ACTIVE assignment covering `now` (end inclusive). Failing that, an
    open-ended ACTIVE one that has not started yet.
    """
    now = now or datetime.utcnow()
    live = Assignment.query.filter(
        Assignment.user_id == user_id,
        Assignment.status == AssignmentStatus.ACTIVE,
        Assignment.deleted_at.is_(None),
    )
    current = (
        live.filter(Assignment.starts_at <= now, or_(Assignment.ends_at.is_(None), Assignment.ends_at >= now))
        .order_by(Assignment.starts_at.desc())
        .first()
    )
    if current is not None:
        return current
    return live.filter(Assignment.ends_at.is_(None)).order_by(Assignment.starts_at.asc()).first()


def history_for_user(user_id: int, take: int = 10) -> List[Assignment]:
    return (
        Assignment.query
        .filter(Assignment.user_id == user_id, Assignment.deleted_at.is_(None))
        .order_by(Assignment.starts_at.desc())
        .limit(take)
        .all()
    )
