# schedule_api/services/plans.py
"""
Staffing plans and their slots.

A plan is DRAFT -> PUBLISHED -> ARCHIVED; archived plans are read-only and
only drafts may be deleted. Slots place one employee at one workplace for a
[date_start, date_end] range (both ends inclusive). Locked slots keep their
employee, workplace and dates. Employees confirm their own slots or ask for a
swap, which marks the slot REPLACED and tells the org's managers.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional
import logging

from sqlalchemy import func

from schedule_api.common.errors import Forbidden, NotFound, ValidationError
from schedule_api.common.parsing import as_bool, as_int, parse_datetime, pick
from schedule_api.extensions import db
from schedule_api.models.notification import NotificationType
from schedule_api.models.plan import ConstraintType, Plan, PlanningConstraint, PlanStatus, Slot, SlotStatus
from schedule_api.models.user import User, UserRole
from schedule_api.models.workplace import Workplace
from schedule_api.services import notifications
from schedule_api.services.assignments import writable_workplace

log = logging.getLogger(__name__)

_MISSING = object()

MAX_BULK = 500
MAX_TEAM_SIZE = 100
MAX_NOTE = 500
MAX_COLOR = 16


# ---------- plans ----------

def get_plan(plan_id: int, org_id: Optional[int] = None) -> Plan:
    p = db.session.get(Plan, plan_id)
    if p is None or (org_id is not None and p.org_id != org_id):
        raise NotFound("Plan not found")
    return p


def _assert_mutable(p: Plan):
    if p.status == PlanStatus.ARCHIVED:
        raise ValidationError("Archived plan cannot be modified", code="PLAN_ARCHIVED")


def _required_moment(raw, field: str) -> datetime:
    v = parse_datetime(raw, field=field)
    if v is None:
        raise ValidationError(f"{field} is required")
    return v


def _range(start: datetime, end: datetime, start_field: str, end_field: str):
    if end < start:
        raise ValidationError(f"{end_field} must not be before {start_field}")


def create_plan(data: dict, org_id: Optional[int]) -> Plan:
    name = (pick(data, "name") or "").strip()
    if not name:
        raise ValidationError("name is required")
    starts_at = _required_moment(pick(data, "starts_at", "startsAt"), "starts_at")
    ends_at = _required_moment(pick(data, "ends_at", "endsAt"), "ends_at")
    _range(starts_at, ends_at, "starts_at", "ends_at")

    p = Plan(org_id=org_id, name=name, starts_at=starts_at, ends_at=ends_at, status=PlanStatus.DRAFT)
    db.session.add(p)
    db.session.commit()
    log.info("plan created id=%s org=%s", p.id, org_id)
    return p


def list_plans(org_id: Optional[int] = None, status: Optional[str] = None,
               date_from: Optional[datetime] = None, date_to: Optional[datetime] = None):
    q = Plan.query
    if org_id is not None:
        q = q.filter(Plan.org_id == org_id)
    if status:
        s = status.strip().upper()
        if s not in PlanStatus.ALL:
            raise ValidationError("status must be DRAFT, PUBLISHED or ARCHIVED")
        q = q.filter(Plan.status == s)
    if date_from is not None:
        q = q.filter(Plan.ends_at >= date_from)
    if date_to is not None:
        q = q.filter(Plan.starts_at <= date_to)
    return q.order_by(Plan.starts_at.asc(), Plan.id.asc())


def slots_of(p: Plan):
    return Slot.query.filter(Slot.plan_id == p.id).order_by(Slot.date_start.asc(), Slot.id.asc())


def publish_plan(plan_id: int, org_id: Optional[int] = None) -> Plan:
    p = get_plan(plan_id, org_id)
    if p.status == PlanStatus.PUBLISHED:
        return p
    if p.status == PlanStatus.ARCHIVED:
        raise ValidationError("Archived plan cannot be published", code="PLAN_ARCHIVED")
    p.status = PlanStatus.PUBLISHED
    db.session.commit()
    log.info("plan published id=%s", p.id)
    return p


def archive_plan(plan_id: int, org_id: Optional[int] = None) -> Plan:
    p = get_plan(plan_id, org_id)
    if p.status != PlanStatus.ARCHIVED:
        p.status = PlanStatus.ARCHIVED
        db.session.commit()
        log.info("plan archived id=%s", p.id)
    return p


def delete_plan(plan_id: int, org_id: Optional[int] = None) -> int:
    p = get_plan(plan_id, org_id)
    if p.status != PlanStatus.DRAFT:
        raise ValidationError("Only draft plans can be deleted", code="PLAN_NOT_DRAFT")
    pid = p.id
    db.session.delete(p)
    db.session.commit()
    log.info("plan deleted id=%s", pid)
    return pid


# ---------- slot input ----------

def _employee(user_id: int, org_id: Optional[int]) -> User:
    u = db.session.get(User, user_id)
    if u is None or (org_id is not None and u.org_id != org_id):
        raise NotFound("User not found")
    if not u.is_active:
        raise ValidationError("User is inactive")
    return u


def _slot_status(raw) -> str:
    v = str(raw).strip().upper()
    if v not in SlotStatus.ALL:
        raise ValidationError(f"status must be one of {', '.join(SlotStatus.ALL)}")
    return v


def _color_code(raw) -> Optional[str]:
    if raw in (None, ""):
        return None
    v = str(raw).strip()
    if len(v) > MAX_COLOR:
        raise ValidationError(f"color_code must be at most {MAX_COLOR} characters")
    return v


def _note(raw) -> Optional[str]:
    if raw in (None, ""):
        return None
    v = str(raw)
    if len(v) > MAX_NOTE:
        raise ValidationError(f"note must be at most {MAX_NOTE} characters")
    return v


def _id_list(raw, field: str) -> List[int]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError(f"{field} must be a non-empty list")
    if len(raw) > MAX_BULK:
        raise ValidationError(f"{field} accepts at most {MAX_BULK} items")
    return [as_int(v, field) for v in raw]


def build_slot(p: Plan, item: dict) -> Slot:
    if not isinstance(item, dict):
        raise ValidationError("each slot must be an object")
    user_id = as_int(pick(item, "user_id", "userId"), "user_id")
    wp_id = as_int(pick(item, "workplace_id", "workplaceId"), "workplace_id")
    if user_id is None or wp_id is None:
        raise ValidationError("user_id and workplace_id are required")
    date_start = _required_moment(pick(item, "date_start", "dateStart"), "date_start")
    date_end = _required_moment(pick(item, "date_end", "dateEnd"), "date_end")
    _range(date_start, date_end, "date_start", "date_end")

    u = _employee(user_id, p.org_id)
    w = writable_workplace(wp_id, p.org_id)
    raw_status = pick(item, "status")
    raw_color = pick(item, "color_code", "colorCode")
    return Slot(
        plan=p,
        user_id=u.id,
        workplace_id=w.id,
        date_start=date_start,
        date_end=date_end,
        status=_slot_status(raw_status) if raw_status not in (None, "") else SlotStatus.PLANNED,
        color_code=_color_code(raw_color) if raw_color not in (None, "") else _color_code(w.color),
        note=_note(pick(item, "note")),
        locked=bool(as_bool(pick(item, "locked"), "locked")),
    )


def _notify_slots(slots: Iterable[Slot], ntype: str, **extra) -> None:
    seen = set()
    for s in slots:
        if s.user_id in seen:
            continue
        seen.add(s.user_id)
        notifications.notify_many([s.user_id], ntype, notifications.slot_payload(s, **extra))


# ---------- slot writes (managers) ----------

def bulk_assign(plan_id: int, data: dict, org_id: Optional[int] = None) -> List[Slot]:
    p = get_plan(plan_id, org_id)
    _assert_mutable(p)
    items = pick(data, "slots")
    if not isinstance(items, list) or not items:
        raise ValidationError("slots must be a non-empty list")
    if len(items) > MAX_BULK:
        raise ValidationError(f"slots accepts at most {MAX_BULK} items")

    created = [build_slot(p, it) for it in items]
    db.session.add_all(created)
    db.session.flush()
    _notify_slots(created, NotificationType.ASSIGNMENT_CREATED)
    db.session.commit()
    log.info("plan %s: %d slots assigned", p.id, len(created))
    return created


def _iso_week(d: datetime):
    return d.isocalendar()[:2]


def _touches(a_start, a_end, b_start, b_end) -> bool:
    return not (a_end < b_start or a_start > b_end)


def _blocked_by(c: PlanningConstraint, user_id: int, wp_id: int, d_start: datetime, d_end: datetime,
                taken: list) -> bool:
    payload = c.payload
    if c.type == ConstraintType.WORKPLACE_BLACKLIST:
        ids = payload if isinstance(payload, list) else (payload or {}).get("workplace_ids") or []
        return wp_id in ids
    if c.type == ConstraintType.AVAILABILITY:
        for item in (payload or {}).get("unavailable") or []:
            frm = parse_datetime(item.get("from"), field="from")
            to = parse_datetime(item.get("to"), field="to")
            if frm is not None and to is not None and _touches(frm, to, d_start, d_end):
                return True
        return False
    if c.type == ConstraintType.MAX_SLOTS_PER_WEEK:
        limit = (payload or {}).get("limit")
        if not limit:
            return False
        week = _iso_week(d_start)
        used = sum(
            1 for uid, s, e in taken
            if uid == user_id and _iso_week(s) == week and _touches(s, e, d_start, d_end)
        )
        return used >= limit
    return False


def auto_assign(plan_id: int, data: dict, org_id: Optional[int] = None) -> List[Slot]:
    """
    Fill `team_size` slots at one workplace for one range. Employees with the
    fewest slots already touching the range go first (ties by id); anybody
    already busy in the range, or excluded by a constraint, is skipped.
    """
    p = get_plan(plan_id, org_id)
    _assert_mutable(p)

    wp_id = as_int(pick(data, "workplace_id", "workplaceId"), "workplace_id")
    if wp_id is None:
        raise ValidationError("workplace_id is required")
    team_size = as_int(pick(data, "team_size", "teamSize"), "team_size")
    if team_size is None or not 1 <= team_size <= MAX_TEAM_SIZE:
        raise ValidationError(f"team_size must be between 1 and {MAX_TEAM_SIZE}")
    d_start = _required_moment(pick(data, "date_start", "dateStart"), "date_start")
    d_end = _required_moment(pick(data, "date_end", "dateEnd"), "date_end")
    _range(d_start, d_end, "date_start", "date_end")
    if not _touches(p.starts_at, p.ends_at, d_start, d_end):
        raise ValidationError("Dates are outside of the plan range")
    respect = as_bool(pick(data, "respect_constraints", "respectConstraints"), "respect_constraints")
    respect = True if respect is None else respect

    w = writable_workplace(wp_id, p.org_id)

    existing = Slot.query.filter(
        Slot.plan_id == p.id, Slot.date_start <= d_end, Slot.date_end >= d_start,
    ).all()
    taken = [(s.user_id, s.date_start, s.date_end) for s in existing]
    load = {}
    for s in existing:
        load[s.user_id] = load.get(s.user_id, 0) + 1

    cq = User.query.filter(User.role != UserRole.SUPER_ADMIN, User.is_active.is_(True))
    if p.org_id is not None:
        cq = cq.filter(User.org_id == p.org_id)
    candidates = sorted(cq.all(), key=lambda u: (load.get(u.id, 0), u.id))

    rules = []
    if respect:
        rq = PlanningConstraint.query
        if p.org_id is not None:
            rq = rq.filter(PlanningConstraint.org_id == p.org_id)
        rules = rq.all()

    def available(uid: int) -> bool:
        for c in rules:
            scoped = c.user_id == uid or (c.user_id is None and c.workplace_id in (None, w.id))
            if scoped and _blocked_by(c, uid, w.id, d_start, d_end, taken):
                return False
        return not any(t_uid == uid and _touches(s, e, d_start, d_end) for t_uid, s, e in taken)

    created = []
    for u in candidates:
        if len(created) >= team_size:
            break
        if not available(u.id):
            continue
        created.append(Slot(
            plan=p, user_id=u.id, workplace_id=w.id, date_start=d_start, date_end=d_end,
            status=SlotStatus.PLANNED, color_code=_color_code(w.color), locked=False,
        ))
        taken.append((u.id, d_start, d_end))

    if len(created) < team_size:
        raise ValidationError(
            "Not enough available employees for auto assignment",
            code="NOT_ENOUGH_EMPLOYEES",
            payload={"available": len(created), "requested": team_size},
        )

    db.session.add_all(created)
    db.session.flush()
    _notify_slots(created, NotificationType.ASSIGNMENT_CREATED, auto=True)
    db.session.commit()
    log.info("plan %s: auto-assigned %d employees to workplace %s", p.id, len(created), w.id)
    return created


def _plan_slot(p: Plan, slot_id: int) -> Slot:
    s = db.session.get(Slot, slot_id)
    if s is None or s.plan_id != p.id:
        raise NotFound("Slot not found")
    return s


def bulk_move(plan_id: int, data: dict, org_id: Optional[int] = None) -> List[Slot]:
    p = get_plan(plan_id, org_id)
    _assert_mutable(p)
    ids = _id_list(pick(data, "slot_ids", "slotIds"), "slot_ids")

    raw_start = pick(data, "new_date_start", "newDateStart")
    raw_end = pick(data, "new_date_end", "newDateEnd")
    raw_wp = pick(data, "new_workplace_id", "newWorkplaceId")
    raw_user = pick(data, "new_user_id", "newUserId")
    if all(v in (None, "") for v in (raw_start, raw_end, raw_wp, raw_user)):
        raise ValidationError("nothing to move: give new dates, workplace or employee")

    new_start = parse_datetime(raw_start, field="new_date_start")
    new_end = parse_datetime(raw_end, field="new_date_end")
    new_wp = writable_workplace(as_int(raw_wp, "new_workplace_id"), p.org_id) if raw_wp not in (None, "") else None
    new_user = _employee(as_int(raw_user, "new_user_id"), p.org_id) if raw_user not in (None, "") else None

    slots = Slot.query.filter(Slot.plan_id == p.id, Slot.id.in_(ids)).all()
    if len(slots) != len(set(ids)):
        raise NotFound("Some slots were not found in this plan")

    for s in slots:
        if s.locked:
            raise Forbidden(f"Slot {s.id} is locked and cannot be moved", code="SLOT_LOCKED")
        start = new_start or s.date_start
        end = new_end or s.date_end
        _range(start, end, "date_start", "date_end")
        s.date_start, s.date_end = start, end
        if new_wp is not None:
            s.workplace_id = new_wp.id
        if new_user is not None:
            s.user_id = new_user.id
    db.session.flush()
    _notify_slots(slots, NotificationType.ASSIGNMENT_MOVED)
    db.session.commit()
    return slots


def update_slot(plan_id: int, slot_id: int, data: dict, org_id: Optional[int] = None) -> Slot:
    p = get_plan(plan_id, org_id)
    _assert_mutable(p)
    s = _plan_slot(p, slot_id)

    raw_user = pick(data, "user_id", "userId", default=_MISSING)
    raw_wp = pick(data, "workplace_id", "workplaceId", default=_MISSING)
    raw_start = pick(data, "date_start", "dateStart", default=_MISSING)
    raw_end = pick(data, "date_end", "dateEnd", default=_MISSING)
    if s.locked and any(v is not _MISSING for v in (raw_user, raw_wp, raw_start, raw_end)):
        raise Forbidden("Slot is locked and cannot be modified", code="SLOT_LOCKED")

    start = s.date_start if raw_start is _MISSING else _required_moment(raw_start, "date_start")
    end = s.date_end if raw_end is _MISSING else _required_moment(raw_end, "date_end")
    _range(start, end, "date_start", "date_end")
    if raw_user not in (_MISSING, None, ""):
        s.user_id = _employee(as_int(raw_user, "user_id"), p.org_id).id
    if raw_wp not in (_MISSING, None, ""):
        s.workplace_id = writable_workplace(as_int(raw_wp, "workplace_id"), p.org_id).id
    s.date_start, s.date_end = start, end

    if pick(data, "status") not in (None, ""):
        s.status = _slot_status(pick(data, "status"))
    if "color_code" in data or "colorCode" in data:
        s.color_code = _color_code(pick(data, "color_code", "colorCode"))
    if "note" in data:
        s.note = _note(data.get("note"))
    if "locked" in data:
        s.locked = bool(as_bool(data.get("locked"), "locked"))

    db.session.flush()
    notifications.notify_many([s.user_id], NotificationType.ASSIGNMENT_UPDATED, notifications.slot_payload(s))
    db.session.commit()
    return s


def delete_slot(plan_id: int, slot_id: int, org_id: Optional[int] = None) -> int:
    p = get_plan(plan_id, org_id)
    _assert_mutable(p)
    s = _plan_slot(p, slot_id)
    if s.locked:
        raise Forbidden("Slot is locked and cannot be removed", code="SLOT_LOCKED")
    notifications.notify_many(
        [s.user_id], NotificationType.ASSIGNMENT_CANCELLED, notifications.slot_payload(s, removed=True),
    )
    sid = s.id
    db.session.delete(s)
    db.session.commit()
    return sid


# ---------- employee side ----------

def slots_for_user(user_id: int, date_from: Optional[datetime] = None,
                   date_to: Optional[datetime] = None) -> List[Slot]:
    """The employee's slots in non-archived plans, optionally clipped to a window."""
    q = (
        Slot.query.join(Plan, Plan.id == Slot.plan_id)
        .filter(Slot.user_id == user_id, Plan.status != PlanStatus.ARCHIVED)
    )
    if date_from is not None:
        q = q.filter(Slot.date_end >= date_from)
    if date_to is not None:
        q = q.filter(Slot.date_start <= date_to)
    return q.order_by(Slot.date_start.asc(), Slot.id.asc()).all()


def _own_slot(user_id: int, slot_id: int) -> Slot:
    s = db.session.get(Slot, slot_id)
    if s is None or s.user_id != user_id:
        raise NotFound("Slot not found")
    return s


def confirm_slot(user_id: int, slot_id: int) -> Slot:
    s = _own_slot(user_id, slot_id)
    if s.status == SlotStatus.CANCELLED:
        raise ValidationError("Cancelled slot cannot be confirmed", code="SLOT_CANCELLED")
    if s.status != SlotStatus.CONFIRMED:
        s.status = SlotStatus.CONFIRMED
        org_id = s.plan.org_id if s.plan is not None else None
        notifications.notify_many(
            notifications.managers_of(org_id), NotificationType.ASSIGNMENT_UPDATED, notifications.slot_payload(s),
        )
        db.session.commit()
        log.info("slot %s confirmed by user=%s", s.id, user_id)
    return s


def request_swap(user_id: int, slot_id: int, data: dict) -> Slot:
    comment = (pick(data, "comment") or "").strip()
    if not comment:
        raise ValidationError("comment is required")
    if len(comment) > MAX_NOTE:
        raise ValidationError(f"comment must be at most {MAX_NOTE} characters")

    s = _own_slot(user_id, slot_id)
    if s.status == SlotStatus.CANCELLED:
        raise ValidationError("Cannot request a swap for a cancelled slot", code="SLOT_CANCELLED")

    line = f"[swap] {datetime.utcnow().isoformat(timespec='seconds')} {comment}"
    s.note = f"{s.note}\n{line}" if s.note else line
    s.status = SlotStatus.REPLACED
    org_id = s.plan.org_id if s.plan is not None else None
    notifications.notify_many(
        notifications.managers_of(org_id),
        NotificationType.ASSIGNMENT_UPDATED,
        notifications.slot_payload(s, comment=comment, requested_by=user_id),
    )
    db.session.commit()
    log.info("slot %s swap requested by user=%s", s.id, user_id)
    return s


# ---------- constraints ----------

def list_constraints(org_id: Optional[int] = None) -> List[PlanningConstraint]:
    q = PlanningConstraint.query
    if org_id is not None:
        q = q.filter(PlanningConstraint.org_id == org_id)
    return q.order_by(PlanningConstraint.created_at.desc(), PlanningConstraint.id.desc()).all()


def _constraint_payload(ctype: str, payload):
    if ctype == ConstraintType.WORKPLACE_BLACKLIST:
        ids = payload.get("workplace_ids") if isinstance(payload, dict) else payload
        if not isinstance(ids, list):
            raise ValidationError("payload must list workplace_ids")
        return {"workplace_ids": [as_int(v, "workplace_ids") for v in ids]}
    if ctype == ConstraintType.AVAILABILITY:
        items = payload.get("unavailable") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise ValidationError("payload must contain an unavailable list")
        out = []
        for it in items:
            if not isinstance(it, dict):
                raise ValidationError("each unavailable entry must be an object")
            frm = _required_moment(it.get("from"), "from")
            to = _required_moment(it.get("to"), "to")
            _range(frm, to, "from", "to")
            out.append({"from": frm.isoformat(), "to": to.isoformat()})
        return {"unavailable": out}
    limit = as_int(payload.get("limit") if isinstance(payload, dict) else None, "limit")
    if limit is None or limit < 1:
        raise ValidationError("payload.limit must be a positive integer")
    return {"limit": limit}


def upsert_constraint(data: dict, org_id: Optional[int]) -> PlanningConstraint:
    ctype = str(pick(data, "type") or "").strip().upper()
    if ctype not in ConstraintType.ALL:
        raise ValidationError(f"type must be one of {', '.join(ConstraintType.ALL)}")
    payload = _constraint_payload(ctype, pick(data, "payload"))

    user_id = as_int(pick(data, "user_id", "userId"), "user_id")
    if user_id is not None:
        _employee(user_id, org_id)
    wp_id = as_int(pick(data, "workplace_id", "workplaceId"), "workplace_id")
    if wp_id is not None:
        w = db.session.get(Workplace, wp_id)
        if w is None or (org_id is not None and w.org_id != org_id):
            raise NotFound("Workplace not found")

    cid = as_int(pick(data, "id"), "id")
    if cid is not None:
        c = db.session.get(PlanningConstraint, cid)
        if c is None or (org_id is not None and c.org_id != org_id):
            raise NotFound("Constraint not found")
    else:
        c = PlanningConstraint(org_id=org_id)
        db.session.add(c)
    c.type = ctype
    c.payload = payload
    c.user_id = user_id
    c.workplace_id = wp_id
    db.session.commit()
    return c


def slot_counts(plan_ids: Iterable[int]) -> dict:
    ids = list(plan_ids)
    if not ids:
        return {}
    rows = (
        db.session.query(Slot.plan_id, func.count(Slot.id))
        .filter(Slot.plan_id.in_(ids))
        .group_by(Slot.plan_id)
        .all()
    )
    return {pid: n for pid, n in rows}
