# schedule_api/services/approvals.py
"""
Employee requests and manager decisions.

Two request kinds share one lifecycle: PENDING -> APPROVED | REJECTED, exactly
once. A decision is a conditional UPDATE (WHERE status = 'PENDING'); when it
touches zero rows somebody else got there first and the caller receives
AlreadyProcessed. The approval effect runs in the same transaction, so a
failing effect (e.g. an overlap) rolls the status back to PENDING.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional
import logging

from schedule_api.common.errors import AlreadyProcessed, Forbidden, NotFound, ValidationError, APIError
from schedule_api.common.parsing import as_int, parse_datetime, pick
from schedule_api.extensions import db
from schedule_api.models.assignment import Assignment, AssignmentStatus
from schedule_api.models.notification import NotificationType
from schedule_api.models.requests import AssignmentRequest, RequestStatus, ScheduleAdjustmentRequest
from schedule_api.models.user import User
from schedule_api.models.workplace import Workplace
from schedule_api.services import assignments as assignment_svc
from schedule_api.services import notifications
from schedule_api.services.overlap import ensure_no_overlap, validate_range

log = logging.getLogger(__name__)


# ---------- shared ----------

def _decision(raw: str) -> str:
    v = (raw or "").strip().upper()
    if v not in RequestStatus.DECISIONS:
        raise ValidationError("decision must be APPROVED or REJECTED")
    return v


def claim_pending(model, request_id: int, decision: str, actor_id: Optional[int], manager_comment: Optional[str]) -> None:
    """
    Atomically move one request out of PENDING. Raises AlreadyProcessed when
    the row is no longer PENDING (including a concurrent decision).
    """
    n = (
        db.session.query(model)
        .filter(model.id == request_id, model.status == RequestStatus.PENDING)
        .update(
            {
                model.status: decision,
                model.decided_at: datetime.utcnow(),
                model.decided_by_user_id: actor_id,
                model.manager_comment: manager_comment,
            },
            synchronize_session=False,
        )
    )
    if n == 0:
        db.session.rollback()
        current = db.session.get(model, request_id)
        if current is None:
            raise NotFound("Request not found")
        log.info("%s id=%s already processed (status=%s)", model.__tablename__, request_id, current.status)
        raise AlreadyProcessed(current_status=current.status)


def _normalize_proposal(data: dict, a: Assignment) -> list:
    """
    Accepts either {"proposal": [{date, starts_at, ends_at, kind}, ...]} or the
    single-day form {date, starts_at, ends_at, kind}. Stored as plain JSON.
    """
    items = pick(data, "proposal", "days")
    if items is None:
        if pick(data, "date", "day") is None:
            raise ValidationError("proposal is required")
        items = [data]
    if not isinstance(items, list) or not items:
        raise ValidationError("proposal must be a non-empty list")
    out = []
    for it in items:
        s = assignment_svc.build_shift(it, a.starts_at, a.ends_at)
        out.append({
            "date": s.date.isoformat(),
            "starts_at": s.starts_at.isoformat() if s.starts_at else None,
            "ends_at": s.ends_at.isoformat() if s.ends_at else None,
            "kind": s.kind,
        })
    return out


def _org_of_assignment(a: Assignment) -> Optional[int]:
    return a.workplace.org_id if a.workplace is not None else None


# ---------- schedule adjustments ----------

def submit_adjustment(assignment_id: int, data: dict, actor: User, can_manage: bool = False) -> ScheduleAdjustmentRequest:
    a = db.session.get(Assignment, assignment_id)
    if a is None or a.deleted_at is not None:
        raise NotFound("Assignment not found")
    if a.user_id != actor.id and not can_manage:
        raise Forbidden("Only the assigned employee can request an adjustment")
    if can_manage and a.user_id != actor.id and actor.org_id is not None and _org_of_assignment(a) != actor.org_id:
        raise NotFound("Assignment not found")
    if a.status != AssignmentStatus.ACTIVE:
        raise ValidationError("Only active assignments can be adjusted")

    comment = (pick(data, "comment") or "").strip()
    if not comment:
        raise ValidationError("comment is required")
    if len(comment) > 2000:
        raise ValidationError("comment must be at most 2000 characters")

    req = ScheduleAdjustmentRequest(
        assignment_id=a.id,
        user_id=a.user_id,
        proposal=_normalize_proposal(data, a),
        comment=comment,
        status=RequestStatus.PENDING,
    )
    db.session.add(req)
    db.session.commit()
    log.info("adjustment submitted id=%s assignment=%s by=%s", req.id, a.id, actor.id)
    return req


def apply_proposal(a: Assignment, proposal: list) -> None:
    """Every proposed date replaces all existing shifts of the assignment on that date."""
    new_shifts = [assignment_svc.build_shift(it, a.starts_at, a.ends_at) for it in proposal]
    dates = {s.date for s in new_shifts}
    for s in [s for s in a.shifts if s.date in dates]:
        a.shifts.remove(s)
    db.session.flush()
    for s in new_shifts:
        a.shifts.append(s)


def decide_adjustment(request_id: int, decision: str, actor: User, manager_comment: Optional[str] = None,
                      org_id: Optional[int] = None) -> ScheduleAdjustmentRequest:
    decision = _decision(decision)
    req = db.session.get(ScheduleAdjustmentRequest, request_id)
    if req is None:
        raise NotFound("Adjustment request not found")
    if org_id is not None and (req.assignment is None or _org_of_assignment(req.assignment) != org_id):
        raise NotFound("Adjustment request not found")

    claim_pending(ScheduleAdjustmentRequest, request_id, decision, actor.id, manager_comment)
    try:
        if decision == RequestStatus.APPROVED:
            a = req.assignment
            if a is None or a.deleted_at is not None:
                raise ValidationError("Target assignment no longer exists")
            apply_proposal(a, list(req.proposal or []))
            notifications.notify_assignment(a, NotificationType.ASSIGNMENT_UPDATED)
        db.session.commit()
    except APIError:
        db.session.rollback()
        raise

    db.session.refresh(req)
    log.info("adjustment id=%s %s by=%s", req.id, decision, actor.id)
    return req


def list_adjustments(status: Optional[str] = None, user_id: Optional[int] = None,
                     assignment_id: Optional[int] = None, org_id: Optional[int] = None):
    q = ScheduleAdjustmentRequest.query
    if org_id is not None:
        q = (
            q.join(Assignment, Assignment.id == ScheduleAdjustmentRequest.assignment_id)
            .join(Workplace, Workplace.id == Assignment.workplace_id)
            .filter(Workplace.org_id == org_id)
        )
    if status:
        s = status.strip().upper()
        if s not in RequestStatus.ALL:
            raise ValidationError("status must be PENDING, APPROVED or REJECTED")
        q = q.filter(ScheduleAdjustmentRequest.status == s)
    if user_id is not None:
        q = q.filter(ScheduleAdjustmentRequest.user_id == user_id)
    if assignment_id is not None:
        q = q.filter(ScheduleAdjustmentRequest.assignment_id == assignment_id)
    return q.order_by(ScheduleAdjustmentRequest.created_at.desc(), ScheduleAdjustmentRequest.id.desc())


# ---------- new-assignment requests ----------

def submit_assignment_request(data: dict, actor: User) -> AssignmentRequest:
    workplace_id = pick(data, "workplace_id", "workplaceId")
    if not workplace_id:
        raise ValidationError("workplace_id is required")
    w = db.session.get(Workplace, as_int(workplace_id, "workplace_id"))
    if w is None or w.deleted_at is not None or not w.is_active:
        raise NotFound("Workplace not found")
    if actor.org_id is not None and w.org_id is not None and w.org_id != actor.org_id:
        raise NotFound("Workplace not found")

    starts_at = parse_datetime(pick(data, "starts_at", "startsAt"), field="starts_at")
    ends_at = parse_datetime(pick(data, "ends_at", "endsAt"), field="ends_at")
    validate_range(starts_at, ends_at)

    req = AssignmentRequest(
        user_id=actor.id,
        workplace_id=w.id,
        starts_at=starts_at,
        ends_at=ends_at,
        comment=(pick(data, "comment") or None),
        status=RequestStatus.PENDING,
    )
    db.session.add(req)
    db.session.commit()
    log.info("assignment request submitted id=%s user=%s workplace=%s", req.id, actor.id, w.id)
    return req


def _create_from_request(req: AssignmentRequest, overrides: dict, org_id: Optional[int]) -> Assignment:
    """Overrides may change workplace/start/end/shifts; the employee is fixed."""
    wp_id = pick(overrides, "workplace_id", "workplaceId") or req.workplace_id
    raw_start = pick(overrides, "starts_at", "startsAt")
    raw_end = pick(overrides, "ends_at", "endsAt", default=req.ends_at)
    starts_at = parse_datetime(raw_start, field="starts_at") if raw_start else req.starts_at
    ends_at = parse_datetime(raw_end, field="ends_at")
    validate_range(starts_at, ends_at)

    w = assignment_svc.writable_workplace(as_int(wp_id, "workplace_id"), org_id)
    u = assignment_svc.locked_employee(req.user_id, None)
    shifts = assignment_svc.build_shifts(pick(overrides, "shifts"), starts_at, ends_at)

    ensure_no_overlap(u.id, starts_at, ends_at, AssignmentStatus.ACTIVE, assignment_svc.active_assignments_of(u.id))

    a = Assignment(
        user_id=u.id,
        workplace_id=w.id,
        status=AssignmentStatus.ACTIVE,
        starts_at=starts_at,
        ends_at=ends_at,
        comment=req.comment,
    )
    for s in shifts:
        a.shifts.append(s)
    db.session.add(a)
    db.session.flush()
    notifications.notify_assignment(a, NotificationType.ASSIGNMENT_CREATED)
    return a


def decide_assignment_request(request_id: int, decision: str, actor: User, manager_comment: Optional[str] = None,
                              overrides: Optional[dict] = None, org_id: Optional[int] = None) -> AssignmentRequest:
    decision = _decision(decision)
    req = db.session.get(AssignmentRequest, request_id)
    if req is None:
        raise NotFound("Assignment request not found")
    if org_id is not None and (req.workplace is None or req.workplace.org_id != org_id):
        raise NotFound("Assignment request not found")

    claim_pending(AssignmentRequest, request_id, decision, actor.id, manager_comment)
    try:
        if decision == RequestStatus.APPROVED:
            a = _create_from_request(req, overrides or {}, org_id)
            db.session.query(AssignmentRequest).filter(AssignmentRequest.id == request_id).update(
                {AssignmentRequest.created_assignment_id: a.id}, synchronize_session=False
            )
        db.session.commit()
    except APIError:
        db.session.rollback()
        raise

    db.session.refresh(req)
    log.info("assignment request id=%s %s by=%s", req.id, decision, actor.id)
    return req


def list_assignment_requests(status: Optional[str] = None, user_id: Optional[int] = None, org_id: Optional[int] = None):
    q = AssignmentRequest.query
    if org_id is not None:
        q = q.join(Workplace, Workplace.id == AssignmentRequest.workplace_id).filter(Workplace.org_id == org_id)
    if status:
        s = status.strip().upper()
        if s not in RequestStatus.ALL:
            raise ValidationError("status must be PENDING, APPROVED or REJECTED")
        q = q.filter(AssignmentRequest.status == s)
    if user_id is not None:
        q = q.filter(AssignmentRequest.user_id == user_id)
    return q.order_by(AssignmentRequest.created_at.desc(), AssignmentRequest.id.desc())


def requests_of_user(user_id: int) -> dict:
    return {
        "adjustments": [r.to_dict() for r in list_adjustments(user_id=user_id).all()],
        "assignment_requests": [r.to_dict() for r in list_assignment_requests(user_id=user_id).all()],
    }
