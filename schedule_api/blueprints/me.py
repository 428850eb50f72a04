# schedule_api/blueprints/me.py
from __future__ import annotations

from flask import Blueprint, request

from schedule_api.common.auth import (
    CAP_REPORTS_SUBMIT, CAP_SCHEDULE_SELF, CAP_REQUESTS_SUBMIT, current_user, requires_caps,
)
from schedule_api.common.errors import ValidationError
from schedule_api.common.http import ok, json_body
from schedule_api.common.parsing import as_bool, as_int, parse_bound, parse_date_any
from schedule_api.extensions import db
from schedule_api.services import approvals, notifications, planner, plans, work_reports
from schedule_api.services import assignments as assignment_svc

bp = Blueprint("me", __name__, url_prefix="/api/v1/me")

MIN_PASSWORD = 6


@bp.get("")
@requires_caps(CAP_SCHEDULE_SELF)
def profile():
    return ok(current_user().to_dict())


@bp.patch("")
@requires_caps(CAP_SCHEDULE_SELF)
def update_profile():
    u = current_user()
    data = json_body()
    if "full_name" in data:
        name = (data.get("full_name") or "").strip()
        if not name:
            raise ValidationError("full_name must not be empty")
        u.full_name = name
    if "phone" in data:
        u.phone = data.get("phone") or None
    db.session.commit()
    return ok(u.to_dict())


@bp.patch("/password")
@requires_caps(CAP_SCHEDULE_SELF)
def change_password():
    u = current_user()
    data = json_body()
    if not u.check_password(data.get("current_password") or ""):
        raise ValidationError("current password is incorrect", code="BAD_PASSWORD")
    new = data.get("new_password") or ""
    if len(new) < MIN_PASSWORD:
        raise ValidationError(f"new_password must be at least {MIN_PASSWORD} characters")
    u.set_password(new)
    db.session.commit()
    return ok({"changed": True})


@bp.get("/current-workplace")
@requires_caps(CAP_SCHEDULE_SELF)
def current_workplace():
    u = current_user()
    a = assignment_svc.current_for_user(u.id)
    history = assignment_svc.history_for_user(u.id, take=as_int(request.args.get("history"), "history") or 10)
    return ok({
        "current": a.to_dict() if a else None,
        "workplace": a.workplace.meta() if a and a.workplace else None,
        "history": [h.to_dict(with_shifts=False) for h in history],
    })


@bp.get("/schedule")
@requires_caps(CAP_SCHEDULE_SELF)
def my_schedule():
    d_from = parse_bound(request.args.get("from"), "from")
    d_to = parse_bound(request.args.get("to"), "to", end=True)
    statuses = planner.normalize_statuses(request.args.get("status"))
    return ok(planner.personal_schedule(current_user(), d_from, d_to, statuses=statuses))


# ---------- plan slots ----------

@bp.patch("/slots/<int:slot_id>/confirm")
@requires_caps(CAP_SCHEDULE_SELF)
def confirm_slot(slot_id: int):
    s = plans.confirm_slot(current_user().id, slot_id)
    return ok(s.to_dict(), invalidate=["my-schedule", "plan-slots"])


@bp.post("/slots/<int:slot_id>/request-swap")
@requires_caps(CAP_REQUESTS_SUBMIT)
def request_slot_swap(slot_id: int):
    s = plans.request_swap(current_user().id, slot_id, json_body())
    return ok(s.to_dict(), invalidate=["my-schedule", "plan-slots"])


# ---------- work reports ----------

@bp.post("/work-reports")
@requires_caps(CAP_REPORTS_SUBMIT)
def submit_work_report():
    data = json_body()
    row = work_reports.upsert(current_user().id, data.get("date"), data.get("hours"))
    return ok(row.to_dict(), status=201, invalidate=["work-reports", "statistics"])


@bp.get("/work-reports")
@requires_caps(CAP_REPORTS_SUBMIT)
def my_work_reports():
    rows = work_reports.list_reports(
        user_id=current_user().id,
        date_from=parse_date_any(request.args.get("from")),
        date_to=parse_date_any(request.args.get("to")),
    ).all()
    return ok([r.to_dict() for r in rows], total_hours=work_reports.total_hours(rows))


# ---------- requests & notifications ----------

@bp.get("/requests")
@requires_caps(CAP_REQUESTS_SUBMIT)
def my_requests():
    return ok(approvals.requests_of_user(current_user().id))


@bp.get("/notifications")
@requires_caps(CAP_SCHEDULE_SELF)
def my_notifications():
    take = min(max(as_int(request.args.get("take"), "take") or 20, 1), 100)
    unread = bool(as_bool(request.args.get("unread"), "unread"))
    rows = notifications.list_for_user(current_user().id, take=take, unread_only=unread)
    return ok([n.to_dict() for n in rows])


@bp.post("/notifications/read")
@requires_caps(CAP_SCHEDULE_SELF)
def mark_notifications_read():
    ids = json_body().get("ids")
    if ids is not None and not isinstance(ids, list):
        raise ValidationError("ids must be a list")
    n = notifications.mark_read(current_user().id, ids)
    return ok({"updated": n}, invalidate=["notifications"])
