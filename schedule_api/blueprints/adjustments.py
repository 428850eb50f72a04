# schedule_api/blueprints/adjustments.py
from __future__ import annotations

from flask import Blueprint, request, current_app

from schedule_api.common.auth import (
    CAP_ASSIGNMENTS_MANAGE, CAP_REQUESTS_DECIDE, CAP_REQUESTS_SUBMIT,
    current_user, effective_org_id, has_cap, requires_caps,
)
from schedule_api.common.http import ok, json_body
from schedule_api.common.paging import page_limit
from schedule_api.common.parsing import as_int
from schedule_api.models.requests import RequestStatus
from schedule_api.services import approvals

bp = Blueprint("adjustments", __name__, url_prefix="/api/v1")

_INVALIDATE = ["schedule-adjustments", "my-requests"]
_INVALIDATE_APPLIED = _INVALIDATE + ["assignments", "planner-matrix", "my-schedule", "statistics"]


@bp.post("/assignments/<int:assignment_id>/adjustments")
@requires_caps(CAP_REQUESTS_SUBMIT)
def submit_adjustment(assignment_id: int):
    req = approvals.submit_adjustment(
        assignment_id, json_body(), current_user(), can_manage=has_cap(CAP_ASSIGNMENTS_MANAGE)
    )
    return ok(req.to_dict(), status=201, invalidate=_INVALIDATE)


@bp.get("/adjustments")
@requires_caps(CAP_REQUESTS_DECIDE)
def list_adjustments():
    qry = approvals.list_adjustments(
        status=request.args.get("status"),
        user_id=as_int(request.args.get("user_id") or request.args.get("userId"), "user_id"),
        assignment_id=as_int(request.args.get("assignment_id") or request.args.get("assignmentId"), "assignment_id"),
        org_id=effective_org_id(request.args.get("org_id")),
    )
    page, size = page_limit()
    total = qry.count()
    items = qry.offset((page - 1) * size).limit(size).all()
    return ok([r.to_dict() for r in items], page=page, size=size, total=total)


def _decide(adjustment_id: int, decision: str):
    data = json_body()
    req = approvals.decide_adjustment(
        adjustment_id,
        decision,
        current_user(),
        manager_comment=(data.get("manager_comment") or data.get("managerComment") or None),
        org_id=effective_org_id(),
    )
    current_app.logger.info("adjustment %s -> %s", adjustment_id, decision)
    return ok(req.to_dict(), invalidate=_INVALIDATE_APPLIED if decision == RequestStatus.APPROVED else _INVALIDATE)


@bp.post("/adjustments/<int:adjustment_id>/approve")
@requires_caps(CAP_REQUESTS_DECIDE)
def approve_adjustment(adjustment_id: int):
    return _decide(adjustment_id, RequestStatus.APPROVED)


@bp.post("/adjustments/<int:adjustment_id>/reject")
@requires_caps(CAP_REQUESTS_DECIDE)
def reject_adjustment(adjustment_id: int):
    return _decide(adjustment_id, RequestStatus.REJECTED)
