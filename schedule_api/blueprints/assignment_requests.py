# schedule_api/blueprints/assignment_requests.py
from __future__ import annotations

from flask import Blueprint, request, current_app

from schedule_api.common.auth import (
    CAP_REQUESTS_DECIDE, CAP_REQUESTS_SUBMIT, current_user, effective_org_id, requires_caps,
)
from schedule_api.common.http import ok, json_body
from schedule_api.common.paging import page_limit
from schedule_api.common.parsing import as_int
from schedule_api.models.requests import RequestStatus
from schedule_api.services import approvals

bp = Blueprint("assignment_requests", __name__, url_prefix="/api/v1/assignment-requests")

_INVALIDATE = ["assignment-requests", "my-requests"]
_INVALIDATE_APPLIED = _INVALIDATE + ["assignments", "planner-matrix", "my-schedule", "statistics"]


@bp.post("")
@requires_caps(CAP_REQUESTS_SUBMIT)
def submit_request():
    req = approvals.submit_assignment_request(json_body(), current_user())
    return ok(req.to_dict(), status=201, invalidate=_INVALIDATE)


@bp.get("")
@requires_caps(CAP_REQUESTS_DECIDE)
def list_requests():
    qry = approvals.list_assignment_requests(
        status=request.args.get("status"),
        user_id=as_int(request.args.get("user_id") or request.args.get("userId"), "user_id"),
        org_id=effective_org_id(request.args.get("org_id")),
    )
    page, size = page_limit()
    total = qry.count()
    items = qry.offset((page - 1) * size).limit(size).all()
    return ok([r.to_dict() for r in items], page=page, size=size, total=total)


@bp.post("/<int:request_id>/approve")
@requires_caps(CAP_REQUESTS_DECIDE)
def approve_request(request_id: int):
    """Body may override workplace_id / starts_at / ends_at / shifts of the new assignment."""
    data = json_body()
    req = approvals.decide_assignment_request(
        request_id,
        RequestStatus.APPROVED,
        current_user(),
        manager_comment=(data.get("manager_comment") or data.get("managerComment") or None),
        overrides=data,
        org_id=effective_org_id(),
    )
    current_app.logger.info("assignment request %s approved -> assignment %s", request_id, req.created_assignment_id)
    return ok(req.to_dict(), invalidate=_INVALIDATE_APPLIED)


@bp.post("/<int:request_id>/reject")
@requires_caps(CAP_REQUESTS_DECIDE)
def reject_request(request_id: int):
    data = json_body()
    req = approvals.decide_assignment_request(
        request_id,
        RequestStatus.REJECTED,
        current_user(),
        manager_comment=(data.get("manager_comment") or data.get("managerComment") or None),
        org_id=effective_org_id(),
    )
    return ok(req.to_dict(), invalidate=_INVALIDATE)
