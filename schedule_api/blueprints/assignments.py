# schedule_api/blueprints/assignments.py
from __future__ import annotations

from datetime import datetime

from flask import Blueprint, request

from schedule_api.common.auth import CAP_ASSIGNMENTS_MANAGE, effective_org_id, requires_caps
from schedule_api.common.errors import NotFound, ValidationError
from schedule_api.common.http import ok, json_body, send_xlsx
from schedule_api.common.paging import page_limit, text_q
from schedule_api.common.parsing import as_int, parse_bound
from schedule_api.extensions import db
from schedule_api.models.user import User
from schedule_api.services import assignments as svc
from schedule_api.services.export import trash_workbook

bp = Blueprint("assignments", __name__, url_prefix="/api/v1/assignments")

_INVALIDATE = ["assignments", "planner-matrix", "my-schedule", "statistics"]
_INVALIDATE_TRASH = ["assignments", "assignments-trash", "planner-matrix", "statistics"]


def _org():
    return effective_org_id(request.args.get("org_id"))


def _list(trashed: bool):
    qry = svc.list_assignments(
        trashed=trashed,
        user_id=as_int(request.args.get("user_id") or request.args.get("userId"), "user_id"),
        workplace_id=as_int(request.args.get("workplace_id") or request.args.get("workplaceId"), "workplace_id"),
        status=request.args.get("status"),
        date_from=parse_bound(request.args.get("from"), "from"),
        date_to=parse_bound(request.args.get("to"), "to", end=True),
        org_id=_org(),
        q=text_q(),
    )
    page, size = page_limit()
    total = qry.count()
    items = qry.offset((page - 1) * size).limit(size).all()
    return ok([a.to_dict() for a in items], page=page, size=size, total=total)


def _ids():
    ids = json_body().get("ids")
    if not isinstance(ids, list) or not ids:
        raise ValidationError("ids must be a non-empty list")
    return [as_int(i, "ids") for i in ids]


@bp.get("")
@requires_caps(CAP_ASSIGNMENTS_MANAGE)
def list_assignments():
    return _list(trashed=False)


@bp.post("")
@requires_caps(CAP_ASSIGNMENTS_MANAGE)
def create_assignment():
    a, adv = svc.create_assignment(json_body(), org_id=_org())
    return ok(a.to_dict(), status=201, invalidate=_INVALIDATE, advisory=adv)


@bp.get("/active-count")
@requires_caps(CAP_ASSIGNMENTS_MANAGE)
def active_count():
    """Advisory: how many ACTIVE assignments the employee already holds."""
    user_id = as_int(request.args.get("user_id") or request.args.get("userId"), "user_id")
    if user_id is None:
        raise ValidationError("user_id is required")
    u = db.session.get(User, user_id)
    org_id = _org()
    if u is None or (org_id is not None and u.org_id != org_id):
        raise NotFound("User not found")
    return ok(svc.advisory(user_id))


# ---------- trash ----------

@bp.get("/trash")
@requires_caps(CAP_ASSIGNMENTS_MANAGE)
def list_trash():
    return _list(trashed=True)


@bp.post("/trash/delete")
@requires_caps(CAP_ASSIGNMENTS_MANAGE)
def purge_trash():
    n = svc.purge(_ids(), org_id=_org())
    return ok({"deleted_count": n}, invalidate=_INVALIDATE_TRASH)


@bp.post("/trash/export")
@requires_caps(CAP_ASSIGNMENTS_MANAGE)
def export_trash():
    rows = svc.trashed_by_ids(_ids(), org_id=_org())
    stamp = datetime.utcnow().strftime("%Y%m%d-%H%M")
    return send_xlsx(trash_workbook(rows), f"assignments-trash-{stamp}.xlsx")


@bp.post("/trash/export-and-delete")
@requires_caps(CAP_ASSIGNMENTS_MANAGE)
def export_and_purge_trash():
    ids = _ids()
    org_id = _org()
    content = trash_workbook(svc.trashed_by_ids(ids, org_id=org_id))
    svc.purge(ids, org_id=org_id)
    stamp = datetime.utcnow().strftime("%Y%m%d-%H%M")
    return send_xlsx(content, f"assignments-trash-{stamp}.xlsx")


# ---------- single assignment ----------

@bp.get("/<int:assignment_id>")
@requires_caps(CAP_ASSIGNMENTS_MANAGE)
def get_assignment(assignment_id: int):
    return ok(svc.get_assignment(assignment_id, _org(), trashed=None).to_dict())


@bp.patch("/<int:assignment_id>")
@requires_caps(CAP_ASSIGNMENTS_MANAGE)
def update_assignment(assignment_id: int):
    a, adv = svc.update_assignment(assignment_id, json_body(), org_id=_org())
    return ok(a.to_dict(), invalidate=_INVALIDATE, advisory=adv)


@bp.post("/<int:assignment_id>/complete")
@requires_caps(CAP_ASSIGNMENTS_MANAGE)
def complete_assignment(assignment_id: int):
    a = svc.complete_assignment(assignment_id, _org())
    return ok(a.to_dict(), invalidate=_INVALIDATE)


@bp.delete("/<int:assignment_id>")
@requires_caps(CAP_ASSIGNMENTS_MANAGE)
def trash_assignment(assignment_id: int):
    a = svc.soft_delete(assignment_id, _org())
    return ok({"id": a.id, "trashed": True}, invalidate=_INVALIDATE_TRASH)


@bp.post("/<int:assignment_id>/restore")
@requires_caps(CAP_ASSIGNMENTS_MANAGE)
def restore_assignment(assignment_id: int):
    a = svc.restore(assignment_id, _org())
    return ok(a.to_dict(), invalidate=_INVALIDATE_TRASH, advisory=svc.advisory(a.user_id))


@bp.post("/<int:assignment_id>/notify")
@requires_caps(CAP_ASSIGNMENTS_MANAGE)
def resend_notification(assignment_id: int):
    n = svc.resend_notification(assignment_id, _org())
    return ok({"notified": n}, invalidate=["feed"])
