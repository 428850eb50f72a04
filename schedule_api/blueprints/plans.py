# schedule_api/blueprints/plans.py
from __future__ import annotations

from flask import Blueprint, request

from schedule_api.common.auth import CAP_PLANS_MANAGE, effective_org_id, org_scope_id, requires_caps
from schedule_api.common.errors import NotFound
from schedule_api.common.http import ok, json_body
from schedule_api.common.paging import page_limit
from schedule_api.common.parsing import as_int, parse_bound, pick
from schedule_api.extensions import db
from schedule_api.models.org import Org
from schedule_api.services import plans as svc

bp = Blueprint("plans", __name__, url_prefix="/api/v1/plans")

_INVALIDATE = ["plans"]
_INVALIDATE_SLOTS = ["plans", "plan-slots", "my-schedule"]


def _org():
    return effective_org_id(request.args.get("org_id"))


@bp.get("")
@requires_caps(CAP_PLANS_MANAGE)
def list_plans():
    qry = svc.list_plans(
        org_id=_org(),
        status=request.args.get("status"),
        date_from=parse_bound(request.args.get("from"), "from"),
        date_to=parse_bound(request.args.get("to"), "to", end=True),
    )
    page, size = page_limit()
    total = qry.count()
    items = qry.offset((page - 1) * size).limit(size).all()
    counts = svc.slot_counts(p.id for p in items)
    data = [dict(p.to_dict(), slots_count=counts.get(p.id, 0)) for p in items]
    return ok(data, page=page, size=size, total=total)


@bp.post("")
@requires_caps(CAP_PLANS_MANAGE)
def create_plan():
    data = json_body()
    org_id = org_scope_id()
    if org_id is None:
        org_id = as_int(pick(data, "org_id", "orgId"), "org_id")
        if org_id is not None and not db.session.get(Org, org_id):
            raise NotFound("Org not found")
    p = svc.create_plan(data, org_id)
    return ok(p.to_dict(), status=201, invalidate=_INVALIDATE)


@bp.get("/<int:plan_id>")
@requires_caps(CAP_PLANS_MANAGE)
def get_plan(plan_id: int):
    """Plan header plus one page of its slots (default 50 per page)."""
    p = svc.get_plan(plan_id, _org())
    qry = svc.slots_of(p)
    page, size = page_limit(max_size=200, default_size=50)
    total = qry.count()
    slots = qry.offset((page - 1) * size).limit(size).all()
    return ok({"plan": p.to_dict(), "slots": [s.to_dict() for s in slots]}, page=page, size=size, total=total)


@bp.patch("/<int:plan_id>/publish")
@requires_caps(CAP_PLANS_MANAGE)
def publish_plan(plan_id: int):
    return ok(svc.publish_plan(plan_id, _org()).to_dict(), invalidate=_INVALIDATE_SLOTS)


@bp.patch("/<int:plan_id>/archive")
@requires_caps(CAP_PLANS_MANAGE)
def archive_plan(plan_id: int):
    return ok(svc.archive_plan(plan_id, _org()).to_dict(), invalidate=_INVALIDATE_SLOTS)


@bp.delete("/<int:plan_id>")
@requires_caps(CAP_PLANS_MANAGE)
def delete_plan(plan_id: int):
    pid = svc.delete_plan(plan_id, _org())
    return ok({"id": pid, "deleted": True}, invalidate=_INVALIDATE_SLOTS)


# ---------- slots ----------

@bp.post("/<int:plan_id>/slots/bulk-assign")
@requires_caps(CAP_PLANS_MANAGE)
def bulk_assign(plan_id: int):
    slots = svc.bulk_assign(plan_id, json_body(), _org())
    return ok([s.to_dict() for s in slots], status=201, invalidate=_INVALIDATE_SLOTS)


@bp.post("/<int:plan_id>/slots/auto-assign")
@requires_caps(CAP_PLANS_MANAGE)
def auto_assign(plan_id: int):
    slots = svc.auto_assign(plan_id, json_body(), _org())
    return ok([s.to_dict() for s in slots], status=201, invalidate=_INVALIDATE_SLOTS)


@bp.patch("/<int:plan_id>/slots/bulk-move")
@requires_caps(CAP_PLANS_MANAGE)
def bulk_move(plan_id: int):
    slots = svc.bulk_move(plan_id, json_body(), _org())
    return ok([s.to_dict() for s in slots], invalidate=_INVALIDATE_SLOTS)


@bp.patch("/<int:plan_id>/slots/<int:slot_id>")
@requires_caps(CAP_PLANS_MANAGE)
def update_slot(plan_id: int, slot_id: int):
    s = svc.update_slot(plan_id, slot_id, json_body(), _org())
    return ok(s.to_dict(), invalidate=_INVALIDATE_SLOTS)


@bp.delete("/<int:plan_id>/slots/<int:slot_id>")
@requires_caps(CAP_PLANS_MANAGE)
def delete_slot(plan_id: int, slot_id: int):
    sid = svc.delete_slot(plan_id, slot_id, _org())
    return ok({"id": sid, "deleted": True}, invalidate=_INVALIDATE_SLOTS)


# ---------- constraints ----------

@bp.get("/constraints")
@requires_caps(CAP_PLANS_MANAGE)
def list_constraints():
    return ok([c.to_dict() for c in svc.list_constraints(_org())])


@bp.post("/constraints")
@requires_caps(CAP_PLANS_MANAGE)
def upsert_constraint():
    data = json_body()
    org_id = org_scope_id()
    if org_id is None:
        org_id = as_int(pick(data, "org_id", "orgId"), "org_id")
    c = svc.upsert_constraint(data, org_id)
    return ok(c.to_dict(), status=200 if pick(data, "id") else 201, invalidate=["plan-constraints"])
