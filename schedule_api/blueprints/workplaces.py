# schedule_api/blueprints/workplaces.py
from __future__ import annotations

import re

from flask import Blueprint, request, current_app
from sqlalchemy import or_, asc, desc

from schedule_api.common.auth import (
    CAP_ASSIGNMENTS_MANAGE, CAP_WORKPLACES_MANAGE, CAP_REQUESTS_SUBMIT,
    effective_org_id, ensure_same_org, has_cap, org_scope_id, requires_caps,
)
from schedule_api.common.errors import APIError, NotFound, ValidationError
from schedule_api.common.http import ok, json_body
from schedule_api.common.paging import page_limit, text_q
from schedule_api.common.parsing import as_bool, as_int
from schedule_api.extensions import db
from schedule_api.models.assignment import Assignment, AssignmentStatus
from schedule_api.models.org import Org
from schedule_api.models.workplace import Workplace

bp = Blueprint("workplaces", __name__, url_prefix="/api/v1/workplaces")

_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
_INVALIDATE = ["workplaces", "planner-matrix"]


def _get(wp_id: int) -> Workplace:
    w = db.session.get(Workplace, wp_id)
    if not w or w.deleted_at is not None:
        raise NotFound("Workplace not found")
    ensure_same_org(w.org_id, "Workplace")
    return w


def _color(raw):
    if raw in (None, ""):
        return None
    v = str(raw).strip()
    if not _COLOR.match(v):
        raise ValidationError("color must be a hex value like #4f46e5")
    return v


def _sort_params(allowed: dict):
    raw = (request.args.get("sort") or "").strip()
    out = []
    for part in [p.strip() for p in raw.split(",") if p.strip()]:
        asc_order = not part.startswith("-")
        col = allowed.get(part.lstrip("-"))
        if col is not None:
            out.append((col, asc_order))
    return out


@bp.get("")
@requires_caps(CAP_WORKPLACES_MANAGE, CAP_ASSIGNMENTS_MANAGE, CAP_REQUESTS_SUBMIT)
def list_workplaces():
    qry = Workplace.query.filter(Workplace.deleted_at.is_(None))
    org_id = effective_org_id(request.args.get("org_id"))
    if org_id is not None:
        qry = qry.filter(Workplace.org_id == org_id)

    # employees only ever pick from active workplaces
    is_active = as_bool(request.args.get("is_active"), "is_active")
    if not has_cap(CAP_WORKPLACES_MANAGE):
        is_active = True
    if is_active is not None:
        qry = qry.filter(Workplace.is_active.is_(is_active))

    s = text_q()
    if s:
        like = f"%{s}%"
        qry = qry.filter(or_(Workplace.code.ilike(like), Workplace.name.ilike(like), Workplace.location.ilike(like)))

    allowed = {"id": Workplace.id, "code": Workplace.code, "name": Workplace.name, "created_at": Workplace.created_at}
    sorts = _sort_params(allowed)
    for col, asc_order in sorts:
        qry = qry.order_by(asc(col) if asc_order else desc(col))
    if not sorts:
        qry = qry.order_by(asc(Workplace.code))

    page, size = page_limit()
    total = qry.count()
    items = qry.offset((page - 1) * size).limit(size).all()
    return ok([w.to_dict() for w in items], page=page, size=size, total=total)


@bp.post("")
@requires_caps(CAP_WORKPLACES_MANAGE)
def create_workplace():
    data = json_body()
    code = (data.get("code") or "").strip()
    name = (data.get("name") or "").strip()
    if not code or not name:
        raise ValidationError("code and name are required")

    org_id = org_scope_id()
    if org_id is None:
        org_id = as_int(data.get("org_id") or data.get("orgId"), "org_id")
        if org_id is not None and not db.session.get(Org, org_id):
            raise NotFound("Org not found")

    if Workplace.query.filter_by(org_id=org_id, code=code).first():
        raise APIError("Workplace code already exists", code="DUPLICATE_CODE", status_code=409)

    w = Workplace(
        org_id=org_id,
        code=code,
        name=name,
        location=(data.get("location") or None),
        color=_color(data.get("color")),
        is_active=bool(as_bool(data.get("is_active"), "is_active") if "is_active" in data else True),
    )
    db.session.add(w)
    db.session.commit()
    return ok(w.to_dict(), status=201, invalidate=_INVALIDATE)


@bp.get("/<int:wp_id>")
@requires_caps(CAP_WORKPLACES_MANAGE, CAP_ASSIGNMENTS_MANAGE)
def get_workplace(wp_id: int):
    return ok(_get(wp_id).to_dict())


@bp.patch("/<int:wp_id>")
@requires_caps(CAP_WORKPLACES_MANAGE)
def update_workplace(wp_id: int):
    w = _get(wp_id)
    data = json_body()
    if "code" in data:
        code = (data.get("code") or "").strip()
        if not code:
            raise ValidationError("code must not be empty")
        clash = Workplace.query.filter(
            Workplace.org_id == w.org_id, Workplace.code == code, Workplace.id != w.id
        ).first()
        if clash:
            raise APIError("Workplace code already exists", code="DUPLICATE_CODE", status_code=409)
        w.code = code
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name must not be empty")
        w.name = name
    if "location" in data:
        w.location = data.get("location") or None
    if "color" in data:
        w.color = _color(data.get("color"))
    if "is_active" in data:
        w.is_active = bool(as_bool(data.get("is_active"), "is_active"))
    db.session.commit()
    return ok(w.to_dict(), invalidate=_INVALIDATE)


@bp.delete("/<int:wp_id>")
@requires_caps(CAP_WORKPLACES_MANAGE)
def delete_workplace(wp_id: int):
    """Refused while ACTIVE assignments point here; otherwise soft delete."""
    w = _get(wp_id)
    active = Assignment.query.filter(
        Assignment.workplace_id == w.id,
        Assignment.status == AssignmentStatus.ACTIVE,
        Assignment.deleted_at.is_(None),
    ).count()
    if active:
        raise APIError(
            "Workplace still has active assignments; complete or reassign them first",
            code="WORKPLACE_IN_USE",
            status_code=409,
            payload={"active_assignments": active},
        )
    w.soft_delete()
    db.session.commit()
    current_app.logger.info("workplace %s soft-deleted", w.id)
    return ok({"id": w.id, "deleted": True}, invalidate=_INVALIDATE)
