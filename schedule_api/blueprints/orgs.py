# schedule_api/blueprints/orgs.py
from __future__ import annotations

import re

from flask import Blueprint, current_app
from sqlalchemy import or_

from schedule_api.common.auth import CAP_ORGS_MANAGE, current_user, requires_caps
from schedule_api.common.errors import APIError, NotFound, ValidationError
from schedule_api.common.http import ok, json_body
from schedule_api.common.paging import page_limit, text_q
from schedule_api.extensions import db
from schedule_api.models.org import Org
from schedule_api.models.plan import Plan
from schedule_api.models.user import User
from schedule_api.models.workplace import Workplace

bp = Blueprint("orgs", __name__, url_prefix="/api/v1/orgs")

_SLUG = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
_INVALIDATE = ["orgs", "users", "workplaces"]


def _get(org_id: int) -> Org:
    o = db.session.get(Org, org_id)
    if not o:
        raise NotFound("Org not found")
    return o


def _slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def _slug(raw, exclude_id=None) -> str:
    v = (raw or "").strip().lower()
    if not v or len(v) > 80 or not _SLUG.match(v):
        raise ValidationError("slug must be lowercase letters, digits and dashes")
    clash = Org.query.filter(Org.slug == v)
    if exclude_id is not None:
        clash = clash.filter(Org.id != exclude_id)
    if clash.first():
        raise APIError("Org slug already exists", code="DUPLICATE_SLUG", status_code=409)
    return v


def _timezone(raw) -> str:
    v = (raw or "UTC").strip()
    if len(v) > 64:
        raise ValidationError("timezone must be at most 64 characters")
    return v


def _row(o: Org, counts: bool = False):
    d = o.to_dict()
    d["created_at"] = o.created_at.isoformat() if o.created_at else None
    if counts:
        d["users_count"] = User.query.filter(User.org_id == o.id).count()
        d["workplaces_count"] = Workplace.query.filter(
            Workplace.org_id == o.id, Workplace.deleted_at.is_(None)
        ).count()
    return d


@bp.get("")
@requires_caps(CAP_ORGS_MANAGE)
def list_orgs():
    qry = Org.query
    s = text_q()
    if s:
        like = f"%{s}%"
        qry = qry.filter(or_(Org.name.ilike(like), Org.slug.ilike(like)))
    page, size = page_limit()
    total = qry.count()
    items = qry.order_by(Org.name.asc(), Org.id.asc()).offset((page - 1) * size).limit(size).all()
    return ok([_row(o) for o in items], page=page, size=size, total=total)


@bp.get("/<int:org_id>")
@requires_caps(CAP_ORGS_MANAGE)
def get_org(org_id: int):
    return ok(_row(_get(org_id), counts=True))


@bp.post("")
@requires_caps(CAP_ORGS_MANAGE)
def create_org():
    data = json_body()
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required")
    o = Org(
        name=name,
        slug=_slug(data.get("slug") or _slugify(name)),
        timezone=_timezone(data.get("timezone")),
    )
    db.session.add(o)
    db.session.commit()
    return ok(_row(o), status=201, invalidate=_INVALIDATE)


@bp.patch("/<int:org_id>")
@requires_caps(CAP_ORGS_MANAGE)
def update_org(org_id: int):
    o = _get(org_id)
    data = json_body()
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name must not be empty")
        o.name = name
    if "slug" in data:
        o.slug = _slug(data.get("slug"), exclude_id=o.id)
    if "timezone" in data:
        o.timezone = _timezone(data.get("timezone"))
    db.session.commit()
    return ok(_row(o), invalidate=_INVALIDATE)


@bp.delete("/<int:org_id>")
@requires_caps(CAP_ORGS_MANAGE)
def delete_org(org_id: int):
    """Only empty orgs go; move or remove their people, workplaces and plans first."""
    o = _get(org_id)
    if current_user().org_id == o.id:
        raise ValidationError("You cannot delete your own org", code="ORG_IN_USE")
    in_use = {
        "users": User.query.filter(User.org_id == o.id).count(),
        "workplaces": Workplace.query.filter(Workplace.org_id == o.id).count(),
        "plans": Plan.query.filter(Plan.org_id == o.id).count(),
    }
    if any(in_use.values()):
        raise APIError("Org still has users, workplaces or plans", code="ORG_IN_USE",
                       status_code=409, payload=in_use)
    db.session.delete(o)
    db.session.commit()
    current_app.logger.info("org %s deleted", org_id)
    return ok({"id": org_id, "deleted": True}, invalidate=_INVALIDATE)
