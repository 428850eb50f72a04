# schedule_api/blueprints/users.py
from __future__ import annotations

from flask import Blueprint, request
from sqlalchemy import or_

from schedule_api.common.auth import (
    CAP_ASSIGNMENTS_MANAGE, CAP_USERS_MANAGE, effective_org_id, requires_caps, scope_query,
)
from schedule_api.common.errors import NotFound, ValidationError
from schedule_api.common.http import ok, json_body
from schedule_api.common.paging import page_limit, text_q
from schedule_api.common.parsing import as_bool, as_int
from schedule_api.extensions import db
from schedule_api.models.org import Org
from schedule_api.models.user import User, UserRole

bp = Blueprint("users", __name__, url_prefix="/api/v1/users")

MIN_PASSWORD = 6
_EDITABLE = ("full_name", "position", "phone")


def _get(user_id: int) -> User:
    u = scope_query(User.query, User.org_id).filter(User.id == user_id).first()
    if not u:
        raise NotFound("User not found")
    return u


def _role(raw) -> str:
    v = (raw or UserRole.USER).strip().upper()
    if v not in UserRole.ALL:
        raise ValidationError(f"role must be one of {', '.join(UserRole.ALL)}")
    return v


def _org(raw):
    oid = as_int(raw, "org_id")
    if oid is not None and not db.session.get(Org, oid):
        raise NotFound("Org not found")
    return oid


@bp.get("")
@requires_caps(CAP_USERS_MANAGE, CAP_ASSIGNMENTS_MANAGE)
def list_users():
    qry = User.query
    org_id = effective_org_id(request.args.get("org_id"))
    if org_id is not None:
        qry = qry.filter(User.org_id == org_id)

    role = request.args.get("role")
    if role:
        qry = qry.filter(User.role == _role(role))
    active = as_bool(request.args.get("is_active"), "is_active")
    if active is not None:
        qry = qry.filter(User.is_active.is_(active))

    s = text_q()
    if s:
        like = f"%{s}%"
        qry = qry.filter(or_(User.full_name.ilike(like), User.email.ilike(like), User.position.ilike(like)))

    page, size = page_limit()
    total = qry.count()
    items = qry.order_by(User.full_name.asc(), User.id.asc()).offset((page - 1) * size).limit(size).all()
    return ok([u.to_dict() for u in items], page=page, size=size, total=total)


@bp.post("")
@requires_caps(CAP_USERS_MANAGE)
def create_user():
    data = json_body()
    email = (data.get("email") or "").strip().lower()
    full_name = (data.get("full_name") or data.get("fullName") or "").strip()
    password = data.get("password") or ""
    if not email or "@" not in email:
        raise ValidationError("valid email is required")
    if not full_name:
        raise ValidationError("full_name is required")
    if len(password) < MIN_PASSWORD:
        raise ValidationError(f"password must be at least {MIN_PASSWORD} characters")
    if User.query.filter_by(email=email).first():
        raise ValidationError("email already registered", code="EMAIL_TAKEN", status_code=409)

    u = User(
        email=email,
        full_name=full_name,
        position=(data.get("position") or None),
        phone=(data.get("phone") or None),
        role=_role(data.get("role")),
        org_id=_org(data.get("org_id") or data.get("orgId")),
        is_active=True,
    )
    u.set_password(password)
    db.session.add(u)
    db.session.commit()
    return ok(u.to_dict(), status=201, invalidate=["users"])


@bp.get("/<int:user_id>")
@requires_caps(CAP_USERS_MANAGE)
def get_user(user_id: int):
    return ok(_get(user_id).to_dict())


@bp.patch("/<int:user_id>")
@requires_caps(CAP_USERS_MANAGE)
def update_user(user_id: int):
    u = _get(user_id)
    data = json_body()
    for f in _EDITABLE:
        if f in data:
            setattr(u, f, (data.get(f) or None) if f != "full_name" else (data.get(f) or "").strip() or u.full_name)
    if "role" in data:
        u.role = _role(data.get("role"))
    if "org_id" in data:
        u.org_id = _org(data.get("org_id"))
    if "is_active" in data:
        u.is_active = bool(as_bool(data.get("is_active"), "is_active"))
    if data.get("password"):
        if len(data["password"]) < MIN_PASSWORD:
            raise ValidationError(f"password must be at least {MIN_PASSWORD} characters")
        u.set_password(data["password"])
    db.session.commit()
    return ok(u.to_dict(), invalidate=["users"])


@bp.delete("/<int:user_id>")
@requires_caps(CAP_USERS_MANAGE)
def deactivate_user(user_id: int):
    """Accounts are never hard-deleted; assignments and reports keep their owner."""
    u = _get(user_id)
    u.is_active = False
    db.session.commit()
    return ok({"id": u.id, "is_active": False}, invalidate=["users"])
