from flask import Blueprint, current_app
from flask_jwt_extended import (
    create_access_token, create_refresh_token,
    jwt_required, get_jwt_identity
)

from schedule_api.common.auth import caps_for
from schedule_api.common.http import ok, fail, json_body
from schedule_api.extensions import db
from schedule_api.models.user import User

bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


def _claims(u: User) -> dict:
    return {"role": u.role, "org_id": u.org_id, "email": u.email, "name": u.full_name}


def _user_payload(u: User):
    d = u.to_dict()
    d["capabilities"] = sorted(caps_for(u.role))
    return d


@bp.post("/login")
def login():
    data = json_body()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    u = User.query.filter_by(email=email).first()
    if not u or not u.check_password(password):
        current_app.logger.info("login failed email=%s", email)
        return fail("Invalid credentials", status=401, code="INVALID_CREDENTIALS")
    if not u.is_active:
        return fail("Account is disabled", status=403, code="ACCOUNT_DISABLED")

    access = create_access_token(identity=str(u.id), additional_claims=_claims(u))
    refresh = create_refresh_token(identity=str(u.id), additional_claims={"role": u.role})
    return ok({"access": access, "refresh": refresh, "user": _user_payload(u)})


@bp.post("/refresh")
@jwt_required(refresh=True)
def refresh():
    uid = get_jwt_identity()
    u = db.session.get(User, int(uid)) if uid and str(uid).isdigit() else None
    if not u or not u.is_active:
        return fail("Unauthorized", status=401)
    new_access = create_access_token(identity=str(u.id), additional_claims=_claims(u))
    return ok({"access": new_access})


@bp.get("/me")
@jwt_required()
def me():
    uid = get_jwt_identity()
    u = db.session.get(User, int(uid)) if uid and str(uid).isdigit() else None
    if not u:
        return fail("User not found", status=404)
    return ok(_user_payload(u))
