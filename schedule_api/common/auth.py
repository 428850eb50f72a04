# schedule_api/common/auth.py
from __future__ import annotations

from functools import wraps
from typing import Set

from flask import g, current_app
from flask_jwt_extended import jwt_required, get_jwt_identity

from schedule_api.common.errors import Forbidden, NotFound, ValidationError
from schedule_api.common.http import fail
from schedule_api.extensions import db
from schedule_api.models.user import User, UserRole


# ---------- capability map ----------

CAP_SCHEDULE_SELF = "schedule.self"
CAP_REQUESTS_SUBMIT = "requests.submit"
CAP_REPORTS_SUBMIT = "reports.submit"
CAP_ASSIGNMENTS_MANAGE = "assignments.manage"
CAP_WORKPLACES_MANAGE = "workplaces.manage"
CAP_REQUESTS_DECIDE = "requests.decide"
CAP_PLANNER_VIEW = "planner.view"
CAP_STATISTICS_VIEW = "statistics.view"
CAP_REPORTS_VIEW = "reports.view"
CAP_FEED_VIEW = "feed.view"
CAP_PLANS_MANAGE = "plans.manage"
CAP_USERS_MANAGE = "users.manage"
CAP_ORGS_MANAGE = "orgs.manage"
CAP_ORG_ALL = "org.all"

_USER_CAPS = {CAP_SCHEDULE_SELF, CAP_REQUESTS_SUBMIT, CAP_REPORTS_SUBMIT}
_MANAGER_CAPS = _USER_CAPS | {
    CAP_ASSIGNMENTS_MANAGE,
    CAP_WORKPLACES_MANAGE,
    CAP_REQUESTS_DECIDE,
    CAP_PLANNER_VIEW,
    CAP_STATISTICS_VIEW,
    CAP_REPORTS_VIEW,
    CAP_FEED_VIEW,
    CAP_PLANS_MANAGE,
}

ROLE_CAPABILITIES = {
    UserRole.USER: frozenset(_USER_CAPS),
    UserRole.MANAGER: frozenset(_MANAGER_CAPS),
    UserRole.SUPER_ADMIN: frozenset(_MANAGER_CAPS | {CAP_USERS_MANAGE, CAP_ORGS_MANAGE, CAP_ORG_ALL}),
}


def caps_for(role: str | None) -> Set[str]:
    return set(ROLE_CAPABILITIES.get(role or "", ()))


# ---------- current user ----------

def _load_user() -> User | None:
    ident = get_jwt_identity()
    if ident is None or not str(ident).isdigit():
        return None
    return db.session.get(User, int(ident))


def current_user() -> User:
    """
    The authenticated user, loaded once per request and cached on flask.g.
    Role is always read from the database so demotions take effect immediately.
    """
    u = getattr(g, "_current_user", None)
    if u is None:
        u = _load_user()
        if u is None or not u.is_active:
            raise Forbidden("Unknown or inactive user", code="AUTH_UNKNOWN_USER")
        g._current_user = u
    return u


def current_caps() -> Set[str]:
    caps = getattr(g, "_cap_cache", None)
    if caps is None:
        caps = caps_for(current_user().role)
        g._cap_cache = caps
    return caps


def has_cap(cap: str) -> bool:
    return cap in current_caps()


# ---------- decorators ----------

def requires_caps(*caps: str):
    """
    Require that the current user holds ANY of the given capabilities.

    Usage:
      @bp.get("/planner/matrix")
      @requires_caps("planner.view")
      def matrix(): ...
    """
    def outer(fn):
        @wraps(fn)
        @jwt_required()
        def inner(*args, **kwargs):
            u = _load_user()
            if u is None or not u.is_active:
                return fail("Unauthorized", status=401, code="AUTH_UNKNOWN_USER")
            g._current_user = u
            g._cap_cache = caps_for(u.role)

            if caps and not any(c in current_caps() for c in caps):
                current_app.logger.warning(
                    "capability deny user=%s role=%s needs=%s",
                    u.email, u.role, ",".join(caps),
                )
                return fail("Forbidden", status=403, code="FORBIDDEN")
            return fn(*args, **kwargs)
        return inner
    return outer


# ---------- org scoping ----------

def org_scope_id() -> int | None:
    """None means every org is visible (SUPER_ADMIN)."""
    if has_cap(CAP_ORG_ALL):
        return None
    oid = current_user().org_id
    if oid is None:
        raise Forbidden("User is not attached to an organization", code="NO_ORG")
    return oid


def scope_query(query, org_column):
    """Restrict a query to the caller's org unless they see every org."""
    oid = org_scope_id()
    if oid is None:
        return query
    return query.filter(org_column == oid)


def ensure_same_org(obj_org_id, what: str = "Resource"):
    """Objects from other orgs are reported as missing, never as forbidden."""
    oid = org_scope_id()
    if oid is not None and obj_org_id != oid:
        raise NotFound(f"{what} not found")


def effective_org_id(requested=None) -> int | None:
    """SUPER_ADMIN may narrow to ?org_id=; everyone else is pinned to their own org."""
    oid = org_scope_id()
    if oid is not None:
        return oid
    if requested in (None, ""):
        return None
    try:
        return int(requested)
    except (TypeError, ValueError):
        raise ValidationError("org_id must be integer")
