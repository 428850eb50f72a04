# schedule_api/blueprints/planner.py
from __future__ import annotations

from flask import Blueprint, request, current_app

from schedule_api.common.auth import CAP_PLANNER_VIEW, effective_org_id, requires_caps
from schedule_api.common.http import ok, send_xlsx
from schedule_api.common.paging import page_limit
from schedule_api.common.parsing import as_bool, as_int, parse_bound
from schedule_api.services import planner
from schedule_api.services.export import planner_workbook

bp = Blueprint("planner", __name__, url_prefix="/api/v1/planner")


def _filters():
    return dict(
        date_from=parse_bound(request.args.get("from"), "from"),
        date_to=parse_bound(request.args.get("to"), "to", end=True),
        statuses=planner.normalize_statuses(request.args.get("status")),
        user_id=as_int(request.args.get("user_id") or request.args.get("userId"), "user_id"),
        workplace_id=as_int(request.args.get("workplace_id") or request.args.get("workplaceId"), "workplace_id"),
        org_id=effective_org_id(request.args.get("org_id") or request.args.get("orgId")),
    )


@bp.get("/matrix")
@requires_caps(CAP_PLANNER_VIEW)
def matrix():
    """
    Calendar rows for the planner grid.

    Query: mode=by_employee|by_workplace, from, to (optional; defaults to the
    span of matching assignments), status=ACTIVE|ARCHIVED|ALL, page, size,
    user_id, workplace_id, include_empty (by_workplace only).
    """
    mode = planner.normalize_mode(request.args.get("mode"))
    page, size = page_limit(max_size=current_app.config.get("PLANNER_MAX_PAGE_SIZE", 200))
    data = planner.get_matrix(
        mode=mode,
        page=page,
        page_size=size,
        include_empty=bool(as_bool(request.args.get("include_empty"), "include_empty")),
        **_filters(),
    )
    return ok(data)


@bp.get("/export")
@requires_caps(CAP_PLANNER_VIEW)
def export():
    mode = planner.normalize_mode(request.args.get("mode"))
    f = _filters()
    records = planner.collect_assignments(
        f["date_from"], f["date_to"], f["statuses"], f["user_id"], f["workplace_id"], f["org_id"]
    )
    w_from, w_to = planner.resolve_window(f["date_from"], f["date_to"], records)
    if mode == planner.MODE_WORKPLACE:
        records.sort(key=lambda a: ((a.workplace.code if a.workplace else ""), a.starts_at))
    else:
        records.sort(key=lambda a: (a.user_id, a.starts_at))

    content = planner_workbook(records, w_from.date(), w_to.date())
    name = f"planner-{w_from.date().isoformat()}-{w_to.date().isoformat()}.xlsx"
    return send_xlsx(content, name)
