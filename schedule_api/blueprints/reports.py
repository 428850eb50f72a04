from flask import Blueprint, request

from schedule_api.common.auth import CAP_REPORTS_VIEW, effective_org_id, requires_caps
from schedule_api.common.http import ok
from schedule_api.common.parsing import as_int, parse_date_any
from schedule_api.services import work_reports

bp = Blueprint("reports", __name__, url_prefix="/api/v1/reports")


@bp.get("/work")
@requires_caps(CAP_REPORTS_VIEW)
def work():
    """Self-reported hours; ?from=YYYY-MM-DD&to=YYYY-MM-DD&user_id=."""
    rows = work_reports.list_reports(
        user_id=as_int(request.args.get("user_id") or request.args.get("userId"), "user_id"),
        date_from=parse_date_any(request.args.get("from")),
        date_to=parse_date_any(request.args.get("to")),
        org_id=effective_org_id(request.args.get("org_id")),
    ).all()
    data = []
    for r in rows:
        d = r.to_dict()
        d["user"] = r.user.brief() if r.user else None
        data.append(d)
    return ok(data, total=len(data), total_hours=work_reports.total_hours(rows))
