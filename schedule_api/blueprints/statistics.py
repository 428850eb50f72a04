from flask import Blueprint, request

from schedule_api.common.auth import CAP_STATISTICS_VIEW, effective_org_id, requires_caps
from schedule_api.common.http import ok
from schedule_api.common.parsing import as_int, csv_list, parse_date_any
from schedule_api.services.statistics import get_statistics

bp = Blueprint("statistics", __name__, url_prefix="/api/v1/statistics")


@bp.get("")
@requires_caps(CAP_STATISTICS_VIEW)
def statistics():
    args = request.args
    data = get_statistics(
        parse_date_any(args.get("from")),
        parse_date_any(args.get("to")),
        user_id=as_int(args.get("user_id") or args.get("userId"), "user_id"),
        workplace_id=as_int(args.get("workplace_id") or args.get("workplaceId"), "workplace_id"),
        statuses=csv_list(args.getlist("assignment_statuses") or args.getlist("assignmentStatuses")),
        kinds=csv_list(args.getlist("kinds")),
        org_id=effective_org_id(args.get("org_id")),
    )
    return ok(data)
