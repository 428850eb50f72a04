from flask import Blueprint, request

from schedule_api.common.auth import CAP_FEED_VIEW, effective_org_id, requires_caps
from schedule_api.common.http import ok
from schedule_api.common.parsing import as_int
from schedule_api.services.notifications import admin_feed

bp = Blueprint("feed", __name__, url_prefix="/api/v1/feed")


@bp.get("")
@requires_caps(CAP_FEED_VIEW)
def feed():
    take = as_int(request.args.get("take"), "take") or 20
    rows = admin_feed(take=take, org_id=effective_org_id(request.args.get("org_id")))
    return ok([n.to_dict() for n in rows])
