# schedule_api/common/paging.py
from flask import request

DEFAULT_PAGE = 1
DEFAULT_SIZE = 20
MAX_SIZE = 100

def page_limit(max_size: int = MAX_SIZE, default_size: int = DEFAULT_SIZE):
    """
    ?page=&size= (also accepts pageSize / limit aliases).
    Invalid values fall back to defaults; size is clamped to [1, max_size].
    """
    try:
        page = max(int(request.args.get("page", DEFAULT_PAGE)), 1)
    except (TypeError, ValueError):
        page = DEFAULT_PAGE
    raw = (
        request.args.get("size")
        or request.args.get("pageSize")
        or request.args.get("limit")
        or default_size
    )
    try:
        size = max(1, min(int(raw), max_size))
    except (TypeError, ValueError):
        size = default_size
    return page, size

def text_q():
    q = request.args.get("q") or request.args.get("search") or ""
    return q.strip() or None
