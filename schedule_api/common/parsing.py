# schedule_api/common/parsing.py
from __future__ import annotations

from datetime import datetime, date, time, timezone

from schedule_api.common.errors import ValidationError


def parse_date_any(s) -> date | None:
    """
    Accepts:
      - 'YYYY-MM-DD'  (canonical)
      - 'DD-MM-YYYY'  (legacy support)
      - full ISO timestamps (date part is used)
    """
    if not s:
        return None
    if isinstance(s, datetime):
        return s.date()
    if isinstance(s, date):
        return s
    raw = str(s).strip()
    for f in ("%Y-%m-%d", "%d-%m-%Y"):
        try:
            return datetime.strptime(raw, f).date()
        except ValueError:
            pass
    dt = parse_datetime(raw, field="date")
    return dt.date() if dt else None


def parse_datetime(s, field: str = "datetime") -> datetime | None:
    """
    ISO-8601 → naive UTC datetime. Aware values are converted to UTC,
    date-only values become midnight. Raises ValidationError on garbage.
    """
    if s in (None, "", "null"):
        return None
    if isinstance(s, datetime):
        dt = s
    elif isinstance(s, date):
        return datetime.combine(s, time.min)
    else:
        raw = str(s).strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(raw)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 date/time")
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_time(s, field: str = "time") -> time | None:
    if s in (None, ""):
        return None
    for f in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(str(s).strip(), f).time()
        except ValueError:
            pass
    raise ValidationError(f"{field} must be HH:MM")


def as_int(val, field):
    if val in (None, "", "null"):
        return None
    try:
        return int(val)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be integer")


def as_bool(val, field):
    if val is None or val == "":
        return None
    if isinstance(val, bool):
        return val
    v = str(val).lower()
    if v in ("true", "1", "yes"):
        return True
    if v in ("false", "0", "no"):
        return False
    raise ValidationError(f"{field} must be true/false")


def pick(d: dict, *names, default=None):
    """First present key among camelCase/snake_case aliases."""
    for n in names:
        if n in d:
            return d[n]
    return default


def parse_bound(raw, field: str, end: bool = False) -> datetime | None:
    """
    Range bound from a query arg. A bare date means the start of that day,
    or its last instant when `end` is set, so ?to=2025-03-20 covers the 20th.
    """
    if raw in (None, ""):
        return None
    s = str(raw).strip()
    if len(s) == 10:
        d = parse_date_any(s)
        if d is None:
            raise ValidationError(f"{field} must be a date")
        return datetime.combine(d, time.max if end else time.min)
    return parse_datetime(s, field=field)


def csv_list(values) -> list:
    """?kinds=A&kinds=B and ?kinds=A,B both give ['A', 'B']."""
    out = []
    for v in values or ():
        out.extend(p.strip() for p in str(v).split(",") if p.strip())
    return out
