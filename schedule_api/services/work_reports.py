# schedule_api/services/work_reports.py
from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional
import logging

from sqlalchemy.exc import IntegrityError

from schedule_api.common.errors import ValidationError
from schedule_api.common.parsing import parse_date_any
from schedule_api.extensions import db
from schedule_api.models.user import User
from schedule_api.models.work_report import WorkReport

log = logging.getLogger(__name__)

MAX_HOURS = Decimal("24")


def parse_hours(raw) -> Decimal:
    if raw in (None, ""):
        raise ValidationError("hours is required")
    try:
        h = Decimal(str(raw).strip().replace(",", "."))
    except InvalidOperation:
        raise ValidationError("hours must be a number")
    if not h.is_finite():
        raise ValidationError("hours must be a number")
    if h < 0:
        raise ValidationError("hours must not be negative")
    if h > MAX_HOURS:
        raise ValidationError("hours must not exceed 24")
    return h.quantize(Decimal("0.01"))


def upsert(user_id: int, raw_date, raw_hours) -> WorkReport:
    """One report per (user, date); resubmitting a date overwrites its hours."""
    d = parse_date_any(raw_date)
    if d is None:
        raise ValidationError("date is required")
    hours = parse_hours(raw_hours)

    row = WorkReport.query.filter_by(user_id=user_id, date=d).first()
    if row is None:
        try:
            with db.session.begin_nested():
                row = WorkReport(user_id=user_id, date=d, hours=hours)
                db.session.add(row)
        except IntegrityError:
            # a concurrent submission for the same day won the insert
            row = WorkReport.query.filter_by(user_id=user_id, date=d).one()
            row.hours = hours
    else:
        row.hours = hours
    db.session.commit()
    log.info("work report saved user=%s date=%s hours=%s", user_id, d, hours)
    return row


def list_reports(user_id: Optional[int] = None, date_from: Optional[date] = None,
                 date_to: Optional[date] = None, org_id: Optional[int] = None):
    q = WorkReport.query
    if org_id is not None:
        q = q.join(User, User.id == WorkReport.user_id).filter(User.org_id == org_id)
    if user_id is not None:
        q = q.filter(WorkReport.user_id == user_id)
    if date_from is not None:
        q = q.filter(WorkReport.date >= date_from)
    if date_to is not None:
        q = q.filter(WorkReport.date <= date_to)
    return q.order_by(WorkReport.date.asc(), WorkReport.user_id.asc())


def total_hours(rows) -> float:
    return float(sum((Decimal(str(r.hours)) for r in rows), Decimal("0")))
