# schedule_api/services/overlap.py
"""
Assignment overlap validator.

Rule: for one employee, ACTIVE assignments must not overlap in time.
Intervals are half-open [starts_at, ends_at): an assignment ending at 18:00
and another starting at 18:00 are back-to-back, not overlapping.
A null ends_at is open-ended (unbounded upper edge).

Everything here is pure: callers pass in the employee's other assignments
(already fetched inside their write transaction) and persist on success.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional
import logging

from schedule_api.common.errors import OverlapConflict, ValidationError
from schedule_api.models.assignment import AssignmentStatus

log = logging.getLogger(__name__)


def intervals_overlap(
    s1: datetime, e1: Optional[datetime],
    s2: datetime, e2: Optional[datetime],
) -> bool:
    """s1 < e2 and s2 < e1, with None ends treated as +infinity."""
    left = e2 is None or s1 < e2
    right = e1 is None or s2 < e1
    return left and right


def validate_range(starts_at: Optional[datetime], ends_at: Optional[datetime], field: str = "ends_at"):
    if starts_at is None:
        raise ValidationError("starts_at is required")
    if ends_at is not None and ends_at < starts_at:
        raise ValidationError(f"{field} must not be before starts_at")


def find_conflicts(
    starts_at: datetime,
    ends_at: Optional[datetime],
    status: str,
    others: Iterable,
    exclude_id: Optional[int] = None,
) -> List:
    """
    Return the assignments in `others` that the candidate would overlap.

    `others` are objects exposing id / status / starts_at / ends_at (ORM rows
    or plain records). A non-ACTIVE candidate never conflicts.
    """
    if status != AssignmentStatus.ACTIVE:
        return []
    hits = []
    for o in others:
        if exclude_id is not None and getattr(o, "id", None) == exclude_id:
            continue
        if getattr(o, "status", None) != AssignmentStatus.ACTIVE:
            continue
        if getattr(o, "deleted_at", None) is not None:
            continue
        if intervals_overlap(starts_at, ends_at, o.starts_at, o.ends_at):
            hits.append(o)
    return hits


def ensure_no_overlap(
    user_id: int,
    starts_at: datetime,
    ends_at: Optional[datetime],
    status: str,
    others: Iterable,
    exclude_id: Optional[int] = None,
) -> None:
    """Raise OverlapConflict listing every conflicting assignment id."""
    hits = find_conflicts(starts_at, ends_at, status, others, exclude_id=exclude_id)
    if hits:
        ids = sorted(h.id for h in hits if getattr(h, "id", None) is not None)
        log.warning(
            "overlap rejected user=%s range=[%s, %s) conflicts=%s",
            user_id, starts_at, ends_at, ids,
        )
        raise OverlapConflict(conflicting_ids=ids)
