# schedule_api/services/notifications.py
from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional
import logging

from schedule_api.extensions import db
from schedule_api.models.assignment import AssignmentStatus
from schedule_api.models.notification import Notification, NotificationType
from schedule_api.models.user import User, UserRole

log = logging.getLogger(__name__)

FEED_MAX = 100


def assignment_payload(a, status: Optional[str] = None) -> dict:
    w = a.workplace
    org = w.org if w is not None else None
    return {
        "assignment_id": a.id,
        "user_id": a.user_id,
        "workplace_id": a.workplace_id,
        "workplace_code": w.code if w is not None else None,
        "workplace_name": w.name if w is not None else None,
        "starts_at": a.starts_at.isoformat() if a.starts_at else None,
        "ends_at": a.ends_at.isoformat() if a.ends_at else None,
        "status": status or a.status,
        "org_id": w.org_id if w is not None else None,
        "org_name": org.name if org is not None else None,
    }


def managers_of(org_id: Optional[int]) -> List[int]:
    if org_id is None:
        return []
    rows = (
        db.session.query(User.id)
        .filter(User.org_id == org_id, User.role == UserRole.MANAGER, User.is_active.is_(True))
        .order_by(User.id.asc())
        .all()
    )
    return [r[0] for r in rows]


def recipients_for(user_id: int, org_id: Optional[int]) -> List[int]:
    """The employee plus every active manager of the workplace's org."""
    return [user_id] + [uid for uid in managers_of(org_id) if uid != user_id]


def slot_payload(slot, **extra) -> dict:
    d = {
        "plan_id": slot.plan_id,
        "slot_id": slot.id,
        "user_id": slot.user_id,
        "workplace_id": slot.workplace_id,
        "date_start": slot.date_start.isoformat() if slot.date_start else None,
        "date_end": slot.date_end.isoformat() if slot.date_end else None,
        "status": slot.status,
    }
    d.update(extra)
    return d


def notify_many(user_ids: Iterable[int], ntype: str, payload: dict) -> int:
    """Adds rows to the current session; the caller's commit persists them."""
    n = 0
    for uid in user_ids:
        db.session.add(Notification(user_id=uid, type=ntype, payload=dict(payload)))
        n += 1
    return n


def notify_assignment(a, ntype: str, status: Optional[str] = None) -> int:
    w = a.workplace
    return notify_many(
        recipients_for(a.user_id, w.org_id if w is not None else None),
        ntype,
        assignment_payload(a, status=status),
    )


def classify_update(before: dict, a) -> str:
    """
    Pick the notification type for an edit that kept the same employee:
    ARCHIVED transition -> CANCELLED, otherwise changed dates -> MOVED,
    otherwise UPDATED.
    """
    if before["status"] != a.status and a.status == AssignmentStatus.ARCHIVED:
        return NotificationType.ASSIGNMENT_CANCELLED
    if before["starts_at"] != a.starts_at or before["ends_at"] != a.ends_at:
        return NotificationType.ASSIGNMENT_MOVED
    return NotificationType.ASSIGNMENT_UPDATED


def list_for_user(user_id: int, take: int = 20, unread_only: bool = False) -> List[Notification]:
    q = Notification.query.filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.read_at.is_(None))
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(take).all()


def mark_read(user_id: int, ids: Optional[Iterable[int]] = None) -> int:
    q = Notification.query.filter(Notification.user_id == user_id, Notification.read_at.is_(None))
    if ids is not None:
        q = q.filter(Notification.id.in_(list(ids)))
    n = q.update({Notification.read_at: datetime.utcnow()}, synchronize_session=False)
    db.session.commit()
    return n


def admin_feed(take: int = 20, org_id: Optional[int] = None) -> List[Notification]:
    """Latest assignment lifecycle events, newest first."""
    limit = min(max(int(take or 20), 1), FEED_MAX)
    q = Notification.query.filter(Notification.type.in_(NotificationType.ALL))
    if org_id is not None:
        q = q.join(User, User.id == Notification.user_id).filter(User.org_id == org_id)
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()
