from datetime import datetime
from schedule_api.extensions import db


class NotificationType:
    ASSIGNMENT_CREATED = "ASSIGNMENT_CREATED"
    ASSIGNMENT_UPDATED = "ASSIGNMENT_UPDATED"
    ASSIGNMENT_MOVED = "ASSIGNMENT_MOVED"
    ASSIGNMENT_CANCELLED = "ASSIGNMENT_CANCELLED"
    ALL = (ASSIGNMENT_CREATED, ASSIGNMENT_UPDATED, ASSIGNMENT_MOVED, ASSIGNMENT_CANCELLED)


class Notification(db.Model):
    __tablename__ = "notifications"

    id         = db.Column(db.Integer, primary_key=True)
    user_id    = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type       = db.Column(db.String(32), nullable=False, index=True)
    payload    = db.Column(db.JSON, nullable=False, default=dict)
    read_at    = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    user = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "payload": self.payload or {},
            "user": self.user.brief() if self.user else None,
            "read": self.read_at is not None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
