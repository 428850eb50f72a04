from datetime import datetime
from schedule_api.extensions import db


class RequestStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ALL = (PENDING, APPROVED, REJECTED)
    DECISIONS = (APPROVED, REJECTED)


class ScheduleAdjustmentRequest(db.Model):
    """
    Employee proposal to change shift times/kinds of an existing assignment.

    `proposal` is structured: [{"date": "YYYY-MM-DD", "starts_at": ISO|None,
    "ends_at": ISO|None, "kind": ShiftKind}, ...]. `comment` is free text only.
    """
    __tablename__ = "schedule_adjustment_requests"

    id            = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(db.Integer, db.ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id       = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    proposal      = db.Column(db.JSON, nullable=False, default=list)
    comment       = db.Column(db.Text, nullable=False)
    status        = db.Column(db.String(16), nullable=False, default=RequestStatus.PENDING, index=True)  # PENDING|APPROVED|REJECTED

    manager_comment    = db.Column(db.Text)
    decided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    decided_at         = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    assignment = db.relationship("Assignment")
    user       = db.relationship("User", foreign_keys=[user_id])
    decided_by = db.relationship("User", foreign_keys=[decided_by_user_id])

    def to_dict(self):
        a = self.assignment
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "user": self.user.brief() if self.user else None,
            "workplace": a.workplace.meta() if a is not None and a.workplace else None,
            "proposal": list(self.proposal or []),
            "current_shifts": [s.to_dict() for s in a.shifts] if a is not None else [],
            "comment": self.comment,
            "status": self.status,
            "manager_comment": self.manager_comment,
            "decided_by_user_id": self.decided_by_user_id,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class AssignmentRequest(db.Model):
    """Employee proposal for a brand-new assignment."""
    __tablename__ = "assignment_requests"

    id           = db.Column(db.Integer, primary_key=True)
    user_id      = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    workplace_id = db.Column(db.Integer, db.ForeignKey("workplaces.id", ondelete="CASCADE"), nullable=False, index=True)
    starts_at    = db.Column(db.DateTime, nullable=False)
    ends_at      = db.Column(db.DateTime, nullable=True)
    comment      = db.Column(db.Text)
    status       = db.Column(db.String(16), nullable=False, default=RequestStatus.PENDING, index=True)

    manager_comment       = db.Column(db.Text)
    decided_by_user_id    = db.Column(db.Integer, db.ForeignKey("users.id"))
    decided_at            = db.Column(db.DateTime)
    created_assignment_id = db.Column(db.Integer, db.ForeignKey("assignments.id", ondelete="SET NULL"))

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    user       = db.relationship("User", foreign_keys=[user_id])
    workplace  = db.relationship("Workplace")
    decided_by = db.relationship("User", foreign_keys=[decided_by_user_id])

    def to_dict(self):
        return {
            "id": self.id,
            "user": self.user.brief() if self.user else None,
            "workplace": self.workplace.meta() if self.workplace else None,
            "starts_at": self.starts_at.isoformat() if self.starts_at else None,
            "ends_at": self.ends_at.isoformat() if self.ends_at else None,
            "comment": self.comment,
            "status": self.status,
            "manager_comment": self.manager_comment,
            "decided_by_user_id": self.decided_by_user_id,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "created_assignment_id": self.created_assignment_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
