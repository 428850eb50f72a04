from datetime import datetime
from schedule_api.extensions import db


class AssignmentStatus:
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"
    ALL = (ACTIVE, ARCHIVED)


class ShiftKind:
    DEFAULT = "DEFAULT"
    OFFICE = "OFFICE"
    REMOTE = "REMOTE"
    DAY_OFF = "DAY_OFF"
    ALL = (DEFAULT, OFFICE, REMOTE, DAY_OFF)


class Assignment(db.Model):
    __tablename__ = "assignments"

    id           = db.Column(db.Integer, primary_key=True)
    user_id      = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    workplace_id = db.Column(db.Integer, db.ForeignKey("workplaces.id", ondelete="RESTRICT"), nullable=False, index=True)

    status     = db.Column(db.String(16), nullable=False, default=AssignmentStatus.ACTIVE)  # ACTIVE|ARCHIVED
    starts_at  = db.Column(db.DateTime, nullable=False, index=True)
    ends_at    = db.Column(db.DateTime, nullable=True, index=True)  # null = open-ended
    comment    = db.Column(db.Text, nullable=True)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)  # not null = in trash

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_assignment_user_range", "user_id", "status", "starts_at", "ends_at"),
    )

    user      = db.relationship("User", lazy="joined")
    workplace = db.relationship("Workplace", lazy="joined")
    shifts    = db.relationship(
        "AssignmentShift",
        back_populates="assignment",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="(AssignmentShift.date, AssignmentShift.starts_at)",
    )

    @property
    def is_trashed(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self, with_shifts: bool = True):
        d = {
            "id": self.id,
            "user_id": self.user_id,
            "workplace_id": self.workplace_id,
            "status": self.status,
            "starts_at": self.starts_at.isoformat() if self.starts_at else None,
            "ends_at": self.ends_at.isoformat() if self.ends_at else None,
            "comment": self.comment,
            "trashed": self.is_trashed,
            "user": self.user.brief() if self.user else None,
            "workplace": self.workplace.meta() if self.workplace else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if with_shifts:
            d["shifts"] = [s.to_dict() for s in self.shifts]
        return d


class AssignmentShift(db.Model):
    __tablename__ = "assignment_shifts"

    id            = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(db.Integer, db.ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False, index=True)
    date          = db.Column(db.Date, nullable=False, index=True)
    starts_at     = db.Column(db.DateTime, nullable=False)
    ends_at       = db.Column(db.DateTime, nullable=True)  # null only for a time-less DAY_OFF
    kind          = db.Column(db.String(16), nullable=False, default=ShiftKind.DEFAULT)

    assignment = db.relationship("Assignment", back_populates="shifts")

    @property
    def hours(self) -> float:
        if not self.ends_at or self.ends_at <= self.starts_at:
            return 0.0
        return (self.ends_at - self.starts_at).total_seconds() / 3600.0

    def to_dict(self):
        return {
            "id": self.id,
            "date": self.date.isoformat() if self.date else None,
            "starts_at": self.starts_at.isoformat() if self.starts_at else None,
            "ends_at": self.ends_at.isoformat() if self.ends_at else None,
            "kind": self.kind,
        }
