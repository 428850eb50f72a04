from datetime import datetime
from schedule_api.extensions import db


class PlanStatus:
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"
    ALL = (DRAFT, PUBLISHED, ARCHIVED)


class SlotStatus:
    PLANNED = "PLANNED"
    CONFIRMED = "CONFIRMED"
    REPLACED = "REPLACED"
    CANCELLED = "CANCELLED"
    ALL = (PLANNED, CONFIRMED, REPLACED, CANCELLED)


class ConstraintType:
    WORKPLACE_BLACKLIST = "WORKPLACE_BLACKLIST"
    AVAILABILITY = "AVAILABILITY"
    MAX_SLOTS_PER_WEEK = "MAX_SLOTS_PER_WEEK"
    ALL = (WORKPLACE_BLACKLIST, AVAILABILITY, MAX_SLOTS_PER_WEEK)


class Plan(db.Model):
    """A draft/published staffing plan covering [starts_at, ends_at]."""

    __tablename__ = "plans"

    id         = db.Column(db.Integer, primary_key=True)
    org_id     = db.Column(db.Integer, db.ForeignKey("orgs.id", ondelete="RESTRICT"), nullable=True, index=True)
    name       = db.Column(db.String(255), nullable=False)
    starts_at  = db.Column(db.DateTime, nullable=False)
    ends_at    = db.Column(db.DateTime, nullable=False)
    status     = db.Column(db.String(16), nullable=False, default=PlanStatus.DRAFT)  # DRAFT|PUBLISHED|ARCHIVED
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)

    slots = db.relationship("Slot", back_populates="plan", cascade="all, delete-orphan", passive_deletes=True)

    def brief(self):
        return {"id": self.id, "name": self.name, "status": self.status}

    def to_dict(self):
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "starts_at": self.starts_at.isoformat() if self.starts_at else None,
            "ends_at": self.ends_at.isoformat() if self.ends_at else None,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Slot(db.Model):
    __tablename__ = "plan_slots"

    id           = db.Column(db.Integer, primary_key=True)
    plan_id      = db.Column(db.Integer, db.ForeignKey("plans.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id      = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    workplace_id = db.Column(db.Integer, db.ForeignKey("workplaces.id", ondelete="RESTRICT"), nullable=False)
    date_start   = db.Column(db.DateTime, nullable=False)
    date_end     = db.Column(db.DateTime, nullable=False)
    status       = db.Column(db.String(16), nullable=False, default=SlotStatus.PLANNED)
    color_code   = db.Column(db.String(16), nullable=True)
    note         = db.Column(db.Text, nullable=True)
    locked       = db.Column(db.Boolean, nullable=False, default=False)  # locked slots cannot move
    created_at   = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at   = db.Column(db.DateTime, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_plan_slot_start_user", "date_start", "user_id"),
        db.Index("ix_plan_slot_start_workplace", "date_start", "workplace_id"),
    )

    plan      = db.relationship("Plan", back_populates="slots", lazy="joined")
    user      = db.relationship("User", lazy="joined")
    workplace = db.relationship("Workplace", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "plan": self.plan.brief() if self.plan else None,
            "user_id": self.user_id,
            "user": self.user.brief() if self.user else None,
            "workplace_id": self.workplace_id,
            "workplace": self.workplace.meta() if self.workplace else None,
            "date_start": self.date_start.isoformat() if self.date_start else None,
            "date_end": self.date_end.isoformat() if self.date_end else None,
            "status": self.status,
            "color_code": self.color_code,
            "note": self.note,
            "locked": bool(self.locked),
        }


class PlanningConstraint(db.Model):
    """
    Auto-assign rule. Scope: user_id set -> that employee; workplace_id set
    -> everyone at that workplace; both null -> everyone in the org.
    """

    __tablename__ = "planning_constraints"

    id           = db.Column(db.Integer, primary_key=True)
    org_id       = db.Column(db.Integer, db.ForeignKey("orgs.id", ondelete="CASCADE"), nullable=True, index=True)
    type         = db.Column(db.String(32), nullable=False)
    payload      = db.Column(db.JSON, nullable=False, default=dict)
    user_id      = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    workplace_id = db.Column(db.Integer, db.ForeignKey("workplaces.id", ondelete="SET NULL"), nullable=True)
    created_at   = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "org_id": self.org_id,
            "type": self.type,
            "payload": self.payload,
            "user_id": self.user_id,
            "workplace_id": self.workplace_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
