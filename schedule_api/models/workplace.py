from datetime import datetime

from schedule_api.extensions import db


class Workplace(db.Model):
    """
    A location / project employees are assigned to.

    `color` is a display hint for calendar bars only (e.g. "#4f46e5").
    Soft delete keeps historical assignments and statistics intact.
    """

    __tablename__ = "workplaces"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(
        db.Integer,
        db.ForeignKey("orgs.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    location = db.Column(db.String(255), nullable=True)
    color = db.Column(db.String(16), nullable=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    deleted_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("org_id", "code", name="uq_workplace_org_code"),
    )

    org = db.relationship("Org", lazy="joined")

    def soft_delete(self):
        self.is_active = False
        self.deleted_at = datetime.utcnow()

    @property
    def label(self) -> str:
        parts = [p.strip() for p in (self.code, self.name) if p and p.strip()]
        return " — ".join(parts) if parts else "Workplace"

    def meta(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "location": self.location,
            "color": self.color,
        }

    def to_dict(self):
        d = self.meta()
        d.update({
            "org_id": self.org_id,
            "is_active": self.is_active,
            "deleted": self.deleted_at is not None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        })
        return d
