from datetime import datetime
from schedule_api.extensions import db
from werkzeug.security import generate_password_hash, check_password_hash


class UserRole:
    USER = "USER"
    MANAGER = "MANAGER"
    SUPER_ADMIN = "SUPER_ADMIN"
    ALL = (USER, MANAGER, SUPER_ADMIN)


class User(db.Model):
    __tablename__ = "users"

    id            = db.Column(db.Integer, primary_key=True)
    org_id        = db.Column(db.Integer, db.ForeignKey("orgs.id", ondelete="SET NULL"), nullable=True, index=True)
    email         = db.Column(db.String(255), unique=True, index=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name     = db.Column(db.String(255), nullable=False)
    position      = db.Column(db.String(120), nullable=True)
    phone         = db.Column(db.String(32), nullable=True)
    role          = db.Column(db.String(20), nullable=False, default=UserRole.USER)  # USER|MANAGER|SUPER_ADMIN
    is_active     = db.Column(db.Boolean, nullable=False, default=True)
    password_updated_at = db.Column(db.DateTime, nullable=True)
    created_at    = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    org = db.relationship("Org", lazy="joined")

    # --- helpers ---
    def set_password(self, raw: str):
        self.password_hash = generate_password_hash(raw)
        self.password_updated_at = datetime.utcnow()

    def check_password(self, raw: str) -> bool:
        return check_password_hash(self.password_hash, raw)

    @property
    def display_name(self) -> str:
        return (self.full_name or "").strip() or self.email

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "position": self.position,
            "phone": self.phone,
            "role": self.role,
            "is_active": self.is_active,
            "org": self.org.to_dict() if self.org else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def brief(self):
        return {"id": self.id, "email": self.email, "full_name": self.full_name, "position": self.position}
