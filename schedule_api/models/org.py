from datetime import datetime
from schedule_api.extensions import db

class Org(db.Model):
    __tablename__ = "orgs"

    id         = db.Column(db.Integer, primary_key=True)
    name       = db.Column(db.String(255), nullable=False)
    slug       = db.Column(db.String(80), unique=True, nullable=False)
    timezone   = db.Column(db.String(64), nullable=False, default="UTC")
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {"id": self.id, "name": self.name, "slug": self.slug, "timezone": self.timezone}
