from datetime import datetime, timezone

from tipster import db


class Competition(db.Model):
    __tablename__ = "competitions"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    code = db.Column(db.String(20), nullable=False, unique=True, index=True)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    seasons = db.relationship("Season", backref="competition", lazy="dynamic")

    def __repr__(self):
        return f"<Competition {self.code}>"

    def to_dict(self):
        return {"id": self.id, "name": self.name, "code": self.code}
