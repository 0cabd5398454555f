"""Cup Points Model - per-round cup ledger kept apart from league points"""

from datetime import datetime, timezone

from tipster import db


class CupPoints(db.Model):
    """Cup points a user earned in one cup-eligible round"""

    __tablename__ = "cup_points"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    season_id = db.Column(db.Integer, db.ForeignKey("seasons.id"), nullable=False)
    betting_round_id = db.Column(
        db.Integer, db.ForeignKey("betting_rounds.id"), nullable=False
    )
    points = db.Column(db.Integer, nullable=False, default=0)

    calculated_at = db.Column(
        db.DateTime, default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    user = db.relationship("User", backref=db.backref("cup_points", lazy="dynamic"))
    betting_round = db.relationship(
        "BettingRound",
        backref=db.backref("cup_points", lazy="dynamic", cascade="all, delete-orphan"),
    )

    __table_args__ = (
        db.UniqueConstraint("user_id", "betting_round_id", name="unique_user_cup_round"),
        db.Index("idx_cup_points_season", "season_id"),
    )

    def __repr__(self):
        return f"<CupPoints user_id={self.user_id} round_id={self.betting_round_id} points={self.points}>"

    @staticmethod
    def clear_round(round_id):
        """Delete every cup row of a round, returning the number removed"""
        return CupPoints.query.filter_by(betting_round_id=round_id).delete(
            synchronize_session="fetch"
        )

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "season_id": self.season_id,
            "betting_round_id": self.betting_round_id,
            "points": self.points,
            "calculated_at": (
                self.calculated_at.isoformat() if self.calculated_at else None
            ),
        }
