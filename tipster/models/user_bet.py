from datetime import datetime, timezone

from tipster import db


class UserBet(db.Model):
    """One user's prediction for one fixture, and the league points it earned"""

    __tablename__ = "user_bets"

    id = db.Column(db.Integer, primary_key=True)

    # Bet identification
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    fixture_id = db.Column(db.Integer, db.ForeignKey("fixtures.id"), nullable=False)
    betting_round_id = db.Column(
        db.Integer, db.ForeignKey("betting_rounds.id"), nullable=False
    )

    # Bet details (None for retroactive awards, which carry no prediction)
    prediction = db.Column(db.String(10), nullable=True)

    # Results (written once by the scoring pass)
    points_awarded = db.Column(db.Integer, nullable=True)
    is_retroactive = db.Column(db.Boolean, default=False, nullable=False)

    # Timestamps
    submitted_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Constraints and indexes
    __table_args__ = (
        db.UniqueConstraint("user_id", "fixture_id", name="unique_user_fixture_bet"),
        db.Index("idx_bet_round_user", "betting_round_id", "user_id"),
        db.Index("idx_bet_fixture", "fixture_id"),
    )

    def __repr__(self):
        return f"<UserBet user_id={self.user_id} fixture_id={self.fixture_id} prediction={self.prediction or 'award'}>"

    @property
    def is_scored(self):
        return self.points_awarded is not None

    @staticmethod
    def user_has_round_record(user_id, round_id):
        """Check if a user already holds any record for a round"""
        return (
            db.session.query(UserBet.id)
            .filter(UserBet.user_id == user_id, UserBet.betting_round_id == round_id)
            .first()
            is not None
        )

    @staticmethod
    def get_round_totals(round_id, exclude_user_id=None):
        """Sum points per participant for a round

        Returns:
            list: (user_id, total_points) tuples, unscored rows counting as 0
        """
        query = db.session.query(
            UserBet.user_id,
            db.func.coalesce(db.func.sum(UserBet.points_awarded), 0),
        ).filter(UserBet.betting_round_id == round_id)

        if exclude_user_id is not None:
            query = query.filter(UserBet.user_id != exclude_user_id)

        return [
            (user_id, int(total))
            for user_id, total in query.group_by(UserBet.user_id).all()
        ]

    def to_dict(self):
        """Convert bet to dictionary for API responses"""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "fixture_id": self.fixture_id,
            "betting_round_id": self.betting_round_id,
            "prediction": self.prediction,
            "points_awarded": self.points_awarded,
            "is_retroactive": self.is_retroactive,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
        }
