"""Season Winner Model - Tracks league and cup champions"""

from datetime import datetime, timezone

from tipster import db

COMPETITION_LEAGUE = "league"
COMPETITION_CUP = "cup"


class SeasonWinner(db.Model):
    """One row per user tied at the top of a season's final standings"""

    __tablename__ = "season_winners"

    id = db.Column(db.Integer, primary_key=True)

    # Winner identification
    season_id = db.Column(db.Integer, db.ForeignKey("seasons.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    competition_type = db.Column(
        db.String(20), nullable=False, default=COMPETITION_LEAGUE
    )  # 'league' or 'cup'

    # Stats at time of win
    total_points = db.Column(db.Integer, default=0)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    season = db.relationship("Season", backref="winners")
    user = db.relationship("User", backref="season_wins")

    # Constraints
    __table_args__ = (
        db.UniqueConstraint(
            "season_id",
            "user_id",
            "competition_type",
            name="unique_season_winner",
        ),
        db.Index("idx_winner_season", "season_id"),
        db.Index("idx_winner_user", "user_id"),
    )

    def __repr__(self):
        return f"<SeasonWinner {self.competition_type} season={self.season_id}: User {self.user_id}>"

    @staticmethod
    def get_season_winners(season_id, competition_type=COMPETITION_LEAGUE):
        """Get the recorded winners of a season"""
        return (
            SeasonWinner.query.filter_by(
                season_id=season_id, competition_type=competition_type
            )
            .order_by(SeasonWinner.user_id.asc())
            .all()
        )

    @staticmethod
    def get_user_awards(user_id):
        """Get all awards for a user"""
        return (
            SeasonWinner.query.filter_by(user_id=user_id)
            .order_by(SeasonWinner.season_id.desc())
            .all()
        )

    def to_dict(self):
        """Convert to dictionary"""
        return {
            "id": self.id,
            "season_id": self.season_id,
            "user_id": self.user_id,
            "username": self.user.username if self.user else None,
            "competition_type": self.competition_type,
            "total_points": self.total_points,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
