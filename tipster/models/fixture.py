from datetime import datetime, timezone

from tipster import db

RESULT_HOME = "home"
RESULT_DRAW = "draw"
RESULT_AWAY = "away"
RESULTS = (RESULT_HOME, RESULT_DRAW, RESULT_AWAY)

# Short status codes written by the fixture sync
FINAL_STATUSES = ("FT", "AET", "PEN", "AWD", "WO")
NOT_STARTED_STATUSES = ("NS", "TBD")


class Fixture(db.Model):
    __tablename__ = "fixtures"

    id = db.Column(db.Integer, primary_key=True)

    # Fixture identification
    season_id = db.Column(db.Integer, db.ForeignKey("seasons.id"), nullable=False)
    betting_round_id = db.Column(
        db.Integer, db.ForeignKey("betting_rounds.id"), nullable=True
    )  # Unlinked fixtures cannot take bets

    # Teams
    home_team_id = db.Column(db.Integer, db.ForeignKey("teams.id"), nullable=False)
    away_team_id = db.Column(db.Integer, db.ForeignKey("teams.id"), nullable=False)

    # Timing and status
    kickoff = db.Column(db.DateTime)
    status = db.Column(db.String(10), nullable=False, default="NS")

    # Result
    result = db.Column(db.String(10))  # home, draw, away or None until played
    home_goals = db.Column(db.Integer)
    away_goals = db.Column(db.Integer)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    bets = db.relationship("UserBet", backref="fixture", lazy="dynamic")

    # Indexes
    __table_args__ = (
        db.Index("idx_fixture_round", "betting_round_id"),
        db.Index("idx_fixture_season_status", "season_id", "status"),
        db.CheckConstraint("home_team_id != away_team_id", name="different_teams"),
    )

    def __repr__(self):
        home = self.home_team.short_name if self.home_team else "TBD"
        away = self.away_team.short_name if self.away_team else "TBD"
        return f"<Fixture {home} vs {away}>"

    @property
    def is_finished(self):
        return self.status in FINAL_STATUSES

    @property
    def outcome(self):
        """Final result, derived from goals when the sync did not store one"""
        if not self.is_finished:
            return None
        if self.result in RESULTS:
            return self.result
        if self.home_goals is None or self.away_goals is None:
            return None
        if self.home_goals > self.away_goals:
            return RESULT_HOME
        if self.home_goals < self.away_goals:
            return RESULT_AWAY
        return RESULT_DRAW

    def to_dict(self):
        """Convert fixture to dictionary for API responses"""
        return {
            "id": self.id,
            "season_id": self.season_id,
            "betting_round_id": self.betting_round_id,
            "kickoff": self.kickoff.isoformat() if self.kickoff else None,
            "home_team": self.home_team.to_dict() if self.home_team else None,
            "away_team": self.away_team.to_dict() if self.away_team else None,
            "status": self.status,
            "result": self.outcome,
            "home_goals": self.home_goals,
            "away_goals": self.away_goals,
        }
