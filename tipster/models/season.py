from datetime import datetime, timezone

from tipster import db


class Season(db.Model):
    __tablename__ = "seasons"

    id = db.Column(db.Integer, primary_key=True)
    competition_id = db.Column(
        db.Integer, db.ForeignKey("competitions.id"), nullable=False
    )
    year = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(50), nullable=False)  # e.g., "Premier League 2025/26"

    # Season dates
    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)

    # Status flags
    is_current = db.Column(db.Boolean, default=False, nullable=False)
    bonus_mode_active = db.Column(db.Boolean, default=False, nullable=False)

    # Guards: a non-null timestamp means the transition already happened
    cup_activated_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    winner_determined_at = db.Column(db.DateTime)
    cup_winner_determined_at = db.Column(db.DateTime)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    rounds = db.relationship("BettingRound", backref="season", lazy="dynamic")
    fixtures = db.relationship("Fixture", backref="season", lazy="dynamic")

    # Database indexes and constraints
    __table_args__ = (
        db.UniqueConstraint("competition_id", "year", name="unique_competition_year"),
        db.Index("idx_season_current", "competition_id", "is_current"),
        db.Index("idx_season_completed", "completed_at"),
    )

    def __repr__(self):
        return f"<Season {self.name}>"

    @property
    def is_completed(self):
        return self.completed_at is not None

    @property
    def is_cup_activated(self):
        return self.cup_activated_at is not None

    @property
    def has_cup(self):
        """True once the season, or any single round of it, counts for the cup"""
        if self.is_cup_activated:
            return True
        from .betting_round import BettingRound

        return (
            self.rounds.filter(BettingRound.cup_activated_at.isnot(None)).count() > 0
        )

    @staticmethod
    def has_cup_clause():
        """SQL counterpart of ``has_cup`` for filtering seasons"""
        from .betting_round import BettingRound

        round_cup = (
            db.session.query(BettingRound.id)
            .filter(
                BettingRound.season_id == Season.id,
                BettingRound.cup_activated_at.isnot(None),
            )
            .exists()
        )
        return db.or_(Season.cup_activated_at.isnot(None), round_cup)

    @staticmethod
    def get_current_season(competition_id=None):
        """Get the current season, optionally for one competition"""
        query = Season.query.filter_by(is_current=True)
        if competition_id is not None:
            query = query.filter_by(competition_id=competition_id)
        return query.order_by(Season.id).first()

    @staticmethod
    def get_current_seasons():
        """Get the current season of every competition"""
        return Season.query.filter_by(is_current=True).order_by(Season.id).all()

    def activate(self):
        """Make this the current season of its competition"""
        Season.query.filter(
            Season.competition_id == self.competition_id, Season.id != self.id
        ).update({"is_current": False})
        self.is_current = True
        db.session.commit()

    def get_fixture_stats(self):
        """Count total and final fixtures of this season"""
        from .fixture import FINAL_STATUSES, Fixture

        total = self.fixtures.count()
        finished = self.fixtures.filter(Fixture.status.in_(FINAL_STATUSES)).count()
        return {"total": total, "finished": finished, "remaining": total - finished}

    def to_dict(self):
        """Convert season to dictionary for API responses"""
        return {
            "id": self.id,
            "competition_id": self.competition_id,
            "year": self.year,
            "name": self.name,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "is_current": self.is_current,
            "bonus_mode_active": self.bonus_mode_active,
            "cup_activated_at": (
                self.cup_activated_at.isoformat() if self.cup_activated_at else None
            ),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "winner_determined_at": (
                self.winner_determined_at.isoformat()
                if self.winner_determined_at
                else None
            ),
        }
