from datetime import datetime, timezone

from tipster import db
from tipster.services.exceptions import DeadlineLocked, InvalidStatusTransition
from tipster.utils.timezone_utils import ensure_utc, to_db_time

ROUND_STATUS_OPEN = "open"
ROUND_STATUS_SCORING = "scoring"
ROUND_STATUS_SCORED = "scored"

# Status only ever moves forward along this order
ROUND_STATUS_ORDER = (ROUND_STATUS_OPEN, ROUND_STATUS_SCORING, ROUND_STATUS_SCORED)


class BettingRound(db.Model):
    __tablename__ = "betting_rounds"

    id = db.Column(db.Integer, primary_key=True)

    # Round identification
    competition_id = db.Column(
        db.Integer, db.ForeignKey("competitions.id"), nullable=False
    )
    season_id = db.Column(db.Integer, db.ForeignKey("seasons.id"), nullable=False)
    sequence = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(100))

    # Lifecycle
    status = db.Column(db.String(20), nullable=False, default=ROUND_STATUS_OPEN)
    earliest_fixture_kickoff = db.Column(db.DateTime)  # Submission deadline
    is_bonus_round = db.Column(db.Boolean, default=False, nullable=False)
    cup_activated_at = db.Column(db.DateTime)
    scored_at = db.Column(db.DateTime)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    fixtures = db.relationship("Fixture", backref="betting_round", lazy="dynamic")
    bets = db.relationship("UserBet", backref="betting_round", lazy="dynamic")

    __table_args__ = (
        db.UniqueConstraint("season_id", "sequence", name="unique_season_round"),
        db.Index("idx_round_competition_status", "competition_id", "status"),
    )

    def __repr__(self):
        return f"<BettingRound {self.display_name} ({self.status})>"

    @property
    def display_name(self):
        return self.name or f"Round {self.sequence}"

    @property
    def is_open(self):
        return self.status == ROUND_STATUS_OPEN

    @property
    def is_scored(self):
        return self.status == ROUND_STATUS_SCORED

    @db.validates("status")
    def validate_status(self, key, new_status):
        """Reject unknown statuses and backwards transitions"""
        if new_status not in ROUND_STATUS_ORDER:
            raise InvalidStatusTransition(f"Unknown round status '{new_status}'")

        old_status = self.status
        if old_status is not None and ROUND_STATUS_ORDER.index(
            new_status
        ) < ROUND_STATUS_ORDER.index(old_status):
            raise InvalidStatusTransition(
                f"Round {self.id} cannot move from {old_status} back to {new_status}",
                round_id=self.id,
            )
        return new_status

    @db.validates("earliest_fixture_kickoff")
    def validate_deadline(self, key, new_deadline):
        """The deadline is frozen once the round holds a bet"""
        new_deadline = to_db_time(new_deadline)
        if new_deadline == self.earliest_fixture_kickoff or self.id is None:
            return new_deadline

        with db.session.no_autoflush:
            has_bets = self.bets.count() > 0
        if has_bets:
            raise DeadlineLocked(round_id=self.id)
        return new_deadline

    def update_deadline(self, new_deadline):
        """Change the submission deadline while no bets exist for the round"""
        self.earliest_fixture_kickoff = new_deadline

    def refresh_deadline_from_fixtures(self):
        """Derive the deadline from the earliest fixture kickoff"""
        from .fixture import Fixture

        earliest = (
            self.fixtures.filter(Fixture.kickoff.isnot(None))
            .order_by(Fixture.kickoff)
            .first()
        )
        if earliest and earliest.kickoff != self.earliest_fixture_kickoff:
            self.update_deadline(earliest.kickoff)
        return self.earliest_fixture_kickoff

    def unresolved_fixture_ids(self):
        """Fixtures still in play, or final without a usable result"""
        from .fixture import Fixture

        return [
            fixture.id
            for fixture in self.fixtures.order_by(Fixture.id).all()
            if fixture.outcome is None
        ]

    def all_fixtures_resolved(self):
        """Check if every fixture in the round is final with a known outcome"""
        return not self.unresolved_fixture_ids()

    def is_cup_eligible(self, season_cup_activated_at=None):
        """A round counts for the cup once it, or its season, is cup-activated"""
        if self.cup_activated_at is not None:
            return True
        if season_cup_activated_at is None or self.earliest_fixture_kickoff is None:
            return False
        return ensure_utc(self.earliest_fixture_kickoff) >= ensure_utc(
            season_cup_activated_at
        )

    @staticmethod
    def lock(round_id):
        """Load a round holding a row lock for the rest of the transaction"""
        return (
            BettingRound.query.filter_by(id=round_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def to_dict(self):
        """Convert round to dictionary for API responses"""
        return {
            "id": self.id,
            "competition_id": self.competition_id,
            "season_id": self.season_id,
            "sequence": self.sequence,
            "name": self.display_name,
            "status": self.status,
            "earliest_fixture_kickoff": (
                self.earliest_fixture_kickoff.isoformat()
                if self.earliest_fixture_kickoff
                else None
            ),
            "is_bonus_round": self.is_bonus_round,
            "cup_activated_at": (
                self.cup_activated_at.isoformat() if self.cup_activated_at else None
            ),
            "scored_at": self.scored_at.isoformat() if self.scored_at else None,
        }
