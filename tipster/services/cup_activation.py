"""
Cup Activation Detector

The cup switches on for a season once enough teams are close to the end of
their schedule: when at least ``threshold`` percent of the season's teams have
``max_remaining_games`` or fewer fixtures left. Activation writes the season's
``cup_activated_at`` exactly once; later runs are no-ops.
"""

import logging
from dataclasses import asdict, dataclass

from sqlalchemy.exc import OperationalError

from tipster import db
from tipster.models import BettingRound, CupPoints, Fixture, Season
from tipster.models.fixture import FINAL_STATUSES
from tipster.services.audit import (
    ACTION_ACTIVATE_CUP,
    ACTION_DEACTIVATE_CUP,
    get_default_sink,
)
from tipster.services.exceptions import NotFound, SeasonNotEligible
from tipster.services.results import BatchResult, OperationResult
from tipster.utils.db_utils import datastore_call, error_entry
from tipster.utils.monitoring import monitored_operation
from tipster.utils.timezone_utils import ensure_utc, get_utc_time, to_db_time

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 60.0
DEFAULT_MAX_REMAINING_GAMES = 5


@dataclass
class ActivationCondition:
    season_id: int
    total_teams: int
    qualifying_teams: int
    percentage: float
    threshold: float
    max_remaining_games: int
    condition_met: bool
    reasoning: str

    def to_dict(self):
        return asdict(self)


class CupActivationDetector:
    """Decides, once per season, whether the cup turns on"""

    def __init__(
        self,
        threshold=DEFAULT_THRESHOLD,
        max_remaining_games=DEFAULT_MAX_REMAINING_GAMES,
        audit_sink=None,
    ):
        if threshold is None or not 0 <= threshold <= 100:
            raise ValueError(f"Cup activation threshold must be 0-100, got {threshold}")
        if max_remaining_games is None or max_remaining_games < 0:
            raise ValueError(
                f"Remaining games limit must be >= 0, got {max_remaining_games}"
            )

        self.threshold = float(threshold)
        self.max_remaining_games = int(max_remaining_games)
        self.audit_sink = audit_sink or get_default_sink()

    @classmethod
    def from_config(cls, config, audit_sink=None):
        return cls(
            threshold=config.get("CUP_ACTIVATION_THRESHOLD", DEFAULT_THRESHOLD),
            max_remaining_games=config.get(
                "CUP_MAX_REMAINING_GAMES", DEFAULT_MAX_REMAINING_GAMES
            ),
            audit_sink=audit_sink,
        )

    def remaining_games_by_team(self, season_id):
        """Count unplayed fixtures per team across the season's fixtures"""
        fixtures = Fixture.query.filter_by(season_id=season_id).all()

        remaining = {}
        for fixture in fixtures:
            for team_id in (fixture.home_team_id, fixture.away_team_id):
                remaining.setdefault(team_id, 0)
                if fixture.status not in FINAL_STATUSES:
                    remaining[team_id] += 1
        return remaining

    def calculate_condition(self, season_id):
        """Work out whether the activation condition holds for a season"""
        remaining = self.remaining_games_by_team(season_id)
        total_teams = len(remaining)
        qualifying = sum(
            1 for count in remaining.values() if count <= self.max_remaining_games
        )

        if total_teams == 0:
            return ActivationCondition(
                season_id=season_id,
                total_teams=0,
                qualifying_teams=0,
                percentage=0.0,
                threshold=self.threshold,
                max_remaining_games=self.max_remaining_games,
                condition_met=False,
                reasoning="No teams found in the season's fixtures",
            )

        # Exact comparison; the percentage is rounded for display only
        condition_met = qualifying * 100 >= self.threshold * total_teams
        percentage = round(qualifying / total_teams * 100, 2)
        reasoning = (
            f"{qualifying}/{total_teams} teams ({percentage:g}%) have "
            f"<= {self.max_remaining_games} games remaining, which "
            f"{'meets' if condition_met else 'does not meet'} the "
            f"{self.threshold:g}% threshold"
        )

        return ActivationCondition(
            season_id=season_id,
            total_teams=total_teams,
            qualifying_teams=qualifying,
            percentage=percentage,
            threshold=self.threshold,
            max_remaining_games=self.max_remaining_games,
            condition_met=condition_met,
            reasoning=reasoning,
        )

    def _activate(self, season, condition, now, actor_id=None):
        """
        Set cup_activated_at only if it is still null

        Returns:
            True if this call activated the cup, False if another run won
        """
        activated_at = to_db_time(now)
        updated = (
            Season.query.filter(
                Season.id == season.id, Season.cup_activated_at.is_(None)
            ).update({"cup_activated_at": activated_at}, synchronize_session=False)
        )
        if not updated:
            db.session.rollback()
            return False

        self.audit_sink.record(
            ACTION_ACTIVATE_CUP,
            "season",
            season.id,
            actor_id=actor_id,
            before={"cup_activated_at": None},
            after={"cup_activated_at": ensure_utc(activated_at).isoformat()},
            details=condition.to_dict(),
        )
        db.session.commit()
        db.session.refresh(season)
        return True

    def check_season(self, season_id, now=None, actor_id=None):
        """
        Run detection for one season

        Returns:
            OperationResult describing the condition and whether the cup was
            activated by this run or already active
        """
        now = now or get_utc_time()

        with datastore_call(f"cup activation for season {season_id}"):
            season = db.session.get(Season, season_id)
            if season is None:
                raise NotFound(f"Season {season_id} not found", season_id=season_id)

            payload = {
                "season_id": season.id,
                "season_name": season.name,
                "was_already_activated": season.cup_activated_at is not None,
                "activated": False,
                "activated_at": None,
            }

            if season.cup_activated_at is not None:
                payload["activated_at"] = ensure_utc(season.cup_activated_at).isoformat()
                return OperationResult.ok(
                    f"Cup already activated for {season.name}", payload=payload
                )

            if not season.is_current:
                raise SeasonNotEligible(
                    f"{season.name} is not the current season", season_id=season.id
                )

            condition = self.calculate_condition(season.id)
            payload["condition"] = condition.to_dict()

            if not condition.condition_met:
                return OperationResult.ok(condition.reasoning, payload=payload)

            if self._activate(season, condition, now, actor_id=actor_id):
                payload["activated"] = True
                logger.info(f"Cup activated for {season.name}: {condition.reasoning}")

                from tipster.notifications import broadcast_cup_activated

                broadcast_cup_activated(season)
            else:
                payload["was_already_activated"] = True
                logger.info(f"Cup for {season.name} was activated by a concurrent run")

            payload["activated_at"] = ensure_utc(season.cup_activated_at).isoformat()
            return OperationResult.ok(
                f"Cup activated for {season.name}", payload=payload
            )

    @monitored_operation("cup_activation")
    def run(self, now=None):
        """Run detection for the current season of every competition"""
        result = BatchResult(operation="cup_activation")

        for season in Season.get_current_seasons():
            season_id = season.id
            try:
                outcome = self.check_season(season_id, now=now)
                entry = dict(outcome.payload, message=outcome.message)
                if outcome.payload["activated"]:
                    result.processed.append(entry)
                else:
                    result.skipped.append(entry)
            except OperationalError:
                raise
            except Exception as e:
                db.session.rollback()
                logger.error(
                    f"Cup activation failed for season {season_id}: {e}", exc_info=True
                )
                result.errors.append(error_entry(e, season_id=season_id))

        return result


def set_round_cup_activation(round_id, activated, actor_id=None, now=None, audit_sink=None):
    """
    Admin override of a single round's cup eligibility

    Clearing the flag also removes the round's cup points in the same
    transaction.
    """
    audit_sink = audit_sink or get_default_sink()
    now = now or get_utc_time()

    with datastore_call(f"cup toggle for round {round_id}"):
        betting_round = BettingRound.lock(round_id)
        if betting_round is None:
            raise NotFound(f"Betting round {round_id} not found", round_id=round_id)

        before = betting_round.cup_activated_at
        cleared = 0
        if activated and before is None:
            betting_round.cup_activated_at = to_db_time(now)
        elif not activated and before is not None:
            betting_round.cup_activated_at = None
            cleared = CupPoints.clear_round(round_id)

        after = betting_round.cup_activated_at
        audit_sink.record(
            ACTION_ACTIVATE_CUP if activated else ACTION_DEACTIVATE_CUP,
            "betting_round",
            round_id,
            actor_id=actor_id,
            before={"cup_activated_at": ensure_utc(before).isoformat() if before else None},
            after={"cup_activated_at": ensure_utc(after).isoformat() if after else None},
            details={"cup_rows_cleared": cleared},
        )
        db.session.commit()

    state = "activated" if activated else "deactivated"
    logger.info(f"Cup {state} for round {round_id} by user {actor_id}")

    if before != after:
        from tipster.services.standings import refresh_seasons

        refresh_seasons([betting_round.season_id], f"cup toggle for round {round_id}")

    return OperationResult.ok(
        f"Cup {state} for {betting_round.display_name}",
        payload={"round": betting_round.to_dict(), "cup_rows_cleared": cleared},
    )
