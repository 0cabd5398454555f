"""
Cup Scoring Ledger

Cup points use the league's points rule but live in their own table. Every
calculation clears the round's cup rows and re-derives them inside one
transaction, holding the round lock, so reruns never double count.
"""

import logging

from sqlalchemy.exc import OperationalError

from tipster import db
from tipster.models import BettingRound, CupPoints, Season, UserBet
from tipster.services.audit import ACTION_RECALCULATE_CUP, get_default_sink
from tipster.services.exceptions import NotFound, StateError
from tipster.services.results import BatchResult, OperationResult
from tipster.services.season_context import SeasonContext
from tipster.utils.db_utils import datastore_call, error_entry
from tipster.utils.monitoring import monitored_operation, operation_monitor
from tipster.utils.scoring import compute_points
from tipster.utils.timezone_utils import get_utc_time, to_db_time

logger = logging.getLogger(__name__)


class CupScoringLedger:
    """Computes and stores cup points for cup-eligible, scored rounds"""

    def __init__(self, audit_sink=None):
        self.audit_sink = audit_sink or get_default_sink()

    def _derive_round_points(self, betting_round):
        """Cup points per user for a round, from real predictions only"""
        outcomes = {f.id: f.outcome for f in betting_round.fixtures.all()}
        bets = UserBet.query.filter(
            UserBet.betting_round_id == betting_round.id,
            UserBet.prediction.isnot(None),
        ).all()

        totals = {}
        for bet in bets:
            points = compute_points(
                bet.prediction,
                outcomes.get(bet.fixture_id),
                betting_round.is_bonus_round,
            )
            totals[bet.user_id] = totals.get(bet.user_id, 0) + points
        return totals

    def calculate_round(
        self, round_id, context=None, actor_id=None, now=None, refresh=None
    ):
        """
        Clear and recompute one round's cup points

        Args:
            round_id: Betting round to recompute
            context: SeasonContext of the round's season, loaded if omitted
            actor_id: Admin triggering the recalculation, None for pipelines
            now: Calculation time
            refresh: Refresh the season standings afterwards; defaults to
                True for admin recalculations

        Returns:
            OperationResult with users scored and total cup points
        """
        now = now or get_utc_time()

        with datastore_call(f"cup scoring round {round_id}"):
            betting_round = BettingRound.lock(round_id)
            if betting_round is None:
                raise NotFound(f"Betting round {round_id} not found", round_id=round_id)

            context = context or SeasonContext.for_round(betting_round)

            if not betting_round.is_scored:
                db.session.rollback()
                raise StateError(
                    f"{betting_round.display_name} is not scored yet", round_id=round_id
                )
            if not betting_round.is_cup_eligible(context.cup_activated_at):
                db.session.rollback()
                raise StateError(
                    f"{betting_round.display_name} is not cup-eligible",
                    round_id=round_id,
                )

            totals = self._derive_round_points(betting_round)

            cleared = CupPoints.clear_round(round_id)
            calculated_at = to_db_time(now)
            for user_id, points in sorted(totals.items()):
                db.session.add(
                    CupPoints(
                        user_id=user_id,
                        season_id=betting_round.season_id,
                        betting_round_id=round_id,
                        points=points,
                        calculated_at=calculated_at,
                    )
                )

            if actor_id is not None:
                self.audit_sink.record(
                    ACTION_RECALCULATE_CUP,
                    "betting_round",
                    round_id,
                    actor_id=actor_id,
                    before={"rows": cleared},
                    after={"rows": len(totals), "total_points": sum(totals.values())},
                )
            db.session.commit()

        logger.info(
            f"Cup points for round {round_id}: {len(totals)} users, "
            f"{sum(totals.values())} points (cleared {cleared} rows)"
        )

        if refresh is None:
            refresh = actor_id is not None
        if refresh:
            from tipster.services.standings import refresh_seasons

            refresh_seasons([betting_round.season_id], f"cup scoring round {round_id}")

        return OperationResult.ok(
            f"Calculated cup points for {betting_round.display_name}",
            payload={
                "round_id": round_id,
                "users_scored": len(totals),
                "total_points": sum(totals.values()),
                "rows_cleared": cleared,
            },
        )

    @monitored_operation("recalculate_cup_since_activation")
    def recalculate_since_activation(self, season_id, actor_id=None, now=None):
        """
        Recompute cup points for every scored, cup-eligible round of a season

        Rounds are processed one at a time; a failing round is reported and
        the rest still run.
        """
        season = db.session.get(Season, season_id)
        if season is None:
            raise NotFound(f"Season {season_id} not found", season_id=season_id)

        context = SeasonContext.from_season(season)
        result = BatchResult(operation="recalculate_cup_since_activation")

        rounds = (
            BettingRound.query.filter_by(season_id=season_id, status="scored")
            .order_by(BettingRound.sequence)
            .all()
        )
        eligible_ids = [
            r.id for r in rounds if r.is_cup_eligible(context.cup_activated_at)
        ]

        for index, round_id in enumerate(eligible_ids, start=1):
            try:
                outcome = self.calculate_round(
                    round_id, context=context, actor_id=actor_id, now=now, refresh=False
                )
                result.processed.append(outcome.payload)
            except OperationalError:
                raise
            except Exception as e:
                db.session.rollback()
                logger.error(
                    f"Cup recalculation failed for round {round_id}: {e}", exc_info=True
                )
                result.errors.append(error_entry(e, round_id=round_id))
            operation_monitor.progress(
                "recalculate_cup_since_activation", index, len(eligible_ids)
            )

        if result.processed:
            from tipster.services.standings import refresh_seasons

            refresh_seasons([season_id], "cup recalculation")

        return result

    def clear_round(self, round_id):
        """Remove a round's cup rows, inside the caller's transaction"""
        return CupPoints.clear_round(round_id)
