"""
Round scoring

Applies the points engine to finished rounds. Each round is a unit of work:
its bets are scored and the ``scored`` status (with ``scored_at``) is written
last, in the same transaction, while the round row is locked.
"""

import logging

from sqlalchemy.exc import OperationalError

from tipster import db
from tipster.models import BettingRound, Season, UserBet
from tipster.models.betting_round import (
    ROUND_STATUS_OPEN,
    ROUND_STATUS_SCORED,
    ROUND_STATUS_SCORING,
)
from tipster.services.audit import ACTION_RECALCULATE_ROUND, get_default_sink
from tipster.services.exceptions import NotFound, StateError
from tipster.services.results import BatchResult, OperationResult
from tipster.services.season_context import SeasonContext
from tipster.utils.db_utils import datastore_call, error_entry
from tipster.utils.monitoring import monitored_operation
from tipster.utils.scoring import compute_points
from tipster.utils.timezone_utils import get_utc_time, to_db_time

logger = logging.getLogger(__name__)


def _load_round_locked(round_id):
    betting_round = BettingRound.lock(round_id)
    if betting_round is None:
        raise NotFound(f"Betting round {round_id} not found", round_id=round_id)
    return betting_round


def _fixture_outcomes(betting_round):
    return {fixture.id: fixture.outcome for fixture in betting_round.fixtures.all()}


def detect_completed_rounds(now=None):
    """
    Move open rounds whose fixtures are all final to scoring

    Returns:
        list: ids of rounds moved to scoring
    """
    now = now or get_utc_time()
    moved = []

    open_rounds = (
        BettingRound.query.filter_by(status=ROUND_STATUS_OPEN)
        .filter(BettingRound.earliest_fixture_kickoff <= to_db_time(now))
        .order_by(BettingRound.id)
        .all()
    )

    for betting_round in open_rounds:
        if betting_round.fixtures.count() and betting_round.all_fixtures_resolved():
            betting_round.status = ROUND_STATUS_SCORING
            moved.append(betting_round.id)
            logger.info(f"Round {betting_round.id} finished, moved to scoring")

    if moved:
        db.session.commit()

    return moved


def score_round(round_id, context=None, now=None):
    """
    Score every unscored bet of a round whose fixtures are all final

    Args:
        round_id: Betting round to score
        context: SeasonContext for the round's season, loaded if omitted
        now: Scoring time for scored_at

    Returns:
        OperationResult whose payload says whether the round was scored,
        deferred (fixtures still playing) or already scored
    """
    now = now or get_utc_time()

    with datastore_call(f"scoring round {round_id}"):
        betting_round = _load_round_locked(round_id)
        context = context or SeasonContext.for_round(betting_round)

        if betting_round.status == ROUND_STATUS_SCORED:
            db.session.rollback()
            return OperationResult.ok(
                f"{betting_round.display_name} already scored",
                payload={"round_id": round_id, "state": "already_scored", "bets_scored": 0},
            )

        unresolved = betting_round.unresolved_fixture_ids()
        if unresolved:
            db.session.rollback()
            logger.warning(
                f"Deferring round {round_id}, fixtures without a final result: {unresolved}"
            )
            return OperationResult.ok(
                f"{betting_round.display_name} still has fixtures in play",
                payload={"round_id": round_id, "state": "deferred", "bets_scored": 0},
            )

        betting_round.status = ROUND_STATUS_SCORING

        # The round keeps whatever bonus flag it held when it was scored
        if context.bonus_mode_active and not betting_round.is_bonus_round:
            betting_round.is_bonus_round = True

        outcomes = _fixture_outcomes(betting_round)
        unscored = UserBet.query.filter(
            UserBet.betting_round_id == round_id,
            UserBet.points_awarded.is_(None),
            UserBet.prediction.isnot(None),
        ).all()

        for bet in unscored:
            bet.points_awarded = compute_points(
                bet.prediction, outcomes.get(bet.fixture_id), betting_round.is_bonus_round
            )

        betting_round.scored_at = to_db_time(now)
        betting_round.status = ROUND_STATUS_SCORED
        db.session.commit()

    logger.info(
        f"Scored {len(unscored)} bets for round {round_id} "
        f"(bonus={betting_round.is_bonus_round})"
    )

    from tipster.notifications import broadcast_round_scored

    broadcast_round_scored(betting_round)

    return OperationResult.ok(
        f"Scored {len(unscored)} bets for {betting_round.display_name}",
        payload={
            "round_id": round_id,
            "state": "scored",
            "bets_scored": len(unscored),
            "is_bonus_round": betting_round.is_bonus_round,
        },
    )


@monitored_operation("recalculate_round")
def recalculate_round(round_id, actor_id=None, audit_sink=None):
    """
    Explicit league recalculation pass for one scored round

    Every real bet of the round is rewritten inside one transaction while the
    round row is locked, so a failure leaves the previous points untouched.
    """
    audit_sink = audit_sink or get_default_sink()

    with datastore_call(f"recalculating round {round_id}"):
        betting_round = _load_round_locked(round_id)
        if betting_round.status != ROUND_STATUS_SCORED:
            db.session.rollback()
            raise StateError(
                f"{betting_round.display_name} is not scored yet", round_id=round_id
            )

        outcomes = _fixture_outcomes(betting_round)
        bets = UserBet.query.filter(
            UserBet.betting_round_id == round_id, UserBet.prediction.isnot(None)
        ).all()

        before_total = sum(bet.points_awarded or 0 for bet in bets)
        changed = 0
        for bet in bets:
            points = compute_points(
                bet.prediction, outcomes.get(bet.fixture_id), betting_round.is_bonus_round
            )
            if bet.points_awarded != points:
                bet.points_awarded = points
                changed += 1
        after_total = sum(bet.points_awarded for bet in bets)

        audit_sink.record(
            ACTION_RECALCULATE_ROUND,
            "betting_round",
            round_id,
            actor_id=actor_id,
            before={"total_points": before_total},
            after={"total_points": after_total},
            details={"bets": len(bets), "changed": changed},
        )
        db.session.commit()

    logger.info(f"Recalculated round {round_id}: {changed}/{len(bets)} bets changed")

    from tipster.services.standings import refresh_seasons

    standings_refreshed = refresh_seasons(
        [betting_round.season_id], f"recalculating round {round_id}"
    )
    return OperationResult.ok(
        f"Recalculated {len(bets)} bets for {betting_round.display_name}",
        payload={
            "round_id": round_id,
            "bets_recalculated": len(bets),
            "bets_changed": changed,
            "total_points": after_total,
            "standings_refreshed": standings_refreshed,
        },
    )


@monitored_operation("process_rounds")
def process_rounds(now=None, cup_ledger=None):
    """
    One pass of the round pipeline: detect finished rounds, score them and
    score the cup for newly scored cup-eligible rounds

    Returns:
        BatchResult with one entry per round
    """
    from tipster.services.cup_scoring import CupScoringLedger
    from tipster.services.standings import refresh_seasons

    now = now or get_utc_time()
    cup_ledger = cup_ledger or CupScoringLedger()
    result = BatchResult(operation="process_rounds")

    detect_completed_rounds(now)

    pending_ids = [
        round_id
        for (round_id,) in db.session.query(BettingRound.id)
        .filter(BettingRound.status == ROUND_STATUS_SCORING)
        .order_by(BettingRound.id)
        .all()
    ]

    touched_seasons = set()
    for round_id in pending_ids:
        try:
            outcome = score_round(round_id, now=now)
            state = outcome.payload["state"]
            if state != "scored":
                result.skipped.append({"round_id": round_id, "state": state})
                continue

            betting_round = db.session.get(BettingRound, round_id)
            touched_seasons.add(betting_round.season_id)
            entry = {"round_id": round_id, "bets_scored": outcome.payload["bets_scored"]}

            season = db.session.get(Season, betting_round.season_id)
            if betting_round.is_cup_eligible(season.cup_activated_at):
                cup_outcome = cup_ledger.calculate_round(round_id)
                entry["cup_users_scored"] = cup_outcome.payload["users_scored"]

            result.processed.append(entry)
        except OperationalError:
            raise
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error processing round {round_id}: {e}", exc_info=True)
            result.errors.append(error_entry(e, round_id=round_id))

    if touched_seasons:
        refresh_seasons(touched_seasons, "round processing")

    return result
