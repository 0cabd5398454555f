"""
Winner determination

Runs against completed seasons only. The top of the final league table (and
of the cup table, when the season or any of its rounds counted for the cup)
is written as SeasonWinner rows, one per user sharing the highest total. The
season's ``winner_determined_at`` and ``cup_winner_determined_at`` timestamps
are the guards and are written after the rows, in the same transaction.
"""

import logging

from sqlalchemy.exc import OperationalError

from tipster import db
from tipster.models import Season, SeasonWinner
from tipster.models.season_winner import COMPETITION_CUP, COMPETITION_LEAGUE
from tipster.services.audit import ACTION_DETERMINE_WINNERS, get_default_sink
from tipster.services.exceptions import NotFound, SeasonNotEligible
from tipster.services.results import BatchResult, OperationResult
from tipster.services.standings import (
    calculate_cup_standings,
    calculate_league_standings,
    top_entries,
)
from tipster.utils.db_utils import datastore_call, error_entry
from tipster.utils.monitoring import monitored_operation
from tipster.utils.timezone_utils import get_utc_time, to_db_time

logger = logging.getLogger(__name__)


def _record_winners(season, competition_type, standings):
    """Add a SeasonWinner row for every user tied at the top"""
    existing = SeasonWinner.get_season_winners(season.id, competition_type)
    if existing:
        return existing

    winners = []
    for entry in top_entries(standings):
        winner = SeasonWinner(
            season_id=season.id,
            user_id=entry.user_id,
            competition_type=competition_type,
            total_points=entry.total_points,
        )
        db.session.add(winner)
        winners.append(winner)
    return winners


def _winner_summary(winners):
    return [
        {"user_id": w.user_id, "total_points": w.total_points} for w in winners
    ]


def determine_winners(season_id, actor_id=None, now=None, audit_sink=None):
    """
    Record the league (and cup) winners of a completed season

    A second run finds the guards set and reports ``already_determined``
    without writing anything.

    Raises:
        NotFound: Unknown season
        SeasonNotEligible: The season is not completed yet
    """
    audit_sink = audit_sink or get_default_sink()
    now = now or get_utc_time()

    with datastore_call(f"determining winners for season {season_id}"):
        season = db.session.get(Season, season_id)
        if season is None:
            raise NotFound(f"Season {season_id} not found", season_id=season_id)

        league_pending = season.winner_determined_at is None
        cup_pending = season.has_cup and season.cup_winner_determined_at is None

        payload = {
            "season_id": season.id,
            "season_name": season.name,
            "already_determined": not (league_pending or cup_pending),
            "league_winners": [],
            "cup_winners": [],
        }

        if payload["already_determined"]:
            payload["league_winners"] = _winner_summary(
                SeasonWinner.get_season_winners(season.id, COMPETITION_LEAGUE)
            )
            payload["cup_winners"] = _winner_summary(
                SeasonWinner.get_season_winners(season.id, COMPETITION_CUP)
            )
            return OperationResult.ok(
                f"Winners already determined for {season.name}", payload=payload
            )

        if not season.is_completed:
            raise SeasonNotEligible(
                f"{season.name} is not completed yet", season_id=season.id
            )

        league_winners = []
        cup_winners = []
        guards = {}
        determined_at = to_db_time(now)

        if league_pending:
            league_winners = _record_winners(
                season, COMPETITION_LEAGUE, calculate_league_standings(season.id)
            )
            guards["winner_determined_at"] = determined_at
        if cup_pending:
            cup_winners = _record_winners(
                season, COMPETITION_CUP, calculate_cup_standings(season.id)
            )
            guards["cup_winner_determined_at"] = determined_at

        db.session.flush()
        payload["league_winners"] = _winner_summary(league_winners)
        payload["cup_winners"] = _winner_summary(cup_winners)

        audit_sink.record(
            ACTION_DETERMINE_WINNERS,
            "season",
            season.id,
            actor_id=actor_id,
            before={key: None for key in guards},
            after={
                "league_winners": payload["league_winners"],
                "cup_winners": payload["cup_winners"],
            },
        )

        # Guard writes go last
        guard_query = Season.query.filter(Season.id == season.id)
        if league_pending:
            guard_query = guard_query.filter(Season.winner_determined_at.is_(None))
        if cup_pending:
            guard_query = guard_query.filter(Season.cup_winner_determined_at.is_(None))
        if not guard_query.update(guards, synchronize_session=False):
            db.session.rollback()
            payload["already_determined"] = True
            return OperationResult.ok(
                f"Winners for {season.name} were determined by a concurrent run",
                payload=payload,
            )

        db.session.commit()
        db.session.refresh(season)

    if not league_winners and league_pending:
        logger.warning(f"{season.name} completed without any league participants")

    logger.info(
        f"Winners determined for {season.name}: "
        f"{len(league_winners)} league, {len(cup_winners)} cup"
    )

    from tipster.notifications import broadcast_season_winners

    broadcast_season_winners(season, league_winners + cup_winners)

    return OperationResult.ok(
        f"Determined {len(league_winners)} league and {len(cup_winners)} cup "
        f"winners for {season.name}",
        payload=payload,
    )


@monitored_operation("winner_determination")
def determine_pending(now=None, audit_sink=None):
    """
    Determine winners for every completed season still missing them

    One season's failure is recorded and does not stop the others.
    """
    now = now or get_utc_time()
    result = BatchResult(operation="winner_determination")

    pending_ids = [
        season_id
        for (season_id,) in db.session.query(Season.id)
        .filter(
            Season.completed_at.isnot(None),
            db.or_(
                Season.winner_determined_at.is_(None),
                db.and_(
                    Season.has_cup_clause(),
                    Season.cup_winner_determined_at.is_(None),
                ),
            ),
        )
        .order_by(Season.completed_at, Season.id)
        .all()
    ]

    for season_id in pending_ids:
        try:
            outcome = determine_winners(season_id, now=now, audit_sink=audit_sink)
            entry = dict(outcome.payload, message=outcome.message)
            if outcome.payload["already_determined"]:
                result.skipped.append(entry)
            else:
                result.processed.append(entry)
        except OperationalError:
            raise
        except Exception as e:
            db.session.rollback()
            logger.error(
                f"Winner determination failed for season {season_id}: {e}",
                exc_info=True,
            )
            result.errors.append(error_entry(e, season_id=season_id))

    return result
