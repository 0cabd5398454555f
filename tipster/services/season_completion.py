"""
Season completion

A season moves from active to completed exactly once. The transition is
guarded by ``completed_at IS NULL`` and the timestamp is the last write of
the unit of work.
"""

import logging

from sqlalchemy.exc import OperationalError

from tipster import db
from tipster.models import Season
from tipster.services.audit import ACTION_COMPLETE_SEASON, get_default_sink
from tipster.services.exceptions import NotFound, SeasonNotEligible
from tipster.services.results import BatchResult, OperationResult
from tipster.utils.db_utils import datastore_call, error_entry
from tipster.utils.monitoring import monitored_operation
from tipster.utils.timezone_utils import ensure_utc, get_utc_time, to_db_time

logger = logging.getLogger(__name__)


def completion_reason(season, now):
    """
    Why a season counts as finished, or None while it is still running

    A season is finished once its end date has passed, or once it has
    fixtures and every one of them is final.
    """
    today = ensure_utc(now).date()
    if season.end_date is not None and season.end_date < today:
        return f"end date {season.end_date.isoformat()} has passed"

    stats = season.get_fixture_stats()
    if stats["total"] and not stats["remaining"]:
        return f"all {stats['total']} fixtures are final"

    return None


def is_season_complete(season, now=None):
    return completion_reason(season, now or get_utc_time()) is not None


def complete_season(season_id, force=False, actor_id=None, now=None, audit_sink=None):
    """
    Mark a season completed

    Args:
        season_id: Season to complete
        force: Admin override, completes regardless of dates and fixtures
        actor_id: Admin triggering the completion, None for scheduled runs
        now: Completion time

    Returns:
        OperationResult; ``already_completed`` is set when a previous run
        did the work

    Raises:
        SeasonNotEligible: The season is still running and force is not set
    """
    audit_sink = audit_sink or get_default_sink()
    now = now or get_utc_time()

    with datastore_call(f"completing season {season_id}"):
        season = db.session.get(Season, season_id)
        if season is None:
            raise NotFound(f"Season {season_id} not found", season_id=season_id)

        payload = {
            "season_id": season.id,
            "season_name": season.name,
            "already_completed": season.completed_at is not None,
            "completed": False,
        }

        if season.completed_at is not None:
            payload["completed_at"] = ensure_utc(season.completed_at).isoformat()
            return OperationResult.ok(
                f"{season.name} is already completed", payload=payload
            )

        reason = "forced by admin" if force else completion_reason(season, now)
        if reason is None:
            raise SeasonNotEligible(
                f"{season.name} is still in progress", season_id=season.id
            )

        completed_at = to_db_time(now)
        audit_sink.record(
            ACTION_COMPLETE_SEASON,
            "season",
            season.id,
            actor_id=actor_id,
            before={"completed_at": None},
            after={"completed_at": ensure_utc(completed_at).isoformat()},
            details={"reason": reason, "forced": force},
        )

        # Guard write goes last
        updated = Season.query.filter(
            Season.id == season.id, Season.completed_at.is_(None)
        ).update({"completed_at": completed_at}, synchronize_session=False)
        if not updated:
            db.session.rollback()
            payload["already_completed"] = True
            return OperationResult.ok(
                f"{season.name} was completed by a concurrent run", payload=payload
            )

        db.session.commit()
        db.session.refresh(season)

    logger.info(f"Season {season.name} completed: {reason}")
    payload.update(
        completed=True,
        completed_at=ensure_utc(season.completed_at).isoformat(),
        reason=reason,
    )
    return OperationResult.ok(f"{season.name} completed ({reason})", payload=payload)


@monitored_operation("season_completion")
def detect_completed_seasons(now=None, audit_sink=None):
    """
    Complete every season that has finished but is not yet marked completed

    Each season is its own unit of work; a failing season is recorded in the
    result's errors and the rest still run.
    """
    now = now or get_utc_time()
    result = BatchResult(operation="season_completion")

    pending = (
        Season.query.filter(Season.completed_at.is_(None)).order_by(Season.id).all()
    )

    for season in pending:
        season_id = season.id
        try:
            if not is_season_complete(season, now):
                result.skipped.append(
                    {"season_id": season_id, "message": f"{season.name} in progress"}
                )
                continue

            outcome = complete_season(season_id, now=now, audit_sink=audit_sink)
            entry = dict(outcome.payload, message=outcome.message)
            if outcome.payload["completed"]:
                result.processed.append(entry)
            else:
                result.skipped.append(entry)
        except OperationalError:
            raise
        except Exception as e:
            db.session.rollback()
            logger.error(
                f"Season completion failed for season {season_id}: {e}", exc_info=True
            )
            result.errors.append(error_entry(e, season_id=season_id))

    return result
