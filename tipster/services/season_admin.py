"""
Season-level admin switches
"""

import logging

from tipster import db
from tipster.models import Season
from tipster.services.audit import ACTION_TOGGLE_BONUS_MODE, get_default_sink
from tipster.services.exceptions import NotFound
from tipster.services.results import OperationResult
from tipster.utils.db_utils import datastore_call

logger = logging.getLogger(__name__)


def set_bonus_mode(season_id, active, actor_id=None, audit_sink=None):
    """
    Turn global bonus mode on or off for a season

    Rounds pick the flag up when they are scored; rounds that are already
    scored keep the bonus flag they were scored with.
    """
    audit_sink = audit_sink or get_default_sink()

    with datastore_call(f"bonus toggle for season {season_id}"):
        season = db.session.get(Season, season_id)
        if season is None:
            raise NotFound(f"Season {season_id} not found", season_id=season_id)

        before = season.bonus_mode_active
        season.bonus_mode_active = bool(active)

        audit_sink.record(
            ACTION_TOGGLE_BONUS_MODE,
            "season",
            season.id,
            actor_id=actor_id,
            before={"bonus_mode_active": before},
            after={"bonus_mode_active": season.bonus_mode_active},
        )
        db.session.commit()

    state = "enabled" if season.bonus_mode_active else "disabled"
    logger.info(f"Bonus mode {state} for {season.name} by user {actor_id}")
    return OperationResult.ok(
        f"Bonus mode {state} for {season.name}",
        payload={"season": season.to_dict(), "changed": before != season.bonus_mode_active},
    )
