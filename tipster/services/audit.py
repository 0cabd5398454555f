"""
Audit sinks for mutating core operations.

The core only calls ``AuditSink.record``; where events end up is decided by
the sink handed to each service.
"""

import logging

logger = logging.getLogger(__name__)

# Audited actions
ACTION_TOGGLE_BONUS_MODE = "toggle_bonus_mode"
ACTION_ACTIVATE_CUP = "activate_cup"
ACTION_DEACTIVATE_CUP = "deactivate_cup"
ACTION_RETROACTIVE_AWARD = "retroactive_award"
ACTION_RECALCULATE_ROUND = "recalculate_round_points"
ACTION_RECALCULATE_CUP = "recalculate_cup_points"
ACTION_COMPLETE_SEASON = "complete_season"
ACTION_DETERMINE_WINNERS = "determine_winners"


class AuditSink:
    """Interface for recording audit events"""

    def record(
        self,
        action,
        entity_type,
        entity_id=None,
        actor_id=None,
        before=None,
        after=None,
        details=None,
    ):
        raise NotImplementedError


class DatabaseAuditSink(AuditSink):
    """Stores events as AdminAction rows inside the caller's transaction"""

    def record(
        self,
        action,
        entity_type,
        entity_id=None,
        actor_id=None,
        before=None,
        after=None,
        details=None,
    ):
        from tipster.models import AdminAction

        AdminAction.log_action(
            action_type=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            before=before,
            after=after,
            action_metadata=details,
        )
        logger.info(
            f"Audit: {action} on {entity_type}:{entity_id} by {actor_id or 'system'}"
        )


def get_default_sink():
    return DatabaseAuditSink()
