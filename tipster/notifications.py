"""
SocketIO events for standings and round updates

The notification layer (emails, live tables) consumes these events; the
scoring core only produces the data.
"""

import logging

from flask import request
from flask_socketio import emit

from tipster import socketio

logger = logging.getLogger(__name__)

NAMESPACE = "/standings"


@socketio.on("connect", namespace=NAMESPACE)
def on_connect():
    """Send the current league table to a newly connected client"""
    try:
        from tipster.models import Season
        from tipster.services.standings import get_league_standings

        logger.info(f"Client connected to {NAMESPACE}: {request.sid}")

        season = Season.get_current_season()
        if season:
            emit(
                "standings_snapshot",
                {"season_id": season.id, "standings": get_league_standings(season.id)},
            )

    except Exception as e:
        logger.error(f"Error in standings connect: {e}")


def _broadcast(event, data):
    try:
        socketio.emit(event, data, namespace=NAMESPACE)
        logger.debug(f"Broadcast {event}")
    except Exception as e:
        logger.error(f"Error broadcasting {event}: {e}")


def broadcast_round_scored(betting_round):
    _broadcast(
        "round_scored",
        {
            "round_id": betting_round.id,
            "season_id": betting_round.season_id,
            "name": betting_round.display_name,
            "scored_at": (
                betting_round.scored_at.isoformat() if betting_round.scored_at else None
            ),
        },
    )


def broadcast_standings_updated(season_id, standings):
    _broadcast("standings_updated", {"season_id": season_id, "standings": standings})


def broadcast_cup_activated(season):
    _broadcast(
        "cup_activated",
        {
            "season_id": season.id,
            "season_name": season.name,
            "activated_at": (
                season.cup_activated_at.isoformat() if season.cup_activated_at else None
            ),
        },
    )


def broadcast_season_winners(season, winners):
    _broadcast(
        "season_winners",
        {
            "season_id": season.id,
            "season_name": season.name,
            "winners": [winner.to_dict() for winner in winners],
        },
    )
