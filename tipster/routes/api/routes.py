from datetime import datetime, timezone

from flask import jsonify, request
from flask_login import current_user, login_required

from tipster import db, limiter
from tipster.models import Season, SeasonWinner
from tipster.models.season_winner import COMPETITION_CUP, COMPETITION_LEAGUE
from tipster.routes.api import bp
from tipster.services.exceptions import NotFound
from tipster.services.round_gate import submit_bets
from tipster.services.standings import get_cup_standings, get_league_standings


def _get_season_or_404(season_id):
    season = db.session.get(Season, season_id)
    if season is None:
        raise NotFound(f"Season {season_id} not found", season_id=season_id)
    return season


@bp.route("/bets", methods=["POST"])
@login_required
@limiter.limit("30 per minute")
def bets():
    """Submit or overwrite predictions for one open round"""
    payload = request.get_json(silent=True)
    result = submit_bets(current_user.id, payload)
    return jsonify(result.to_dict()), result.status_code


@bp.route("/seasons/current")
def current_season():
    """Get the current season"""
    season = Season.get_current_season()
    if season is None:
        raise NotFound("No active season")
    return jsonify(season.to_dict())


@bp.route("/seasons/<int:season_id>/standings")
def league_standings(season_id):
    """League table for a season"""
    season = _get_season_or_404(season_id)
    return jsonify(
        {
            "success": True,
            "season_id": season.id,
            "season_name": season.name,
            "standings": get_league_standings(season.id),
        }
    )


@bp.route("/seasons/<int:season_id>/standings/cup")
def cup_standings(season_id):
    """Cup table for a season, empty until the season or a round counts for the cup"""
    season = _get_season_or_404(season_id)
    has_cup = season.has_cup
    return jsonify(
        {
            "success": True,
            "season_id": season.id,
            "season_name": season.name,
            "cup_activated": season.is_cup_activated,
            "has_cup": has_cup,
            "standings": get_cup_standings(season.id) if has_cup else [],
        }
    )


@bp.route("/seasons/<int:season_id>/winners")
def season_winners(season_id):
    """Recorded league and cup winners of a season"""
    season = _get_season_or_404(season_id)
    return jsonify(
        {
            "success": True,
            "season_id": season.id,
            "winner_determined": season.winner_determined_at is not None,
            "league": [
                w.to_dict()
                for w in SeasonWinner.get_season_winners(season.id, COMPETITION_LEAGUE)
            ],
            "cup": [
                w.to_dict()
                for w in SeasonWinner.get_season_winners(season.id, COMPETITION_CUP)
            ],
        }
    )


@bp.route("/health")
@limiter.exempt
def health():
    """Health check endpoint - exempt from rate limiting for monitoring systems"""
    return jsonify(
        {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}
    )
