from datetime import datetime
from functools import wraps

from flask import current_app, jsonify, request
from flask_login import current_user, login_required

from tipster.models import AdminAction
from tipster.routes.admin import bp
from tipster.services.cup_activation import (
    CupActivationDetector,
    set_round_cup_activation,
)
from tipster.services.cup_scoring import CupScoringLedger
from tipster.services.exceptions import Forbidden, MalformedPayload
from tipster.services.retroactive_points import RetroactivePointsService
from tipster.services.round_scoring import recalculate_round
from tipster.services.season_admin import set_bonus_mode
from tipster.services.season_completion import complete_season
from tipster.services.winner_determination import determine_winners
from tipster.utils.cache_utils import get_cache_stats
from tipster.utils.monitoring import operation_monitor


def admin_required(f):
    """Require a logged-in admin; answers JSON errors instead of redirects"""

    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if not current_user.is_admin:
            raise Forbidden("Admin privileges required")
        return f(*args, **kwargs)

    return decorated_function


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise MalformedPayload("Expected a JSON object")
    return data


def _int_field(data, key, required=True):
    value = data.get(key)
    if value is None:
        if required:
            raise MalformedPayload(f"'{key}' is required", field=key)
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedPayload(f"'{key}' must be an integer", field=key)


def _bool_field(data, key, default=False):
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise MalformedPayload(f"'{key}' must be true or false", field=key)
    return value


def _datetime_field(data, key):
    value = data.get(key)
    if not value:
        raise MalformedPayload(f"'{key}' is required", field=key)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise MalformedPayload(f"'{key}' must be an ISO 8601 timestamp", field=key)


def _retro_service():
    return RetroactivePointsService(
        batch_size=current_app.config.get("RETROACTIVE_BATCH_SIZE", 25)
    )


def _respond(result):
    return jsonify(result.to_dict()), result.status_code


# ----------------------------------------------------------------------
# Retroactive points
# ----------------------------------------------------------------------


@bp.route("/retroactive/check-user", methods=["POST"])
@admin_required
def retroactive_check_user():
    """Does a user need retroactive points?"""
    data = _json_body()
    report = _retro_service().check_user(
        _int_field(data, "user_id"), _int_field(data, "competition_id")
    )
    return jsonify(dict(report, success=True))


def _run_user_allocation(dry_run):
    data = _json_body()
    result = _retro_service().allocate_for_user(
        _int_field(data, "user_id"),
        _int_field(data, "competition_id"),
        from_round_id=_int_field(data, "from_round_id", required=False),
        dry_run=dry_run,
        actor_id=current_user.id,
    )
    return _respond(result)


@bp.route("/retroactive/preview-user", methods=["POST"])
@admin_required
def retroactive_preview_user():
    return _run_user_allocation(dry_run=True)


@bp.route("/retroactive/apply-user", methods=["POST"])
@admin_required
def retroactive_apply_user():
    return _run_user_allocation(dry_run=False)


def _run_bulk_allocation(dry_run):
    data = _json_body()
    result = _retro_service().allocate_bulk(
        _int_field(data, "competition_id"),
        _datetime_field(data, "created_after"),
        dry_run=dry_run,
        actor_id=current_user.id,
    )
    return _respond(result)


@bp.route("/retroactive/preview-bulk", methods=["POST"])
@admin_required
def retroactive_preview_bulk():
    return _run_bulk_allocation(dry_run=True)


@bp.route("/retroactive/apply-bulk", methods=["POST"])
@admin_required
def retroactive_apply_bulk():
    return _run_bulk_allocation(dry_run=False)


# ----------------------------------------------------------------------
# Rounds
# ----------------------------------------------------------------------


@bp.route("/rounds/<int:round_id>/recalculate", methods=["POST"])
@admin_required
def round_recalculate(round_id):
    """Explicit league recalculation of a scored round"""
    return _respond(recalculate_round(round_id, actor_id=current_user.id))


@bp.route("/rounds/<int:round_id>/cup/recalculate", methods=["POST"])
@admin_required
def round_cup_recalculate(round_id):
    return _respond(
        CupScoringLedger().calculate_round(round_id, actor_id=current_user.id)
    )


@bp.route("/rounds/<int:round_id>/cup", methods=["POST"])
@admin_required
def round_cup_toggle(round_id):
    """Set or clear a round's cup activation"""
    data = _json_body()
    return _respond(
        set_round_cup_activation(
            round_id, _bool_field(data, "activated"), actor_id=current_user.id
        )
    )


# ----------------------------------------------------------------------
# Seasons
# ----------------------------------------------------------------------


@bp.route("/seasons/<int:season_id>/bonus", methods=["POST"])
@admin_required
def season_bonus_toggle(season_id):
    data = _json_body()
    return _respond(
        set_bonus_mode(season_id, _bool_field(data, "active"), actor_id=current_user.id)
    )


@bp.route("/seasons/<int:season_id>/cup/check", methods=["POST"])
@admin_required
def season_cup_check(season_id):
    """Run cup activation detection for one season"""
    detector = CupActivationDetector.from_config(current_app.config)
    return _respond(detector.check_season(season_id, actor_id=current_user.id))


@bp.route("/seasons/<int:season_id>/cup/recalculate", methods=["POST"])
@admin_required
def season_cup_recalculate(season_id):
    """Recompute cup points for every cup round since activation"""
    return _respond(
        CupScoringLedger().recalculate_since_activation(
            season_id, actor_id=current_user.id
        )
    )


@bp.route("/seasons/<int:season_id>/complete", methods=["POST"])
@admin_required
def season_complete(season_id):
    data = _json_body()
    return _respond(
        complete_season(
            season_id, force=_bool_field(data, "force"), actor_id=current_user.id
        )
    )


@bp.route("/seasons/<int:season_id>/winners", methods=["POST"])
@admin_required
def season_determine_winners(season_id):
    return _respond(determine_winners(season_id, actor_id=current_user.id))


# ----------------------------------------------------------------------
# Monitoring
# ----------------------------------------------------------------------


@bp.route("/operations")
@admin_required
def operations_status():
    """Per-operation run statistics and cache configuration"""
    return jsonify(
        {
            "success": True,
            "operations": operation_monitor.get_status(),
            "cache": get_cache_stats(),
        }
    )


@bp.route("/audit")
@admin_required
def audit_log():
    """Most recent audited admin actions"""
    limit = min(request.args.get("limit", 50, type=int), 500)
    entity_type = request.args.get("entity_type")
    actions = AdminAction.get_recent(limit=limit, entity_type=entity_type)
    return jsonify({"success": True, "actions": [a.to_dict() for a in actions]})
