import hmac
import logging
from functools import wraps

from flask import current_app, jsonify, request

from tipster import limiter
from tipster.routes.cron import bp
from tipster.services.cup_activation import CupActivationDetector
from tipster.services.exceptions import Forbidden, Unauthenticated
from tipster.services.round_scoring import process_rounds
from tipster.services.season_completion import detect_completed_seasons
from tipster.services.winner_determination import determine_pending

logger = logging.getLogger(__name__)


def cron_secret_required(f):
    """Authenticate external triggers with ``Authorization: Bearer <CRON_SECRET>``"""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        secret = current_app.config.get("CRON_SECRET")
        if not secret:
            logger.error("Cron trigger rejected: CRON_SECRET is not configured")
            raise Forbidden("Cron triggers are disabled")

        header = request.headers.get("Authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not hmac.compare_digest(
            token.strip().encode(), secret.encode()
        ):
            logger.warning(f"Cron trigger with invalid credentials from {request.remote_addr}")
            raise Unauthenticated("Invalid cron credentials")

        return f(*args, **kwargs)

    return decorated_function


def _respond(result):
    return jsonify(result.to_dict()), result.status_code


@bp.route("/process-rounds", methods=["POST"])
@limiter.exempt
@cron_secret_required
def cron_process_rounds():
    """Detect finished rounds, score them and score the cup"""
    return _respond(process_rounds())


@bp.route("/cup-activation", methods=["POST"])
@limiter.exempt
@cron_secret_required
def cron_cup_activation():
    detector = CupActivationDetector.from_config(current_app.config)
    return _respond(detector.run())


@bp.route("/season-completion", methods=["POST"])
@limiter.exempt
@cron_secret_required
def cron_season_completion():
    return _respond(detect_completed_seasons())


@bp.route("/winner-determination", methods=["POST"])
@limiter.exempt
@cron_secret_required
def cron_winner_determination():
    return _respond(determine_pending())
