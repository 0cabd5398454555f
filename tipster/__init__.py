import logging
import os

import redis
from flask import Flask, jsonify, request
from flask_caching import Cache
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_socketio import SocketIO
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFProtect

from config import config

logger = logging.getLogger(__name__)

db = SQLAlchemy()
login_manager = LoginManager()
socketio = SocketIO()
cache = Cache()
migrate = Migrate()
csrf = CSRFProtect()


def redis_available(url, purpose):
    """Ping a Redis URL; failures only mean falling back to local storage"""
    if not url:
        return False
    try:
        redis.Redis.from_url(url).ping()
    except redis.exceptions.RedisError as e:
        logger.warning(f"Redis not available for {purpose}: {e}")
        return False
    logger.info(f"Using Redis at {url} for {purpose}")
    return True


def get_real_ip():
    """Client IP behind a reverse proxy, falling back to remote_addr"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or get_remote_address()


# Shared rate limit storage across workers when Redis is there
_limiter_redis = os.environ.get("REDIS_URL") or os.environ.get("CACHE_REDIS_URL")

limiter = Limiter(
    key_func=get_real_ip,
    default_limits=["10000 per day", "1000 per hour"],
    storage_uri=(
        _limiter_redis if redis_available(_limiter_redis, "rate limiting") else "memory://"
    ),
)


def create_app(config_name=None):
    app = Flask(__name__)

    if config_name is None:
        config_name = os.environ.get("FLASK_CONFIG", "default")

    app.config.from_object(config[config_name]())
    app.config.update(
        SESSION_COOKIE_SAMESITE="Lax",
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SECURE=(
            not app.config.get("DEBUG") and app.config.get("FLASK_ENV") == "production"
        ),
        PERMANENT_SESSION_LIFETIME=86400,
    )

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)
    cache.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    limiter.init_app(app)

    allowed_origins = app.config.get("SOCKETIO_CORS_ORIGINS", "*")
    if allowed_origins == "*" and not app.config.get("DEBUG"):
        allowed_origins = [
            origin.strip()
            for origin in os.environ.get("ALLOWED_ORIGINS", "").split(",")
            if origin.strip()
        ]

    # Every worker publishes standings events through the Redis queue
    queue_url = os.environ.get("REDIS_URL")
    message_queue = None
    if not app.config.get("TESTING") and redis_available(queue_url, "Socket.IO events"):
        message_queue = queue_url

    socketio.init_app(
        app,
        cors_allowed_origins=allowed_origins,
        async_mode=app.config.get("SOCKETIO_ASYNC_MODE", "eventlet"),
        ping_timeout=60,
        ping_interval=25,
        message_queue=message_queue,
    )

    # Import and register blueprints
    from tipster.routes.admin import bp as admin_bp
    from tipster.routes.api import bp as api_bp
    from tipster.routes.cron import bp as cron_bp

    app.register_blueprint(api_bp, url_prefix="/api")
    app.register_blueprint(admin_bp, url_prefix="/admin")

    # Cron triggers authenticate with a bearer secret, not a session
    csrf.exempt(cron_bp)
    app.register_blueprint(cron_bp, url_prefix="/cron")

    register_error_handlers(app)

    from tipster.utils.logging_config import setup_logging

    setup_logging(app)
    log_startup_summary(app, config_name)

    with app.app_context():
        db.create_all()

    # Socket.IO namespace handlers
    from tipster import notifications  # noqa: F401 - imported for side effects

    return app


def log_startup_summary(app, config_name):
    """Log the settings that change how scoring and triggers behave"""
    import warnings

    logger.info(f"Tipster starting with '{config_name}' configuration")

    if config_name == "production" and app.config.get("DEBUG"):
        warnings.warn("DEBUG mode is enabled in production!", UserWarning)

    if not app.config.get("CRON_SECRET"):
        logger.warning("CRON_SECRET not set, cron endpoints will reject every call")

    logger.info(
        f"Cup activation at {app.config.get('CUP_ACTIVATION_THRESHOLD')}% of teams "
        f"with at most {app.config.get('CUP_MAX_REMAINING_GAMES')} games left"
    )

    db_url = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    backend = db_url.split("://")[0] if "://" in db_url else "unknown"
    logger.info(f"Using database backend {backend}")


def _json_error(code, message, status):
    return jsonify({"success": False, "error": code, "message": message}), status


def register_error_handlers(app):
    """Register global error handlers; every error answers JSON"""
    from flask_wtf.csrf import CSRFError

    from tipster.services.exceptions import TipsterError

    @app.after_request
    def after_request(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if not app.config.get("DEBUG"):
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    @app.errorhandler(TipsterError)
    def handle_tipster_error(error):
        if error.status_code >= 500:
            logger.error(
                f"{error.code}: {error.message} - Path: {request.path}",
                exc_info=True,
            )
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(CSRFError)
    def handle_csrf_error(error):
        logger.warning(f"CSRF Error: {error.description} - Path: {request.path}")
        return _json_error("csrf_failed", error.description, 400)

    @app.errorhandler(400)
    def bad_request_error(error):
        logger.warning(f"400 Bad Request: {error} - {request.method} {request.path}")
        return _json_error("bad_request", "Bad request", 400)

    @app.errorhandler(403)
    def forbidden_error(error):
        return _json_error("forbidden", "Access forbidden", 403)

    @app.errorhandler(404)
    def not_found_error(error):
        return _json_error("not_found", "Resource not found", 404)

    @app.errorhandler(429)
    def too_many_requests_error(error):
        return _json_error("rate_limited", "Too many requests", 429)

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return _json_error("internal_error", "Internal server error", 500)


from tipster import models  # noqa: F401, E402 - imported for model registration
