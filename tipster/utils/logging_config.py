"""
Logging configuration for Tipster

Console output, a rotating application log, a rotating error log and a
separate operations log for the monitored scoring, cup and season runs.
"""

import logging
import logging.handlers
import os

from flask import has_request_context, request

MB = 1024 * 1024

BASE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEBUG_FORMAT = BASE_FORMAT + " [%(filename)s:%(lineno)d]"
FILE_FORMAT = BASE_FORMAT + " [%(method)s %(url)s] [%(remote_addr)s]"
ERROR_FORMAT = BASE_FORMAT + " [%(pathname)s:%(lineno)d] [%(method)s %(url)s]"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers that only matter when something goes wrong
QUIET_LOGGERS = ("werkzeug", "engineio", "socketio", "flask_limiter")

OPERATIONS_LOGGER = "tipster.utils.monitoring"


class RequestContextFilter(logging.Filter):
    """Add request details to log records; cron and CLI runs get N/A"""

    def filter(self, record):
        in_request = has_request_context()
        record.url = request.path if in_request else "N/A"
        record.method = request.method if in_request else "N/A"
        record.remote_addr = request.remote_addr if in_request else "N/A"
        return True


class ColoredFormatter(logging.Formatter):
    """Colour the level name on interactive consoles"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelname)
        if color:
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def _rotating_handler(log_dir, filename, level, fmt, max_mb, backups):
    handler = logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, filename), maxBytes=max_mb * MB, backupCount=backups
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=DATE_FORMAT))
    handler.addFilter(RequestContextFilter())
    return handler


def setup_logging(app):
    """
    Setup logging for the Flask application

    Args:
        app: Flask application instance
    """
    log_level = getattr(logging, app.config.get("LOG_LEVEL", "INFO").upper(), logging.INFO)
    log_dir = app.config.get("LOG_DIR", "logs")
    log_to_file = app.config.get("LOG_TO_FILE", True)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Test runners attach their own capture handlers
    if not app.testing:
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

    if app.config.get("LOG_TO_CONSOLE", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        if app.debug:
            console_handler.setFormatter(ColoredFormatter(DEBUG_FORMAT, datefmt="%H:%M:%S"))
        else:
            console_handler.setFormatter(logging.Formatter(BASE_FORMAT, datefmt=DATE_FORMAT))
        console_handler.addFilter(RequestContextFilter())
        root_logger.addHandler(console_handler)

    if log_to_file:
        os.makedirs(log_dir, exist_ok=True)
        root_logger.addHandler(
            _rotating_handler(log_dir, "tipster.log", log_level, FILE_FORMAT, 10, 5)
        )
        root_logger.addHandler(
            _rotating_handler(log_dir, "errors.log", logging.ERROR, ERROR_FORMAT, 5, 3)
        )

        operations_logger = logging.getLogger(OPERATIONS_LOGGER)
        if not any(
            isinstance(h, logging.handlers.RotatingFileHandler)
            for h in operations_logger.handlers
        ):
            operations_logger.addHandler(
                _rotating_handler(
                    log_dir, "operations.log", logging.INFO, BASE_FORMAT, 5, 3
                )
            )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.info(f"Logging configured - Level: {logging.getLevelName(log_level)}")


def get_logger(name):
    """Get a logger instance, usually for ``__name__``"""
    return logging.getLogger(name)


class ContextualLogger:
    """
    Logger that appends fixed context to every message

    Retroactive runs tag their lines with the user and competition so a bulk
    run over many users can be followed in the log.
    """

    def __init__(self, name, context=None):
        self.logger = get_logger(name)
        self.context = dict(context or {})

    def _format_message(self, message):
        if not self.context:
            return message
        context_str = " ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{message} [{context_str}]"

    def _log(self, level, message, **kwargs):
        self.logger.log(level, self._format_message(message), **kwargs)

    def debug(self, message, **kwargs):
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message, **kwargs):
        self._log(logging.ERROR, message, **kwargs)
