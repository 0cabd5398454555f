"""
Datastore helpers: timeout translation and unit-of-work boundaries
"""

from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from tipster import db
from tipster.services.exceptions import DatastoreTimeout
from tipster.utils.logging_config import get_logger

logger = get_logger(__name__)

# PostgreSQL query_canceled, raised when statement_timeout fires
STATEMENT_TIMEOUT_SQLSTATE = "57014"

TIMEOUT_MARKERS = (
    "statement timeout",
    "canceling statement due to",
    "timeout expired",
    "database is locked",
)


def is_timeout_error(error):
    """Check if a SQLAlchemy error was caused by a caller-imposed timeout"""
    if isinstance(error, PoolTimeoutError):
        return True

    original = getattr(error, "orig", None)
    sqlstate = getattr(original, "sqlstate", None) or getattr(original, "pgcode", None)
    if sqlstate == STATEMENT_TIMEOUT_SQLSTATE:
        return True

    message = str(original or error).lower()
    return any(marker in message for marker in TIMEOUT_MARKERS)


@contextmanager
def datastore_call(operation):
    """
    Run datastore work, reporting timeouts as retryable failures

    Args:
        operation: Short description used in the error message
    """
    try:
        yield
    except (OperationalError, PoolTimeoutError) as e:
        db.session.rollback()
        if is_timeout_error(e):
            logger.warning(f"Datastore timeout during {operation}: {e}")
            raise DatastoreTimeout(
                f"Datastore timed out during {operation}", operation=operation
            ) from e
        raise


def error_entry(error, **context):
    """Describe a unit-level failure for a batch result's errors list"""
    entry = dict(context)
    entry["error"] = getattr(error, "message", None) or str(error)
    entry["code"] = getattr(error, "code", "internal_error")
    entry["retryable"] = getattr(error, "retryable", False)
    return entry
