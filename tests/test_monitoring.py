"""
Tests for the operation monitor and the datastore helpers.
"""
import logging

import pytest
from sqlalchemy.exc import OperationalError

from tipster.services.exceptions import DatastoreTimeout, NotFound
from tipster.utils.db_utils import datastore_call, error_entry, is_timeout_error
from tipster.utils.logging_config import ContextualLogger
from tipster.utils.monitoring import OperationMonitor, monitored_operation


@pytest.fixture
def monitor():
    return OperationMonitor()


def test_successful_operation_counted(monitor):
    @monitored_operation("nightly", monitor=monitor)
    def nightly(value):
        return value * 2

    assert nightly(21) == 42

    stats = monitor.get_status()["nightly"]
    assert stats["total_runs"] == 1
    assert stats["successful_runs"] == 1
    assert stats["failed_runs"] == 0
    assert stats["running"] == 0
    assert stats["last_duration"] is not None


def test_failed_operation_counted_and_reraised(monitor):
    @monitored_operation("flaky", monitor=monitor)
    def flaky():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        flaky()

    stats = monitor.get_status()["flaky"]
    assert stats["failed_runs"] == 1
    assert stats["last_error"] == "boom"
    assert stats["running"] == 0


def test_progress_and_reset(monitor):
    monitor.start("bulk")
    monitor.progress("bulk", 10, 50)
    assert monitor.get_status()["bulk"]["progress"] == {"done": 10, "total": 50}

    monitor.reset()
    assert monitor.get_status() == {}


def test_wrapped_function_keeps_its_name(monitor):
    @monitored_operation("named", monitor=monitor)
    def process_everything():
        """Docstring survives"""

    assert process_everything.__name__ == "process_everything"
    assert process_everything.__doc__ == "Docstring survives"


class _PgError(Exception):
    sqlstate = "57014"


def _operational(orig):
    return OperationalError("SELECT 1", {}, orig)


def test_timeout_detection():
    assert is_timeout_error(_operational(_PgError("canceled")))
    assert is_timeout_error(_operational(Exception("database is locked")))
    assert not is_timeout_error(_operational(Exception("no such table: seasons")))


def test_datastore_call_translates_timeouts(app):
    with pytest.raises(DatastoreTimeout) as excinfo:
        with datastore_call("loading rounds"):
            raise _operational(_PgError("canceling statement due to statement timeout"))

    assert excinfo.value.retryable is True
    assert excinfo.value.status_code == 503


def test_datastore_call_passes_other_errors_through(app):
    with pytest.raises(OperationalError):
        with datastore_call("loading rounds"):
            raise _operational(Exception("disk I/O error"))

    with pytest.raises(NotFound):
        with datastore_call("loading rounds"):
            raise NotFound("missing")


def test_error_entry_describes_failure():
    entry = error_entry(NotFound("Season 4 not found"), season_id=4)
    assert entry == {
        "season_id": 4,
        "error": "Season 4 not found",
        "code": "not_found",
        "retryable": False,
    }

    entry = error_entry(RuntimeError("boom"), round_id=2)
    assert entry["code"] == "internal_error"
    assert entry["error"] == "boom"


def test_contextual_logger_appends_context(caplog):
    log = ContextualLogger("tipster.tests", {"user_id": 3, "competition_id": 1})

    with caplog.at_level(logging.INFO, logger="tipster.tests"):
        log.info("Found 2 scored rounds without a record")

    assert caplog.records[-1].getMessage() == (
        "Found 2 scored rounds without a record [user_id=3 competition_id=1]"
    )
