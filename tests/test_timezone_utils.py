"""
Tests for timezone helpers and user password hashing.
"""
from datetime import datetime, timezone

from tipster.utils.timezone_utils import (
    convert_to_app_timezone,
    ensure_utc,
    format_deadline,
    to_db_time,
)


def test_naive_values_are_treated_as_utc():
    naive = datetime(2025, 3, 1, 12, 0)
    assert ensure_utc(naive) == datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert to_db_time(ensure_utc(naive)) == naive
    assert ensure_utc(None) is None
    assert to_db_time(None) is None


def test_deadline_formatted_in_app_timezone(app):
    app.config["TIMEZONE"] = "Europe/Vienna"
    deadline = datetime(2025, 3, 1, 14, 30, tzinfo=timezone.utc)

    assert convert_to_app_timezone(deadline).hour == 15
    assert format_deadline(deadline) == "Sat 01/03 at 15:30"
    assert format_deadline(None) == "TBD"


def test_unknown_timezone_falls_back_to_utc(app):
    app.config["TIMEZONE"] = "Mars/Olympus"
    deadline = datetime(2025, 3, 1, 14, 30)

    assert format_deadline(deadline, "%H:%M") == "14:30"


def test_password_hashing(factory):
    user = factory.user()
    assert user.check_password("password123")
    assert not user.check_password("wrong")
