"""
Tests for the points engine: base points, bonus doubling and prediction aliases.
"""
import pytest

from tipster.utils.scoring import (
    BASE_POINTS,
    compute_points,
    max_points_per_fixture,
    normalize_prediction,
)


@pytest.mark.parametrize("result", ["home", "draw", "away"])
def test_correct_prediction_scores_base_points(result):
    assert compute_points(result, result, False) == BASE_POINTS


def test_wrong_prediction_scores_zero():
    assert compute_points("home", "away", False) == 0
    assert compute_points("draw", "home", True) == 0


def test_bonus_doubles_correct_prediction():
    assert compute_points("away", "away", True) == 2 * compute_points("away", "away", False)


def test_unplayed_fixture_or_missing_prediction_scores_zero():
    assert compute_points("home", None, True) == 0
    assert compute_points(None, "home", False) == 0


def test_compute_points_is_pure():
    first = [compute_points("draw", "draw", True) for _ in range(5)]
    assert first == [2] * 5


def test_max_points_per_fixture():
    assert max_points_per_fixture(False) == 1
    assert max_points_per_fixture(True) == 2


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("home", "home"),
        ("DRAW", "draw"),
        (" away ", "away"),
        ("1", "home"),
        ("x", "draw"),
        ("X", "draw"),
        ("2", "away"),
        ("3", None),
        ("", None),
        (1, None),
        (None, None),
    ],
)
def test_normalize_prediction(raw, expected):
    assert normalize_prediction(raw) == expected
