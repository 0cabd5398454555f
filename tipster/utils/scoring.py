"""
Points Engine for Tipster

This module handles points calculations for individual predictions.
For aggregated totals and rankings, see tipster/services/standings.py
"""

from tipster.models.fixture import RESULT_AWAY, RESULT_DRAW, RESULT_HOME, RESULTS

BASE_POINTS = 1
BONUS_MULTIPLIER = 2

# Conventional 1/X/2 notation accepted alongside home/draw/away
PREDICTION_ALIASES = {
    "1": RESULT_HOME,
    "x": RESULT_DRAW,
    "2": RESULT_AWAY,
    RESULT_HOME: RESULT_HOME,
    RESULT_DRAW: RESULT_DRAW,
    RESULT_AWAY: RESULT_AWAY,
}


def normalize_prediction(value):
    """
    Map a submitted prediction onto home/draw/away.

    Returns:
        The canonical prediction, or None if the value is not recognised
    """
    if not isinstance(value, str):
        return None
    return PREDICTION_ALIASES.get(value.strip().lower())


def compute_points(prediction, result, is_bonus_active):
    """
    Calculate points for a single prediction.

    Returns:
        BASE_POINTS for a correct prediction, doubled when the bonus is active
        0 for a wrong prediction, a missing prediction or an unplayed fixture

    Args:
        prediction: home, draw or away
        result: the fixture's final result, or None if unplayed
        is_bonus_active: the round's persisted bonus flag
    """
    if prediction is None or result not in RESULTS:
        return 0

    points = BASE_POINTS if prediction == result else 0

    if is_bonus_active:
        points *= BONUS_MULTIPLIER

    return points


def max_points_per_fixture(is_bonus_active):
    """Highest score a single fixture can award"""
    return compute_points(RESULT_HOME, RESULT_HOME, is_bonus_active)
