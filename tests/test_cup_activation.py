"""
Tests for cup activation: the remaining-games condition, one-way activation,
configuration validation and the round-level override.
"""
from datetime import timedelta

import pytest

from tipster import db
from tipster.models import CupPoints, Season
from tipster.services.audit import ACTION_ACTIVATE_CUP, ACTION_DEACTIVATE_CUP
from tipster.services.cup_activation import (
    CupActivationDetector,
    set_round_cup_activation,
)
from tipster.services.exceptions import SeasonNotEligible


@pytest.fixture
def five_team_season(factory):
    """
    Five teams where only A and B have five or fewer games left (40%).
    Finishing the C v A fixture brings C down to five remaining (60%).
    """
    season = factory.season()
    a, b, c, d, e = (factory.team(name) for name in "ABCDE")

    factory.fixture(season=season, home=a, away=b, status="FT", result="home")
    for _ in range(3):
        factory.fixture(season=season, home=c, away=d)
    for _ in range(2):
        factory.fixture(season=season, home=c, away=e)
    for _ in range(4):
        factory.fixture(season=season, home=d, away=e)
    deciding = factory.fixture(season=season, home=c, away=a)

    return season, deciding


def test_remaining_games_by_team(five_team_season):
    season, _ = five_team_season
    remaining = CupActivationDetector().remaining_games_by_team(season.id)
    assert sorted(remaining.values()) == [0, 1, 6, 6, 7]


def test_condition_below_threshold(five_team_season):
    season, _ = five_team_season
    condition = CupActivationDetector().calculate_condition(season.id)

    assert condition.total_teams == 5
    assert condition.qualifying_teams == 2
    assert condition.percentage == 40.0
    assert condition.condition_met is False
    assert "does not meet" in condition.reasoning


def test_condition_compares_unrounded_share(factory):
    """Four of six teams is 66.666...%, which must not round up to 66.67%"""
    season = factory.season()
    a, b, c, d, e, f = (factory.team(name) for name in "ABCDEF")
    factory.fixture(season=season, home=a, away=b, status="FT", result="home")
    factory.fixture(season=season, home=c, away=d, status="FT", result="draw")
    for _ in range(6):
        factory.fixture(season=season, home=e, away=f)

    condition = CupActivationDetector(
        threshold=66.67, max_remaining_games=5
    ).calculate_condition(season.id)

    assert condition.qualifying_teams == 4
    assert condition.percentage == 66.67
    assert condition.condition_met is False

    lower = CupActivationDetector(threshold=66.66, max_remaining_games=5)
    assert lower.calculate_condition(season.id).condition_met is True


def test_cup_activates_exactly_once(five_team_season, now, audit):
    season, deciding = five_team_season
    detector = CupActivationDetector(threshold=60, max_remaining_games=5, audit_sink=audit)

    first = detector.check_season(season.id, now=now)
    assert first.payload["activated"] is False
    assert db.session.get(Season, season.id).cup_activated_at is None

    deciding.status = "FT"
    deciding.result = "draw"
    db.session.commit()

    second = detector.check_season(season.id, now=now)
    assert second.payload["activated"] is True
    assert second.payload["condition"]["percentage"] == 60.0
    activated_at = db.session.get(Season, season.id).cup_activated_at
    assert activated_at == now.replace(tzinfo=None)

    third = detector.check_season(season.id, now=now + timedelta(days=1))
    assert third.payload["activated"] is False
    assert third.payload["was_already_activated"] is True
    assert db.session.get(Season, season.id).cup_activated_at == activated_at
    assert audit.actions == [ACTION_ACTIVATE_CUP]


def test_activation_stays_set_when_condition_no_longer_holds(five_team_season, now, audit):
    season, deciding = five_team_season
    deciding.status = "FT"
    db.session.commit()
    detector = CupActivationDetector(audit_sink=audit)
    detector.check_season(season.id, now=now)

    # A postponed fixture reappearing does not switch the cup back off
    deciding.status = "PST"
    db.session.commit()
    result = detector.check_season(season.id, now=now + timedelta(days=1))

    assert result.payload["was_already_activated"] is True
    assert db.session.get(Season, season.id).cup_activated_at is not None


def test_season_without_teams_never_meets_condition(factory):
    season = factory.season()
    condition = CupActivationDetector().calculate_condition(season.id)

    assert condition.total_teams == 0
    assert condition.condition_met is False


def test_only_current_season_is_eligible(factory, now):
    season = factory.season(is_current=False)
    with pytest.raises(SeasonNotEligible):
        CupActivationDetector().check_season(season.id, now=now)


@pytest.mark.parametrize(
    "threshold, limit", [(-1, 5), (100.5, 5), (None, 5), (60, -1), (60, None)]
)
def test_invalid_configuration_rejected(threshold, limit):
    with pytest.raises(ValueError):
        CupActivationDetector(threshold=threshold, max_remaining_games=limit)


def test_detector_reads_configuration(app):
    app.config["CUP_ACTIVATION_THRESHOLD"] = 75
    app.config["CUP_MAX_REMAINING_GAMES"] = 3

    detector = CupActivationDetector.from_config(app.config)

    assert detector.threshold == 75.0
    assert detector.max_remaining_games == 3


def test_run_checks_every_current_season(factory, five_team_season, now, audit):
    season, deciding = five_team_season
    deciding.status = "FT"
    db.session.commit()
    quiet = factory.season(competition=factory.competition("Serie A"))

    result = CupActivationDetector(audit_sink=audit).run(now=now)

    assert result.status_code == 200
    assert [entry["season_id"] for entry in result.processed] == [season.id]
    assert [entry["season_id"] for entry in result.skipped] == [quiet.id]


def test_round_is_cup_eligible_after_season_activation(factory, now):
    season = factory.season(cup_activated_at=now.replace(tzinfo=None))
    before = factory.betting_round(season, deadline=now - timedelta(days=1))
    after = factory.betting_round(season, deadline=now + timedelta(days=1))

    assert before.is_cup_eligible(season.cup_activated_at) is False
    assert after.is_cup_eligible(season.cup_activated_at) is True


def test_round_cup_toggle_clears_cup_points(factory, now, audit):
    season = factory.season()
    user = factory.user()
    betting_round = factory.scored_round(season, [(user, 1)])

    set_round_cup_activation(betting_round.id, True, actor_id=3, now=now, audit_sink=audit)
    assert betting_round.is_cup_eligible() is True

    db.session.add(
        CupPoints(
            user_id=user.id,
            season_id=season.id,
            betting_round_id=betting_round.id,
            points=1,
        )
    )
    db.session.commit()

    result = set_round_cup_activation(
        betting_round.id, False, actor_id=3, now=now, audit_sink=audit
    )

    assert result.payload["cup_rows_cleared"] == 1
    assert CupPoints.query.count() == 0
    assert betting_round.cup_activated_at is None
    assert audit.actions == [ACTION_ACTIVATE_CUP, ACTION_DEACTIVATE_CUP]
    assert audit.events[1]["before"]["cup_activated_at"] is not None
    assert audit.events[1]["after"] == {"cup_activated_at": None}
