"""
Tests for the cup ledger: eligibility checks, clear-and-rederive
recalculation and independence from the league points.
"""
from datetime import timedelta

import pytest

from tipster import db
from tipster.models import CupPoints, UserBet
from tipster.services.audit import ACTION_RECALCULATE_CUP
from tipster.services.cup_scoring import CupScoringLedger
from tipster.services.exceptions import StateError


@pytest.fixture
def cup_season(factory, now):
    return factory.season(cup_activated_at=(now - timedelta(days=90)).replace(tzinfo=None))


def _cup_totals(season_id):
    totals = {}
    for row in CupPoints.query.filter_by(season_id=season_id).all():
        totals[row.user_id] = totals.get(row.user_id, 0) + row.points
    return totals


def test_calculate_round_scores_real_predictions(factory, cup_season, now):
    alice = factory.user()
    bob = factory.user()
    betting_round = factory.scored_round(cup_season, [(alice, 1)])
    fixture = betting_round.fixtures.first()
    factory.bet(bob, fixture, "away", points=0)

    result = CupScoringLedger().calculate_round(betting_round.id, now=now)

    assert result.payload["users_scored"] == 2
    assert result.payload["total_points"] == 1
    assert _cup_totals(cup_season.id) == {alice.id: 1, bob.id: 0}


def test_recalculation_never_double_counts(factory, cup_season, now):
    alice = factory.user()
    betting_round = factory.scored_round(cup_season, [(alice, 1)])
    ledger = CupScoringLedger()

    ledger.calculate_round(betting_round.id, now=now)
    second = ledger.calculate_round(betting_round.id, now=now)

    assert second.payload["rows_cleared"] == 1
    assert CupPoints.query.count() == 1
    assert _cup_totals(cup_season.id) == {alice.id: 1}


def test_cup_ignores_league_ledger_and_retroactive_rows(factory, cup_season, now):
    alice = factory.user()
    late = factory.user()
    betting_round = factory.scored_round(cup_season, [(alice, 1)])
    fixture = betting_round.fixtures.first()

    # League corrections and retroactive awards stay out of the cup
    bet = UserBet.query.filter_by(user_id=alice.id).one()
    bet.points_awarded = 5
    db.session.add(
        UserBet(
            user_id=late.id,
            fixture_id=fixture.id,
            betting_round_id=betting_round.id,
            prediction=None,
            points_awarded=1,
            is_retroactive=True,
        )
    )
    db.session.commit()

    CupScoringLedger().calculate_round(betting_round.id, now=now)

    assert _cup_totals(cup_season.id) == {alice.id: 1}


def test_bonus_round_doubles_cup_points(factory, cup_season, now):
    alice = factory.user()
    betting_round = factory.scored_round(cup_season, [(alice, 2)], is_bonus_round=True)

    CupScoringLedger().calculate_round(betting_round.id, now=now)

    assert _cup_totals(cup_season.id) == {alice.id: 2}


def test_unscored_round_rejected(factory, cup_season, now):
    betting_round = factory.betting_round(cup_season, deadline=now - timedelta(days=1))
    with pytest.raises(StateError):
        CupScoringLedger().calculate_round(betting_round.id, now=now)


def test_round_before_activation_rejected(factory, now):
    season = factory.season(cup_activated_at=now.replace(tzinfo=None))
    betting_round = factory.scored_round(season, [(factory.user(), 1)])

    with pytest.raises(StateError):
        CupScoringLedger().calculate_round(betting_round.id, now=now)
    assert CupPoints.query.count() == 0


def test_audit_only_for_admin_recalculation(factory, cup_season, now, audit):
    betting_round = factory.scored_round(cup_season, [(factory.user(), 1)])
    ledger = CupScoringLedger(audit_sink=audit)

    ledger.calculate_round(betting_round.id, now=now)
    assert audit.events == []

    ledger.calculate_round(betting_round.id, actor_id=1, now=now)
    assert audit.actions == [ACTION_RECALCULATE_CUP]
    assert audit.events[0]["before"] == {"rows": 1}


def test_recalculate_since_activation(factory, now):
    season = factory.season()
    alice = factory.user()
    early = factory.scored_round(season, [(alice, 1)])
    cup_one = factory.scored_round(season, [(alice, 1)])
    cup_two = factory.scored_round(season, [(alice, 1)])
    season.cup_activated_at = cup_one.earliest_fixture_kickoff
    db.session.commit()

    result = CupScoringLedger().recalculate_since_activation(season.id, now=now)

    assert result.status_code == 200
    assert [entry["round_id"] for entry in result.processed] == [cup_one.id, cup_two.id]
    assert CupPoints.query.filter_by(betting_round_id=early.id).count() == 0
    assert _cup_totals(season.id) == {alice.id: 2}
