"""
Tests for league and cup standings: totals, deterministic ordering and
shared ranks.
"""
from tipster import cache, db
from tipster.models import CupPoints, UserBet
from tipster.services.cup_activation import set_round_cup_activation
from tipster.services.cup_scoring import CupScoringLedger
from tipster.services.round_scoring import recalculate_round
from tipster.services.standings import (
    StandingEntry,
    calculate_cup_standings,
    calculate_league_standings,
    get_cup_standings,
    get_league_standings,
    rank_entries,
    refresh_standings,
    top_entries,
)


def _entry(user_id, total):
    return StandingEntry(user_id=user_id, username=f"user{user_id}", total_points=total)


def test_rank_entries_orders_by_total_then_user_id():
    entries = rank_entries([_entry(3, 5), _entry(1, 7), _entry(2, 5), _entry(4, 1)])

    assert [e.user_id for e in entries] == [1, 2, 3, 4]
    assert [e.rank for e in entries] == [1, 2, 2, 4]
    assert [e.is_tied for e in entries] == [False, True, True, False]


def test_top_entries_returns_everyone_tied_first():
    entries = rank_entries([_entry(5, 9), _entry(2, 9), _entry(1, 3)])
    assert [e.user_id for e in top_entries(entries)] == [2, 5]
    assert top_entries([]) == []


def test_league_standings_sum_points_across_rounds(factory):
    season = factory.season()
    alice = factory.user()
    bob = factory.user()
    factory.scored_round(season, [(alice, 1), (bob, 0)])
    factory.scored_round(season, [(alice, 0), (bob, 2)])

    table = calculate_league_standings(season.id)

    assert [(e.user_id, e.total_points, e.rank) for e in table] == [
        (bob.id, 2, 1),
        (alice.id, 1, 2),
    ]


def test_league_standings_ignore_unscored_bets_and_other_seasons(factory):
    season = factory.season()
    other = factory.season(competition=factory.competition("Serie A"))
    alice = factory.user()
    factory.scored_round(season, [(alice, 1)])
    factory.scored_round(other, [(alice, 5)])
    open_round = factory.betting_round(season)
    factory.bet(alice, factory.fixture(open_round), "draw")

    table = calculate_league_standings(season.id)

    assert len(table) == 1
    assert table[0].total_points == 1


def test_league_standings_include_retroactive_awards(factory):
    season = factory.season()
    alice = factory.user()
    late = factory.user()
    betting_round = factory.scored_round(season, [(alice, 1)])
    db.session.add(
        UserBet(
            user_id=late.id,
            fixture_id=betting_round.fixtures.first().id,
            betting_round_id=betting_round.id,
            prediction=None,
            points_awarded=1,
            is_retroactive=True,
        )
    )
    db.session.commit()

    table = calculate_league_standings(season.id)

    assert [(e.user_id, e.rank, e.is_tied) for e in table] == [
        (alice.id, 1, True),
        (late.id, 1, True),
    ]


def test_cup_standings_count_rounds_participated(factory):
    season = factory.season()
    alice = factory.user()
    bob = factory.user()
    first = factory.scored_round(season, [(alice, 1), (bob, 1)])
    second = factory.scored_round(season, [(alice, 0)])
    for user, betting_round, points in [
        (alice, first, 1),
        (bob, first, 1),
        (alice, second, 0),
    ]:
        db.session.add(
            CupPoints(
                user_id=user.id,
                season_id=season.id,
                betting_round_id=betting_round.id,
                points=points,
            )
        )
    db.session.commit()

    table = calculate_cup_standings(season.id)

    assert [(e.user_id, e.total_points, e.rounds_participated) for e in table] == [
        (alice.id, 1, 2),
        (bob.id, 1, 1),
    ]
    assert all(e.is_tied for e in table)


def test_league_standings_as_dicts(factory):
    season = factory.season()
    alice = factory.user(username="alice")
    factory.scored_round(season, [(alice, 1)])

    assert get_league_standings(season.id) == [
        {
            "user_id": alice.id,
            "username": "alice",
            "total_points": 1,
            "rank": 1,
            "is_tied": False,
        }
    ]


def test_refresh_invalidates_cached_season_table(app, factory):
    cache.init_app(app, config={"CACHE_TYPE": "SimpleCache"})
    season = factory.season()
    other = factory.season(competition=factory.competition("Serie A"))
    alice = factory.user()
    betting_round = factory.scored_round(season, [(alice, 1)])
    factory.scored_round(other, [(alice, 2)])

    assert get_league_standings(season.id)[0]["total_points"] == 1
    assert get_league_standings(other.id)[0]["total_points"] == 2

    bet = UserBet.query.filter_by(betting_round_id=betting_round.id).one()
    bet.points_awarded = 3
    db.session.commit()
    assert get_league_standings(season.id)[0]["total_points"] == 1

    refreshed = refresh_standings(season.id)

    assert refreshed[0]["total_points"] == 3
    assert get_league_standings(season.id)[0]["total_points"] == 3
    assert get_league_standings(other.id)[0]["total_points"] == 2


def test_admin_recalculations_refresh_cached_tables(app, factory, now, audit):
    cache.init_app(app, config={"CACHE_TYPE": "SimpleCache"})
    season = factory.season()
    alice = factory.user()
    betting_round = factory.scored_round(season, [(alice, 1)])

    assert get_league_standings(season.id)[0]["total_points"] == 1
    assert get_cup_standings(season.id) == []

    set_round_cup_activation(betting_round.id, True, actor_id=2, now=now, audit_sink=audit)
    assert get_cup_standings(season.id) == []

    CupScoringLedger(audit_sink=audit).calculate_round(betting_round.id, actor_id=2, now=now)

    assert [(e["user_id"], e["total_points"]) for e in get_cup_standings(season.id)] == [
        (alice.id, 1)
    ]

    fixture = betting_round.fixtures.first()
    fixture.result = "away"
    db.session.commit()
    assert get_league_standings(season.id)[0]["total_points"] == 1

    result = recalculate_round(betting_round.id, actor_id=2, audit_sink=audit)

    assert result.payload["standings_refreshed"] is True
    assert get_league_standings(season.id)[0]["total_points"] == 0
