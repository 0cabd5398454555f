"""
Tests for the HTTP surface: bet submission, public standings, cron triggers
and admin endpoints.
"""
from datetime import datetime, timedelta, timezone

import pytest

from tipster import db
from tipster.models import AdminAction, Season, UserBet
from tipster.services.cup_activation import set_round_cup_activation
from tipster.services.round_scoring import process_rounds


@pytest.fixture
def live_round(factory):
    """An open round whose deadline is ahead of the real clock"""
    season = factory.season()
    betting_round = factory.betting_round(
        season, deadline=datetime.now(timezone.utc) + timedelta(days=2)
    )
    fixtures = [factory.fixture(betting_round) for _ in range(2)]
    return season, betting_round, fixtures


def test_health_check(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.get_json()["status"] == "healthy"


# ----------------------------------------------------------------------
# Bets
# ----------------------------------------------------------------------


def test_bets_require_login(client, live_round):
    _, _, fixtures = live_round
    response = client.post(
        "/api/bets", json=[{"fixture_id": fixtures[0].id, "prediction": "home"}]
    )

    assert response.status_code == 401
    assert response.get_json()["error"] == "unauthenticated"
    assert UserBet.query.count() == 0


def test_submit_bets(factory, login, live_round):
    _, betting_round, fixtures = live_round
    user = factory.user()
    client = login(user)

    response = client.post(
        "/api/bets",
        json={"bets": [{"fixture_id": f.id, "prediction": "X"} for f in fixtures]},
    )

    assert response.status_code == 200
    data = response.get_json()
    assert data["success"] is True
    assert data["round_id"] == betting_round.id
    assert data["bets_saved"] == 2
    assert {b.prediction for b in UserBet.query.filter_by(user_id=user.id)} == {"draw"}


def test_malformed_bets_rejected(factory, login, live_round):
    client = login(factory.user())

    response = client.post("/api/bets", json={"fixture_id": 1})

    assert response.status_code == 400
    assert response.get_json()["error"] == "malformed_payload"


def test_bets_after_deadline_rejected(factory, login):
    season = factory.season()
    closed = factory.betting_round(
        season, deadline=datetime.now(timezone.utc) - timedelta(minutes=1)
    )
    fixture = factory.fixture(closed)
    client = login(factory.user())

    response = client.post(
        "/api/bets", json=[{"fixture_id": fixture.id, "prediction": "away"}]
    )

    assert response.status_code == 403
    assert response.get_json()["error"] == "deadline_passed"


# ----------------------------------------------------------------------
# Public standings
# ----------------------------------------------------------------------


def test_current_season(client, factory):
    assert client.get("/api/seasons/current").status_code == 404

    season = factory.season()
    response = client.get("/api/seasons/current")

    assert response.status_code == 200
    assert response.get_json()["id"] == season.id


def test_league_standings_endpoint(client, factory):
    season = factory.season()
    alice = factory.user(username="alice")
    bob = factory.user(username="bob")
    factory.scored_round(season, [(alice, 0), (bob, 1)])

    response = client.get(f"/api/seasons/{season.id}/standings")

    assert response.status_code == 200
    standings = response.get_json()["standings"]
    assert [(row["username"], row["rank"]) for row in standings] == [
        ("bob", 1),
        ("alice", 2),
    ]


def test_standings_for_unknown_season(client, app):
    response = client.get("/api/seasons/9999/standings")
    assert response.status_code == 404
    assert response.get_json()["error"] == "not_found"


def test_cup_standings_empty_until_activation(client, factory):
    season = factory.season()
    factory.scored_round(season, [(factory.user(), 1)])

    data = client.get(f"/api/seasons/{season.id}/standings/cup").get_json()

    assert data["cup_activated"] is False
    assert data["standings"] == []


def test_cup_standings_follow_round_level_cup(client, factory, now, audit):
    season = factory.season()
    betting_round = factory.betting_round(season, deadline=now - timedelta(days=2))
    fixture = factory.fixture(betting_round, status="FT", result="home")
    user = factory.user(username="carol")
    factory.bet(user, fixture, "home")

    set_round_cup_activation(betting_round.id, True, actor_id=1, now=now, audit_sink=audit)
    process_rounds(now=now)

    data = client.get(f"/api/seasons/{season.id}/standings/cup").get_json()

    assert data["cup_activated"] is False
    assert data["has_cup"] is True
    assert [(row["username"], row["total_points"]) for row in data["standings"]] == [
        ("carol", 1)
    ]


def test_winners_endpoint(client, factory, now):
    season = factory.season(completed_at=now.replace(tzinfo=None))

    data = client.get(f"/api/seasons/{season.id}/winners").get_json()

    assert data["winner_determined"] is False
    assert data["league"] == []
    assert data["cup"] == []


# ----------------------------------------------------------------------
# Cron triggers
# ----------------------------------------------------------------------


@pytest.mark.parametrize("header", [None, "Bearer wrong-secret", "Basic test-cron-secret"])
def test_cron_rejects_bad_credentials(client, app, header):
    headers = {"Authorization": header} if header else {}
    response = client.post("/cron/process-rounds", headers=headers)

    assert response.status_code == 401
    assert response.get_json()["error"] == "unauthenticated"


def test_cron_disabled_without_secret(client, app):
    app.config["CRON_SECRET"] = None
    response = client.post(
        "/cron/process-rounds", headers={"Authorization": "Bearer anything"}
    )
    assert response.status_code == 403


def test_cron_process_rounds(client, factory):
    season = factory.season()
    betting_round = factory.betting_round(
        season, deadline=datetime.now(timezone.utc) - timedelta(days=1)
    )
    factory.fixture(betting_round, status="FT", result="home")

    response = client.post(
        "/cron/process-rounds", headers={"Authorization": "Bearer test-cron-secret"}
    )

    assert response.status_code == 200
    data = response.get_json()
    assert data["processed_count"] == 1
    assert data["error_count"] == 0


def test_cron_winner_determination(client, factory, now):
    season = factory.season(completed_at=now.replace(tzinfo=None))
    factory.scored_round(season, [(factory.user(), 1)])

    response = client.post(
        "/cron/winner-determination", headers={"Authorization": "Bearer test-cron-secret"}
    )

    assert response.status_code == 200
    assert db.session.get(Season, season.id).winner_determined_at is not None


# ----------------------------------------------------------------------
# Admin
# ----------------------------------------------------------------------


def test_admin_endpoints_require_admin(factory, login):
    season = factory.season()
    client = login(factory.user())

    response = client.post(f"/admin/seasons/{season.id}/bonus", json={"active": True})

    assert response.status_code == 403
    assert db.session.get(Season, season.id).bonus_mode_active is False


def test_admin_endpoints_require_login(client, factory):
    season = factory.season()
    response = client.post(f"/admin/seasons/{season.id}/bonus", json={"active": True})
    assert response.status_code == 401


def test_admin_bonus_toggle_is_audited(factory, login):
    season = factory.season()
    admin = factory.user(is_admin=True)
    client = login(admin)

    response = client.post(f"/admin/seasons/{season.id}/bonus", json={"active": True})

    assert response.status_code == 200
    assert response.get_json()["changed"] is True
    assert db.session.get(Season, season.id).bonus_mode_active is True

    action = AdminAction.query.one()
    assert action.actor_id == admin.id
    assert action.action_type == "toggle_bonus_mode"

    audit = client.get("/admin/audit?entity_type=season").get_json()
    assert [a["action_type"] for a in audit["actions"]] == ["toggle_bonus_mode"]


def test_admin_bonus_toggle_requires_boolean(factory, login):
    season = factory.season()
    client = login(factory.user(is_admin=True))

    response = client.post(f"/admin/seasons/{season.id}/bonus", json={"active": "yes"})

    assert response.status_code == 400
    assert response.get_json()["error"] == "malformed_payload"


def test_admin_retroactive_preview_and_apply(factory, login):
    season = factory.season()
    factory.scored_round(season, [(factory.user(), 1)])
    late = factory.user()
    client = login(factory.user(is_admin=True))
    body = {"user_id": late.id, "competition_id": season.competition_id}

    preview = client.post("/admin/retroactive/preview-user", json=body)
    assert preview.status_code == 200
    assert preview.get_json()["dry_run"] is True
    assert preview.get_json()["total_points_awarded"] == 1
    assert UserBet.query.filter_by(user_id=late.id).count() == 0

    applied = client.post("/admin/retroactive/apply-user", json=body)
    assert applied.status_code == 200
    assert applied.get_json()["total_points_awarded"] == 1
    assert UserBet.query.filter_by(user_id=late.id, is_retroactive=True).count() == 1


def test_admin_bulk_requires_timestamp(factory, login):
    season = factory.season()
    client = login(factory.user(is_admin=True))

    response = client.post(
        "/admin/retroactive/preview-bulk",
        json={"competition_id": season.competition_id, "created_after": "last week"},
    )

    assert response.status_code == 400


def test_admin_complete_season_not_eligible(factory, login):
    season = factory.season()
    factory.fixture(season=season)
    client = login(factory.user(is_admin=True))

    response = client.post(f"/admin/seasons/{season.id}/complete", json={})
    assert response.status_code == 409
    assert response.get_json()["error"] == "season_not_eligible"

    forced = client.post(f"/admin/seasons/{season.id}/complete", json={"force": True})
    assert forced.status_code == 200
    assert forced.get_json()["completed"] is True


def test_admin_operations_status(factory, login):
    client = login(factory.user(is_admin=True))
    client.post("/admin/seasons/9999/complete", json={})

    response = client.get("/admin/operations")

    assert response.status_code == 200
    assert "operations" in response.get_json()
