"""
Shared fixtures: a testing app with an in-memory database per test, model
factories and a recording audit sink.
"""
import itertools
from datetime import datetime, timedelta, timezone

import pytest

from tipster import create_app, db
from tipster.models import (
    BettingRound,
    Competition,
    Fixture,
    Season,
    Team,
    User,
    UserBet,
)
from tipster.services.audit import AuditSink
from tipster.utils.monitoring import operation_monitor
from tipster.utils.timezone_utils import to_db_time

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def app():
    """Testing app with its app context pushed for the whole test"""
    app = create_app("testing")
    ctx = app.app_context()
    ctx.push()
    operation_monitor.reset()
    try:
        yield app
    finally:
        db.session.remove()
        db.drop_all()
        ctx.pop()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def now():
    return NOW


class RecordingAuditSink(AuditSink):
    """Keeps audit events in memory so tests can inspect them"""

    def __init__(self):
        self.events = []

    def record(
        self,
        action,
        entity_type,
        entity_id=None,
        actor_id=None,
        before=None,
        after=None,
        details=None,
    ):
        self.events.append(
            {
                "action": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "actor_id": actor_id,
                "before": before,
                "after": after,
                "details": details,
            }
        )

    @property
    def actions(self):
        return [event["action"] for event in self.events]


@pytest.fixture
def audit():
    return RecordingAuditSink()


class Factory:
    """Builds and commits model rows with sensible defaults"""

    def __init__(self):
        self._seq = itertools.count(1)

    def _save(self, obj):
        db.session.add(obj)
        db.session.commit()
        return obj

    def competition(self, name="Premier League", code=None):
        n = next(self._seq)
        return self._save(Competition(name=name, code=code or f"C{n}"))

    def season(self, competition=None, year=2024, is_current=True, **kwargs):
        competition = competition or self.competition()
        name = kwargs.pop("name", f"{competition.name} {year}")
        return self._save(
            Season(
                competition_id=competition.id,
                year=year,
                name=name,
                is_current=is_current,
                **kwargs,
            )
        )

    def team(self, name=None):
        n = next(self._seq)
        return self._save(Team(name=name or f"Team {n}", short_name=f"T{n}"))

    def betting_round(self, season, sequence=None, deadline=None, status="open", **kwargs):
        if sequence is None:
            sequence = season.rounds.count() + 1
        deadline = deadline or NOW + timedelta(days=1)
        return self._save(
            BettingRound(
                competition_id=season.competition_id,
                season_id=season.id,
                sequence=sequence,
                status=status,
                earliest_fixture_kickoff=to_db_time(deadline),
                **kwargs,
            )
        )

    def fixture(
        self,
        betting_round=None,
        season=None,
        home=None,
        away=None,
        status="NS",
        result=None,
        kickoff=None,
        **kwargs,
    ):
        season_id = season.id if season is not None else betting_round.season_id
        home = home or self.team()
        away = away or self.team()
        if kickoff is None and betting_round is not None:
            kickoff = betting_round.earliest_fixture_kickoff
        return self._save(
            Fixture(
                season_id=season_id,
                betting_round_id=betting_round.id if betting_round else None,
                home_team_id=home.id,
                away_team_id=away.id,
                kickoff=to_db_time(kickoff or NOW),
                status=status,
                result=result,
                **kwargs,
            )
        )

    def user(self, username=None, created_at=None, is_admin=False):
        n = next(self._seq)
        username = username or f"user{n}"
        user = User(username=username, email=f"{username}@example.com", is_admin=is_admin)
        user.set_password("password123")
        if created_at is not None:
            user.created_at = to_db_time(created_at)
        return self._save(user)

    def bet(self, user, fixture, prediction="home", points=None):
        return self._save(
            UserBet(
                user_id=user.id,
                fixture_id=fixture.id,
                betting_round_id=fixture.betting_round_id,
                prediction=prediction,
                points_awarded=points,
            )
        )

    def scored_round(self, season, scores, fixtures=1, is_bonus_round=False):
        """
        A scored round in the past

        Args:
            scores: list of (user, points) pairs; each user holds one scored
                bet on the round's first fixture carrying those points
        """
        sequence = season.rounds.count() + 1
        betting_round = self.betting_round(
            season,
            sequence=sequence,
            deadline=NOW - timedelta(days=60 - sequence * 7),
            status="scored",
            is_bonus_round=is_bonus_round,
            scored_at=to_db_time(NOW - timedelta(days=50 - sequence * 7)),
        )
        created = [
            self.fixture(betting_round, status="FT", result="home")
            for _ in range(fixtures)
        ]
        for user, points in scores:
            self.bet(user, created[0], points=points)
        return betting_round


@pytest.fixture
def factory(app):
    return Factory()


@pytest.fixture
def login(client):
    """Mark the test client session as logged in for a user"""

    def _login(user):
        with client.session_transaction() as session:
            session["_user_id"] = str(user.id)
            session["_fresh"] = True
        return client

    return _login
