"""
Round Gate

Admission control for bet submissions: a batch of predictions is accepted only
when every fixture belongs to one open betting round whose deadline has not
passed. Accepted predictions are upserted on (user, fixture).
"""

import logging

from sqlalchemy.exc import IntegrityError

from tipster import db
from tipster.models import BettingRound, Fixture, UserBet
from tipster.services.exceptions import (
    CrossRoundSubmission,
    DeadlinePassed,
    FixtureNotLinked,
    MalformedPayload,
    MissingDeadline,
    RoundNotOpen,
    Unauthenticated,
    UnknownFixture,
)
from tipster.services.results import OperationResult
from tipster.utils.db_utils import datastore_call
from tipster.utils.scoring import normalize_prediction
from tipster.utils.timezone_utils import ensure_utc, get_utc_time, to_db_time

logger = logging.getLogger(__name__)


def parse_submissions(payload):
    """
    Validate a raw submission payload.

    Accepts either a list of ``{"fixture_id", "prediction"}`` objects or a dict
    wrapping that list under ``"bets"``.

    Returns:
        list: (fixture_id, prediction) tuples with canonical predictions
    """
    if isinstance(payload, dict):
        payload = payload.get("bets")

    if not isinstance(payload, list) or not payload:
        raise MalformedPayload("Expected a non-empty list of bets")

    submissions = []
    seen = set()
    for index, item in enumerate(payload):
        if not isinstance(item, dict):
            raise MalformedPayload(f"Bet {index} is not an object", index=index)

        fixture_id = item.get("fixture_id")
        if isinstance(fixture_id, bool) or not isinstance(fixture_id, int):
            raise MalformedPayload(
                f"Bet {index} has an invalid fixture_id", index=index
            )

        prediction = normalize_prediction(item.get("prediction"))
        if prediction is None:
            raise MalformedPayload(
                f"Bet {index} has an invalid prediction", index=index
            )

        if fixture_id in seen:
            raise MalformedPayload(
                f"Fixture {fixture_id} appears more than once", fixture_id=fixture_id
            )
        seen.add(fixture_id)

        submissions.append((fixture_id, prediction))

    return submissions


def resolve_round(fixture_ids):
    """Find the single betting round that holds every submitted fixture"""
    fixtures = Fixture.query.filter(Fixture.id.in_(fixture_ids)).all()

    missing = sorted(set(fixture_ids) - {fixture.id for fixture in fixtures})
    if missing:
        raise UnknownFixture(fixture_ids=missing)

    unlinked = sorted(f.id for f in fixtures if f.betting_round_id is None)
    if unlinked:
        logger.critical(f"Fixtures {unlinked} are not linked to any betting round")
        raise FixtureNotLinked(fixture_ids=unlinked)

    round_ids = {fixture.betting_round_id for fixture in fixtures}
    if len(round_ids) > 1:
        raise CrossRoundSubmission(round_ids=sorted(round_ids))

    round_id = round_ids.pop()
    betting_round = db.session.get(BettingRound, round_id)
    if betting_round is None:
        logger.critical(f"Fixtures reference missing betting round {round_id}")
        raise FixtureNotLinked(
            f"Betting round {round_id} does not exist", round_id=round_id
        )

    return betting_round


def check_round_accepts_bets(betting_round, now):
    """Reject submissions to a closed round or past its deadline"""
    if not betting_round.is_open:
        raise RoundNotOpen(
            f"{betting_round.display_name} is {betting_round.status}, not open",
            round_id=betting_round.id,
            status=betting_round.status,
        )

    if betting_round.earliest_fixture_kickoff is None:
        logger.critical(f"Round {betting_round.id} has no deadline configured")
        raise MissingDeadline(round_id=betting_round.id)

    if ensure_utc(now) >= ensure_utc(betting_round.earliest_fixture_kickoff):
        raise DeadlinePassed(
            f"Deadline for {betting_round.display_name} has passed",
            round_id=betting_round.id,
            deadline=ensure_utc(betting_round.earliest_fixture_kickoff).isoformat(),
        )


def _upsert_bets(user_id, betting_round, submissions, submitted_at):
    fixture_ids = [fixture_id for fixture_id, _ in submissions]
    existing = {
        bet.fixture_id: bet
        for bet in UserBet.query.filter(
            UserBet.user_id == user_id, UserBet.fixture_id.in_(fixture_ids)
        ).all()
    }

    stored = []
    for fixture_id, prediction in submissions:
        bet = existing.get(fixture_id)
        if bet is None:
            bet = UserBet(
                user_id=user_id,
                fixture_id=fixture_id,
                betting_round_id=betting_round.id,
            )
            db.session.add(bet)
        bet.prediction = prediction
        bet.submitted_at = submitted_at
        stored.append(bet)

    db.session.commit()
    return stored


def submit_bets(user_id, payload, now=None):
    """
    Validate and store a user's predictions for one round

    Args:
        user_id: Authenticated user id, None if the caller is anonymous
        payload: Raw submission payload (see parse_submissions)
        now: Submission time, defaults to the current UTC time

    Returns:
        OperationResult with the round id and the stored bets
    """
    if user_id is None:
        raise Unauthenticated()

    submissions = parse_submissions(payload)
    now = now or get_utc_time()
    fixture_ids = [fixture_id for fixture_id, _ in submissions]

    with datastore_call("bet submission"):
        betting_round = resolve_round(fixture_ids)
        check_round_accepts_bets(betting_round, now)

        try:
            stored = _upsert_bets(user_id, betting_round, submissions, to_db_time(now))
        except IntegrityError:
            # A concurrent submission inserted the same (user, fixture) first
            db.session.rollback()
            logger.info(f"Retrying bet upsert for user {user_id} after a conflict")
            try:
                stored = _upsert_bets(
                    user_id, betting_round, submissions, to_db_time(now)
                )
            except IntegrityError as e:
                db.session.rollback()
                logger.error(f"Bet upsert for user {user_id} failed: {e}")
                raise UnknownFixture(
                    "One or more fixtures could not be stored", fixture_ids=fixture_ids
                ) from e

    logger.info(
        f"User {user_id} submitted {len(stored)} bets for round {betting_round.id}"
    )
    return OperationResult.ok(
        f"Saved {len(stored)} predictions for {betting_round.display_name}",
        payload={
            "round_id": betting_round.id,
            "bets_saved": len(stored),
            "bets": [bet.to_dict() for bet in stored],
        },
    )
