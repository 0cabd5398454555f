"""
Retroactive Points Allocator

Users who join after rounds were scored are credited, for every scored round
they have no record in, with the lowest total any other participant earned in
that round. The presence of a bet row for the user in a round is the only
"already done" marker, so every mode can be re-run safely.
"""

from datetime import datetime

from sqlalchemy.exc import OperationalError

from tipster import db
from tipster.models import BettingRound, Competition, Fixture, User, UserBet
from tipster.models.betting_round import ROUND_STATUS_SCORED
from tipster.services.audit import ACTION_RETROACTIVE_AWARD, get_default_sink
from tipster.services.exceptions import NotFound, ValidationError
from tipster.services.results import (
    BulkRetroactivePointsResult,
    RetroactivePointsResult,
    RoundAward,
)
from tipster.utils.db_utils import datastore_call, error_entry
from tipster.utils.logging_config import ContextualLogger, get_logger
from tipster.utils.monitoring import monitored_operation, operation_monitor
from tipster.utils.scoring import max_points_per_fixture
from tipster.utils.timezone_utils import get_utc_time, to_db_time

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 25


class RetroactivePointsService:
    """Backfills league points for late-joining users"""

    def __init__(self, audit_sink=None, batch_size=DEFAULT_BATCH_SIZE):
        self.audit_sink = audit_sink or get_default_sink()
        self.batch_size = max(int(batch_size or DEFAULT_BATCH_SIZE), 1)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _get_competition(self, competition_id):
        competition = db.session.get(Competition, competition_id)
        if competition is None:
            raise NotFound(
                f"Competition {competition_id} not found", competition_id=competition_id
            )
        return competition

    def _get_user(self, user_id):
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found", user_id=user_id)
        return user

    def find_missed_rounds(self, user_id, competition_id, from_round_id=None):
        """
        Scored rounds of a competition in which the user holds no record

        Args:
            user_id: Target user
            competition_id: Competition to scan
            from_round_id: Optional first round to consider

        Returns:
            list: BettingRound objects in play order
        """
        query = BettingRound.query.filter(
            BettingRound.competition_id == competition_id,
            BettingRound.status == ROUND_STATUS_SCORED,
        )

        if from_round_id is not None:
            from_round = db.session.get(BettingRound, from_round_id)
            if from_round is None:
                raise NotFound(
                    f"Betting round {from_round_id} not found", round_id=from_round_id
                )
            if from_round.competition_id != competition_id:
                raise ValidationError(
                    f"Round {from_round_id} does not belong to competition {competition_id}",
                    round_id=from_round_id,
                )
            query = query.filter(
                db.or_(
                    BettingRound.season_id > from_round.season_id,
                    db.and_(
                        BettingRound.season_id == from_round.season_id,
                        BettingRound.sequence >= from_round.sequence,
                    ),
                )
            )

        participated = db.session.query(UserBet.betting_round_id).filter(
            UserBet.user_id == user_id
        )
        query = query.filter(~BettingRound.id.in_(participated))

        return query.order_by(BettingRound.season_id, BettingRound.sequence).all()

    def calculate_round_minimum(self, round_id, exclude_user_id):
        """
        Lowest round total among the other participants

        Returns:
            tuple: (minimum, participant_count); minimum is None when nobody
            else took part
        """
        totals = UserBet.get_round_totals(round_id, exclude_user_id=exclude_user_id)
        if not totals:
            return None, 0
        return min(total for _, total in totals), len(totals)

    # ------------------------------------------------------------------
    # Writing awards
    # ------------------------------------------------------------------

    def _split_award(self, betting_round, points):
        """Spread an award over the round's fixtures, one fixture's max per row"""
        fixture_ids = [
            fixture_id
            for (fixture_id,) in db.session.query(Fixture.id)
            .filter(Fixture.betting_round_id == betting_round.id)
            .order_by(Fixture.kickoff, Fixture.id)
            .all()
        ]
        if not fixture_ids:
            return []

        per_fixture = max_points_per_fixture(betting_round.is_bonus_round)
        remaining = points
        split = []
        for fixture_id in fixture_ids:
            share = min(remaining, per_fixture)
            split.append([fixture_id, share])
            remaining -= share

        # Keep the round total exact even if it exceeds the per-fixture caps
        split[-1][1] += remaining
        return split

    def _write_award(self, user_id, betting_round, split, points, now, actor_id):
        """Insert award rows for one round and commit, under the caller's lock"""
        awarded_at = to_db_time(now)
        for fixture_id, share in split:
            db.session.add(
                UserBet(
                    user_id=user_id,
                    fixture_id=fixture_id,
                    betting_round_id=betting_round.id,
                    prediction=None,
                    points_awarded=share,
                    is_retroactive=True,
                    submitted_at=awarded_at,
                )
            )

        self.audit_sink.record(
            ACTION_RETROACTIVE_AWARD,
            "betting_round",
            betting_round.id,
            actor_id=actor_id,
            before={"user_id": user_id, "points": None},
            after={"user_id": user_id, "points": points},
            details={"rows": len(split)},
        )
        db.session.commit()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def check_user(self, user_id, competition_id):
        """
        Report whether a user is missing scored rounds

        Returns:
            dict with needs_retroactive_points, missed_rounds and
            estimated_points_to_award
        """
        self._get_user(user_id)
        self._get_competition(competition_id)

        preview = self.allocate_for_user(user_id, competition_id, dry_run=True)
        return {
            "user_id": user_id,
            "competition_id": competition_id,
            "needs_retroactive_points": preview.rounds_processed > 0,
            "missed_rounds": [award.round_id for award in preview.rounds],
            "estimated_points_to_award": preview.total_points_awarded,
            "warnings": preview.warnings,
        }

    def allocate_for_user(
        self,
        user_id,
        competition_id,
        from_round_id=None,
        dry_run=False,
        actor_id=None,
        now=None,
        refresh=True,
    ):
        """
        Award minimum-participant points for every round the user missed

        Args:
            user_id: User to backfill
            competition_id: Competition whose scored rounds are scanned
            from_round_id: Only consider rounds from this one onwards
            dry_run: Compute the awards without writing anything
            actor_id: Admin triggering the run, for the audit trail
            now: Award time
            refresh: Trigger a standings refresh after awarding points

        Returns:
            RetroactivePointsResult
        """
        now = now or get_utc_time()
        log = ContextualLogger(
            __name__, {"user_id": user_id, "competition_id": competition_id}
        )
        result = RetroactivePointsResult(
            user_id=user_id, competition_id=competition_id, dry_run=dry_run
        )

        with datastore_call(f"retroactive scan for user {user_id}"):
            self._get_user(user_id)
            self._get_competition(competition_id)
            missed_rounds = self.find_missed_rounds(
                user_id, competition_id, from_round_id=from_round_id
            )

        log.info(f"Found {len(missed_rounds)} scored rounds without a record")

        touched_seasons = set()
        for betting_round in missed_rounds:
            round_id = betting_round.id
            round_name = betting_round.display_name
            season_id = betting_round.season_id
            try:
                with datastore_call(f"retroactive award for round {round_id}"):
                    if not dry_run:
                        # Re-check under the round lock so concurrent runs
                        # cannot both award the same round
                        BettingRound.lock(round_id)
                        if UserBet.user_has_round_record(user_id, round_id):
                            db.session.rollback()
                            log.info(f"{round_name} already has a record, skipped")
                            continue

                    minimum, participants = self.calculate_round_minimum(
                        round_id, exclude_user_id=user_id
                    )
                    if minimum is None:
                        db.session.rollback()
                        warning = f"{round_name} has no other participants, skipped"
                        log.warning(warning)
                        result.warnings.append(warning)
                        continue

                    split = self._split_award(betting_round, minimum)
                    if not split:
                        db.session.rollback()
                        warning = f"{round_name} has no fixtures, skipped"
                        log.warning(warning)
                        result.warnings.append(warning)
                        continue

                    if not dry_run:
                        self._write_award(
                            user_id, betting_round, split, minimum, now, actor_id
                        )
                        touched_seasons.add(season_id)

                    result.rounds.append(
                        RoundAward(
                            round_id=round_id,
                            round_name=round_name,
                            points_awarded=minimum,
                            minimum_participant_score=minimum,
                            participant_count=participants,
                        )
                    )
            except OperationalError:
                raise
            except Exception as e:
                db.session.rollback()
                log.error(f"Retroactive award failed for round {round_id}: {e}", exc_info=True)
                result.errors.append(error_entry(e, user_id=user_id, round_id=round_id))

        log.info(result.message)

        if refresh and not dry_run and result.total_points_awarded > 0:
            result.standings_refreshed = self._refresh_standings(touched_seasons)

        return result

    @monitored_operation("retroactive_points_bulk")
    def allocate_bulk(
        self, competition_id, created_after, dry_run=False, actor_id=None, now=None
    ):
        """
        Backfill every user created after a timestamp, one user at a time

        Users are read in bounded batches keyed by id; one user's failure is
        recorded and the run carries on.
        """
        if not isinstance(created_after, datetime):
            raise ValidationError("created_after must be a datetime")

        now = now or get_utc_time()
        self._get_competition(competition_id)
        result = BulkRetroactivePointsResult(
            competition_id=competition_id, dry_run=dry_run
        )

        cutoff = to_db_time(created_after)
        last_id = 0
        touched_seasons = set()
        while True:
            with datastore_call("loading users for bulk retroactive run"):
                batch = [
                    user.id
                    for user in User.get_created_after(
                        cutoff, after_id=last_id, limit=self.batch_size
                    )
                ]
            if not batch:
                break

            for user_id in batch:
                try:
                    user_result = self.allocate_for_user(
                        user_id,
                        competition_id,
                        dry_run=dry_run,
                        actor_id=actor_id,
                        now=now,
                        refresh=False,
                    )
                    result.user_results.append(user_result)
                    if user_result.total_points_awarded and not dry_run:
                        touched_seasons.update(
                            self._season_ids(award.round_id for award in user_result.rounds)
                        )
                except OperationalError:
                    raise
                except Exception as e:
                    db.session.rollback()
                    logger.error(
                        f"Bulk retroactive run failed for user {user_id}: {e}",
                        exc_info=True,
                    )
                    result.errors.append(error_entry(e, user_id=user_id))

            last_id = batch[-1]
            operation_monitor.progress(
                "retroactive_points_bulk", len(result.user_results) + len(result.errors)
            )

        logger.info(f"Bulk retroactive run: {result.message}")

        if not dry_run and result.total_points_awarded > 0:
            result.standings_refreshed = self._refresh_standings(touched_seasons)

        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _season_ids(self, round_ids):
        round_ids = list(round_ids)
        if not round_ids:
            return set()
        return {
            season_id
            for (season_id,) in db.session.query(BettingRound.season_id)
            .filter(BettingRound.id.in_(round_ids))
            .distinct()
            .all()
        }

    def _refresh_standings(self, season_ids):
        """Refresh standings after awarding points; failure is only a warning"""
        from tipster.services.standings import refresh_seasons

        return refresh_seasons(season_ids, "retroactive award")
