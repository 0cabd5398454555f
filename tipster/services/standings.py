"""
Standings Aggregator

League and cup tables are folded on demand from the points ledgers. Both use
the same ranking rule:

* order by total points, highest first;
* ties on total points are broken by user id, lowest first, so the order is
  fully deterministic;
* users with equal totals share a rank (1, 1, 3 ...) and are flagged
  ``is_tied``. Winner determination relies on the shared rank.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Optional

from tipster import db
from tipster.models import BettingRound, CupPoints, User, UserBet
from tipster.utils.cache_utils import cached_standings, invalidate_season_standings

logger = logging.getLogger(__name__)


@dataclass
class StandingEntry:
    user_id: int
    username: str
    total_points: int
    rank: int = 0
    is_tied: bool = False
    rounds_participated: Optional[int] = None

    def to_dict(self):
        data = asdict(self)
        if self.rounds_participated is None:
            data.pop("rounds_participated")
        return data


def rank_entries(entries):
    """
    Sort and rank standing entries in place

    Args:
        entries: list of StandingEntry with totals filled in

    Returns:
        The same entries, ordered and ranked
    """
    entries.sort(key=lambda entry: (-entry.total_points, entry.user_id))

    totals = {}
    for entry in entries:
        totals[entry.total_points] = totals.get(entry.total_points, 0) + 1

    current_rank = 0
    previous_total = None
    for position, entry in enumerate(entries, start=1):
        if entry.total_points != previous_total:
            current_rank = position
            previous_total = entry.total_points
        entry.rank = current_rank
        entry.is_tied = totals[entry.total_points] > 1

    return entries


def _build_entries(rows, with_rounds=False):
    """Turn (user_id, username, total[, rounds]) rows into ranked entries"""
    entries = []
    for row in rows:
        entries.append(
            StandingEntry(
                user_id=row[0],
                username=row[1],
                total_points=int(row[2] or 0),
                rounds_participated=int(row[3]) if with_rounds else None,
            )
        )
    return rank_entries(entries)


def calculate_league_standings(season_id):
    """
    League table for a season: every user with a bet row in the season's
    rounds, totalled over non-null points_awarded
    """
    rows = (
        db.session.query(
            User.id,
            User.username,
            db.func.coalesce(db.func.sum(UserBet.points_awarded), 0),
        )
        .join(UserBet, UserBet.user_id == User.id)
        .join(BettingRound, BettingRound.id == UserBet.betting_round_id)
        .filter(BettingRound.season_id == season_id)
        .group_by(User.id, User.username)
        .all()
    )
    return _build_entries(rows)


def calculate_cup_standings(season_id):
    """Cup table for a season, with the number of cup rounds each user played"""
    rows = (
        db.session.query(
            User.id,
            User.username,
            db.func.coalesce(db.func.sum(CupPoints.points), 0),
            db.func.count(CupPoints.id),
        )
        .join(CupPoints, CupPoints.user_id == User.id)
        .filter(CupPoints.season_id == season_id)
        .group_by(User.id, User.username)
        .all()
    )
    return _build_entries(rows, with_rounds=True)


def top_entries(entries):
    """Every entry tied at the highest total"""
    return [entry for entry in entries if entry.rank == 1]


@cached_standings("league")
def get_league_standings(season_id):
    """Cached, JSON-ready league table for the request layer"""
    return [entry.to_dict() for entry in calculate_league_standings(season_id)]


@cached_standings("cup")
def get_cup_standings(season_id):
    """Cached, JSON-ready cup table for the request layer"""
    return [entry.to_dict() for entry in calculate_cup_standings(season_id)]


def refresh_standings(season_id):
    """
    Drop cached tables for a season and recompute them

    Returns:
        The freshly computed league standings as dicts
    """
    invalidate_season_standings(season_id)
    standings = get_league_standings(season_id)

    from tipster.notifications import broadcast_standings_updated

    broadcast_standings_updated(season_id, standings)
    logger.info(f"Standings refreshed for season {season_id} ({len(standings)} users)")
    return standings


def refresh_seasons(season_ids, reason):
    """
    Refresh standings for every season a ledger change touched

    A failed refresh is logged and reported, the ledger change itself stands
    and the next scoring run catches the tables up.

    Returns:
        bool: True when every season was refreshed
    """
    try:
        for season_id in sorted(set(season_ids)):
            refresh_standings(season_id)
        return True
    except Exception as e:
        logger.warning(f"Standings refresh after {reason} failed: {e}")
        return False
