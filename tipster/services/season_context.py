"""Explicit season state handed to every scoring call"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from tipster import db
from tipster.services.exceptions import DataIntegrityError, NotFound


@dataclass(frozen=True)
class SeasonContext:
    """Snapshot of the season flags that influence scoring"""

    season_id: int
    competition_id: int
    is_current: bool
    bonus_mode_active: bool
    cup_activated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_season(cls, season):
        return cls(
            season_id=season.id,
            competition_id=season.competition_id,
            is_current=bool(season.is_current),
            bonus_mode_active=bool(season.bonus_mode_active),
            cup_activated_at=season.cup_activated_at,
            completed_at=season.completed_at,
        )

    @classmethod
    def load(cls, season_id):
        from tipster.models import Season

        season = db.session.get(Season, season_id)
        if season is None:
            raise NotFound(f"Season {season_id} not found", season_id=season_id)
        return cls.from_season(season)

    @classmethod
    def for_round(cls, betting_round):
        if betting_round.season is None:
            raise DataIntegrityError(
                f"Round {betting_round.id} has no season", round_id=betting_round.id
            )
        return cls.from_season(betting_round.season)

    @property
    def is_cup_activated(self):
        return self.cup_activated_at is not None
