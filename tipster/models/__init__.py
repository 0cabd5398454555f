from tipster import db  # noqa: F401 - imported for model imports

from .admin_action import AdminAction
from .betting_round import BettingRound
from .competition import Competition
from .cup_points import CupPoints
from .fixture import Fixture
from .season import Season
from .season_winner import SeasonWinner
from .team import Team
from .user import User
from .user_bet import UserBet

__all__ = [
    "User",
    "Competition",
    "Season",
    "Team",
    "BettingRound",
    "Fixture",
    "UserBet",
    "CupPoints",
    "SeasonWinner",
    "AdminAction",
]
