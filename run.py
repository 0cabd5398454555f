# Eventlet monkey patching MUST be first before any other imports
import eventlet
eventlet.monkey_patch()

from tipster import create_app, db, socketio  # noqa: E402
from tipster.models import (  # noqa: E402
    BettingRound,
    CupPoints,
    Fixture,
    Season,
    SeasonWinner,
    User,
    UserBet,
)

app = create_app()


@app.shell_context_processor
def make_shell_context():
    return {
        "db": db,
        "User": User,
        "Season": Season,
        "BettingRound": BettingRound,
        "Fixture": Fixture,
        "UserBet": UserBet,
        "CupPoints": CupPoints,
        "SeasonWinner": SeasonWinner,
    }


if __name__ == "__main__":
    socketio.run(app, host="0.0.0.0", port=5000, debug=app.config.get("DEBUG", False))
