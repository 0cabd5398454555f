#!/usr/bin/env python3
"""
Tipster Management CLI

This script provides command-line access to the scoring and standings
operations of the Tipster application.
"""

import logging
from datetime import date

import click
from flask import current_app
from flask.cli import with_appcontext
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tipster import create_app, db
from tipster.models import BettingRound, Competition, Season, SeasonWinner, User
from tipster.models.season_winner import COMPETITION_CUP, COMPETITION_LEAGUE
from tipster.services.cup_activation import (
    CupActivationDetector,
    set_round_cup_activation,
)
from tipster.services.cup_scoring import CupScoringLedger
from tipster.services.exceptions import TipsterError
from tipster.services.retroactive_points import RetroactivePointsService
from tipster.services.round_scoring import process_rounds, recalculate_round
from tipster.services.season_admin import set_bonus_mode
from tipster.services.season_completion import (
    complete_season,
    detect_completed_seasons,
)
from tipster.services.standings import (
    calculate_cup_standings,
    calculate_league_standings,
)
from tipster.services.winner_determination import determine_pending, determine_winners
from tipster.utils.timezone_utils import format_deadline

app = create_app()


def _echo_result(result):
    """Print an operation or batch result"""
    icon = "✅" if result.success else ("⚠️ " if result.status_code == 207 else "❌")
    click.echo(f"{icon} {result.message}")

    errors = getattr(result, "all_errors", None) or getattr(result, "errors", [])
    for error in errors:
        context = ", ".join(
            f"{k}={v}" for k, v in error.items() if k not in ("error", "code", "retryable")
        )
        retry = " (retryable)" if error.get("retryable") else ""
        click.echo(f"   ❌ {context}: {error.get('error')}{retry}")

    for warning in getattr(result, "warnings", []):
        click.echo(f"   ⚠️  {warning}")


def _resolve_season(year=None, competition_code=None):
    query = Season.query
    if competition_code:
        competition = Competition.query.filter_by(code=competition_code).first()
        if not competition:
            raise click.ClickException(f"Competition {competition_code} not found")
        query = query.filter_by(competition_id=competition.id)

    if year:
        season = query.filter_by(year=year).first()
    else:
        season = query.filter_by(is_current=True).order_by(Season.id).first()

    if not season:
        raise click.ClickException(
            f"Season {year} not found" if year else "No current season found"
        )
    return season


def _resolve_competition(code):
    competition = Competition.query.filter_by(code=code).first()
    if not competition:
        raise click.ClickException(f"Competition {code} not found")
    return competition


@click.group()
def cli():
    """Tipster Management CLI"""
    pass


# Season Management Commands
@cli.group()
def season():
    """Season management commands"""
    pass


@season.command()
@click.argument("competition_code")
@click.argument("year", type=int)
@click.option("--name", help="Display name (default: '<competition> <year>')")
@click.option(
    "--start-date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    help="Season start date (YYYY-MM-DD)",
)
@click.option(
    "--end-date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    help="Season end date (YYYY-MM-DD)",
)
@click.option("--activate", is_flag=True, help="Make this the current season")
@with_appcontext
def create(competition_code, year, name, start_date, end_date, activate):
    """Create a new season"""
    competition = _resolve_competition(competition_code)
    try:
        new_season = Season(
            competition_id=competition.id,
            year=year,
            name=name or f"{competition.name} {year}",
            start_date=start_date.date() if start_date else date(year, 8, 1),
            end_date=end_date.date() if end_date else date(year + 1, 5, 31),
        )
        db.session.add(new_season)
        db.session.commit()
        click.echo(f"✅ Created season {new_season.name}")

        if activate:
            new_season.activate()
            click.echo(f"✅ Activated season {new_season.name}")

    except IntegrityError as e:
        db.session.rollback()
        click.echo(f"❌ Season {year} already exists for {competition.code}!")
        logging.error(f"Season creation failed - integrity error: {e}")
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"❌ Database error creating season: {str(e)}")
        logging.error(f"Season creation failed - SQL error: {e}")


@season.command()
@click.argument("competition_code")
@click.argument("year", type=int)
@with_appcontext
def activate(competition_code, year):
    """Make a season the current one of its competition"""
    target = _resolve_season(year, competition_code)
    target.activate()
    click.echo(f"✅ Activated season {target.name}")


@season.command("list")
@with_appcontext
def list_seasons():
    """List all seasons"""
    seasons = Season.query.order_by(Season.competition_id, Season.year.desc()).all()

    if not seasons:
        click.echo("No seasons found.")
        return

    click.echo("Seasons:")
    for s in seasons:
        status = "🟢 CURRENT" if s.is_current else "⚪ Inactive"
        flags = []
        if s.bonus_mode_active:
            flags.append("bonus")
        if s.is_cup_activated:
            flags.append("cup")
        if s.is_completed:
            flags.append("completed")
        if s.winner_determined_at:
            flags.append("winners")
        click.echo(f"  {s.id}: {s.name} {status} {' '.join(flags)}")


@season.command()
@click.argument("season_id", type=int)
@click.option("--force", is_flag=True, help="Complete even if fixtures remain")
@with_appcontext
def complete(season_id, force):
    """Mark a season completed"""
    try:
        _echo_result(complete_season(season_id, force=force))
    except TipsterError as e:
        click.echo(f"❌ {e.message}")


@season.command()
@with_appcontext
def detect_completed():
    """Complete every season that has finished"""
    _echo_result(detect_completed_seasons())


@season.command()
@click.argument("season_id", type=int)
@click.option("--on/--off", "active", default=True, help="Enable or disable bonus mode")
@with_appcontext
def bonus(season_id, active):
    """Toggle global bonus mode for a season"""
    try:
        _echo_result(set_bonus_mode(season_id, active))
    except TipsterError as e:
        click.echo(f"❌ {e.message}")


# Round Commands
@cli.group()
def rounds():
    """Round scoring commands"""
    pass


@rounds.command("list")
@click.option("--competition", "competition_code", help="Competition code")
@click.option("--year", type=int, help="Season year, defaults to the current season")
@with_appcontext
def list_rounds(competition_code=None, year=None):
    """List the rounds of a season with their deadlines"""
    season = _resolve_season(year, competition_code)

    click.echo(f"📅 Rounds of {season.name}:")
    for betting_round in season.rounds.order_by(BettingRound.sequence).all():
        bonus = " (bonus)" if betting_round.is_bonus_round else ""
        click.echo(
            f"  {betting_round.id}: {betting_round.display_name}{bonus} - "
            f"{betting_round.status}, deadline "
            f"{format_deadline(betting_round.earliest_fixture_kickoff)}"
        )


@rounds.command()
@with_appcontext
def process():
    """Detect finished rounds, score them and score the cup"""
    _echo_result(process_rounds())


@rounds.command()
@click.argument("round_id", type=int)
@with_appcontext
def recalculate(round_id):
    """Recalculate league points of a scored round"""
    try:
        _echo_result(recalculate_round(round_id))
    except TipsterError as e:
        click.echo(f"❌ {e.message}")


@rounds.command()
@click.argument("round_id", type=int)
@click.option("--on/--off", "activated", default=True, help="Set or clear cup activation")
@with_appcontext
def cup_toggle(round_id, activated):
    """Set or clear a round's cup activation"""
    try:
        _echo_result(set_round_cup_activation(round_id, activated))
    except TipsterError as e:
        click.echo(f"❌ {e.message}")


@rounds.command()
@click.argument("round_id", type=int)
@with_appcontext
def sync_deadline(round_id):
    """Re-derive a round's deadline from its earliest fixture kickoff"""
    betting_round = db.session.get(BettingRound, round_id)
    if not betting_round:
        click.echo(f"❌ Round {round_id} not found")
        return

    try:
        deadline = betting_round.refresh_deadline_from_fixtures()
        db.session.commit()
        click.echo(f"✅ {betting_round.display_name} deadline: {format_deadline(deadline)}")
    except TipsterError as e:
        db.session.rollback()
        click.echo(f"❌ {e.message}")


# Cup Commands
@cli.group()
def cup():
    """Cup activation and scoring commands"""
    pass


@cup.command()
@click.argument("season_id", type=int)
@with_appcontext
def check(season_id):
    """Show the activation condition for a season and activate if met"""
    detector = CupActivationDetector.from_config(current_app.config)
    condition = detector.calculate_condition(season_id)
    click.echo(f"📊 {condition.reasoning}")
    try:
        _echo_result(detector.check_season(season_id))
    except TipsterError as e:
        click.echo(f"❌ {e.message}")


@cup.command()
@with_appcontext
def run():
    """Run cup activation detection for every current season"""
    _echo_result(CupActivationDetector.from_config(current_app.config).run())


@cup.command()
@click.argument("round_id", type=int)
@with_appcontext
def recalculate_round_cup(round_id):
    """Recompute cup points for one round"""
    try:
        _echo_result(CupScoringLedger().calculate_round(round_id, refresh=True))
    except TipsterError as e:
        click.echo(f"❌ {e.message}")


@cup.command()
@click.argument("season_id", type=int)
@with_appcontext
def recalculate_season(season_id):
    """Recompute cup points for every round since activation"""
    try:
        _echo_result(CupScoringLedger().recalculate_since_activation(season_id))
    except TipsterError as e:
        click.echo(f"❌ {e.message}")


# Retroactive Points Commands
@cli.group()
def retro():
    """Retroactive points commands"""
    pass


def _retro_service():
    return RetroactivePointsService(
        batch_size=current_app.config.get("RETROACTIVE_BATCH_SIZE", 25)
    )


@retro.command("check")
@click.argument("competition_code")
@click.argument("username")
@with_appcontext
def retro_check(competition_code, username):
    """Check whether a user is missing scored rounds"""
    competition = _resolve_competition(competition_code)
    target = User.query.filter_by(username=username).first()
    if not target:
        raise click.ClickException(f"User {username} not found")

    report = _retro_service().check_user(target.id, competition.id)
    if report["needs_retroactive_points"]:
        click.echo(
            f"⚠️  {username} missed {len(report['missed_rounds'])} rounds, "
            f"estimated {report['estimated_points_to_award']} points"
        )
    else:
        click.echo(f"✅ {username} has a record in every scored round")


@retro.command("user")
@click.argument("competition_code")
@click.argument("username")
@click.option("--from-round", type=int, help="First round id to consider")
@click.option("--dry-run", is_flag=True, help="Compute without writing")
@with_appcontext
def retro_user(competition_code, username, from_round, dry_run):
    """Award retroactive points to one user"""
    competition = _resolve_competition(competition_code)
    target = User.query.filter_by(username=username).first()
    if not target:
        raise click.ClickException(f"User {username} not found")

    try:
        result = _retro_service().allocate_for_user(
            target.id, competition.id, from_round_id=from_round, dry_run=dry_run
        )
    except TipsterError as e:
        click.echo(f"❌ {e.message}")
        return

    for award in result.rounds:
        click.echo(
            f"   {award.round_name}: {award.points_awarded} points "
            f"(min of {award.participant_count} participants)"
        )
    _echo_result(result)


@retro.command("bulk")
@click.argument("competition_code")
@click.argument("created_after", type=click.DateTime())
@click.option("--dry-run", is_flag=True, help="Compute without writing")
@with_appcontext
def retro_bulk(competition_code, created_after, dry_run):
    """Award retroactive points to every user created after a date"""
    competition = _resolve_competition(competition_code)
    result = _retro_service().allocate_bulk(
        competition.id, created_after, dry_run=dry_run
    )
    click.echo(
        f"👥 {result.total_users_processed} users, "
        f"{result.total_rounds_processed} rounds"
    )
    _echo_result(result)


# Standings Commands
@cli.group()
def standings():
    """Standings and winners commands"""
    pass


@standings.command()
@click.argument("season_id", type=int)
@click.option("--cup", "show_cup", is_flag=True, help="Show the cup table")
@click.option("--limit", default=20, help="Number of rows to show")
@with_appcontext
def show(season_id, show_cup, limit):
    """Print a season's standings"""
    entries = (
        calculate_cup_standings(season_id)
        if show_cup
        else calculate_league_standings(season_id)
    )
    if not entries:
        click.echo("No standings yet.")
        return

    for entry in entries[:limit]:
        tie = "=" if entry.is_tied else " "
        rounds_played = (
            f" ({entry.rounds_participated} rounds)"
            if entry.rounds_participated is not None
            else ""
        )
        click.echo(
            f"  {entry.rank:>3}{tie} {entry.username:<20} {entry.total_points:>5}{rounds_played}"
        )


@standings.command()
@click.argument("season_id", type=int)
@with_appcontext
def winners(season_id):
    """Determine winners of a completed season"""
    try:
        _echo_result(determine_winners(season_id))
    except TipsterError as e:
        click.echo(f"❌ {e.message}")


@standings.command()
@with_appcontext
def pending_winners():
    """Determine winners for every completed season still missing them"""
    _echo_result(determine_pending())


@standings.command()
@click.argument("season_id", type=int)
@with_appcontext
def list_winners(season_id):
    """List recorded winners of a season"""
    for competition_type in (COMPETITION_LEAGUE, COMPETITION_CUP):
        rows = SeasonWinner.get_season_winners(season_id, competition_type)
        names = ", ".join(f"{w.user.username} ({w.total_points})" for w in rows)
        click.echo(f"🏆 {competition_type.title()}: {names or 'none'}")


# User Management Commands
@cli.group()
def user():
    """User management commands"""
    pass


@user.command()
@click.argument("username")
@click.argument("email")
@click.argument("password")
@click.option("--display-name", help="Display name")
@with_appcontext
def create_admin(username, email, password, display_name=None):
    """Create an admin user"""
    existing = User.query.filter(
        (User.username == username) | (User.email == email)
    ).first()

    if existing:
        click.echo(
            f"❌ User with username '{username}' or email '{email}' already exists!"
        )
        return

    admin = User(
        username=username,
        email=email,
        display_name=display_name,
        is_active=True,
        is_admin=True,
    )
    admin.set_password(password)

    try:
        db.session.add(admin)
        db.session.commit()
        click.echo(f"✅ Created admin user '{username}' ({email})")
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"❌ Error creating user: {str(e)}")


@user.command()
@click.argument("username")
@with_appcontext
def awards(username):
    """List the league and cup titles a user has won"""
    target = User.query.filter_by(username=username).first()
    if not target:
        click.echo(f"❌ User '{username}' not found")
        return

    wins = SeasonWinner.get_user_awards(target.id)
    if not wins:
        click.echo(f"{username} has not won anything yet")
        return

    for win in wins:
        click.echo(
            f"🏆 {win.season.name} {win.competition_type} ({win.total_points} points)"
        )


# Database Commands
@cli.group()
def db_cmd():
    """Database commands"""
    pass


@db_cmd.command()
@with_appcontext
def init_db():
    """Initialize database tables"""
    db.create_all()
    click.echo("✅ Database tables created successfully!")


@cli.command()
@with_appcontext
def status():
    """Show application status"""
    click.echo("⚽ Tipster Application Status")
    click.echo("=" * 40)

    try:
        db.session.execute(text("SELECT 1"))
        click.echo("✅ Database: Connected")
    except SQLAlchemyError as e:
        click.echo(f"❌ Database: Error - {str(e)}")
        return

    for current in Season.get_current_seasons():
        stats = current.get_fixture_stats()
        cup_state = "active" if current.is_cup_activated else "inactive"
        click.echo(
            f"✅ {current.name}: {stats['finished']}/{stats['total']} fixtures final, "
            f"cup {cup_state}"
        )

    user_count = User.query.filter_by(is_active=True).count()
    click.echo(f"👥 Active Users: {user_count}")


if __name__ == "__main__":
    with app.app_context():
        cli()
