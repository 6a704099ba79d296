"""Typer CLI for EventFlow."""

from __future__ import annotations

import json
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from . import crud
from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .database import get_session
from .errors import ServiceError
from .models import Role
from .scheduler import start_scheduler, stop_scheduler
from .seed import seed_fake_data
from .storage import init_db, upgrade_database

app = typer.Typer(help="EventFlow command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _exit_if_read_only(exc: OperationalError, action: str) -> None:
    message = str(getattr(exc, "orig", exc)).lower()
    if "readonly" in message or "read-only" in message:
        typer.secho(
            f"Unable to {action} because the database is read-only. "
            f"Ensure write access to {settings.database_path}.",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)


def _fail(message: str) -> None:
    typer.secho(message, err=True, fg=typer.colors.RED)
    raise typer.Exit(code=1)


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the SQLite database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        _exit_if_read_only(exc, "upgrade")
        raise

    if not actions:
        typer.echo("Database already up to date.")
        return

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start FastAPI with the background notification scheduler."""
    init_db()
    if settings.enable_scheduler:
        start_scheduler()
    config = uvicorn.Config(
        "eventflow.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    try:
        typer.echo(f"Starting EventFlow on {host}:{port}")
        server.run()
    finally:
        stop_scheduler()


@app.command("create-user")
def create_user(
    email: str = typer.Option(..., "--email", help="Login email for the user"),
    name: str = typer.Option("", "--name", help="Display name"),
    admin: bool = typer.Option(False, "--admin", help="Grant the ADMIN role"),
) -> None:
    """Create a user and print their API token."""
    init_db()
    try:
        with get_session() as session:
            user = crud.create_user(
                session,
                email=email,
                name=name,
                role=Role.ADMIN if admin else Role.USER,
            )
            token = user.api_token
    except (ServiceError, ValueError) as exc:
        _fail(str(exc))
    except OperationalError as exc:
        _exit_if_read_only(exc, "create the user")
        raise
    typer.echo(token)


@app.command("rotate-token")
def rotate_token(email: str = typer.Argument(..., help="Email of the user")) -> None:
    """Issue a new API token for a user, invalidating the old one."""
    init_db()
    with get_session() as session:
        user = crud.get_user_by_email(session, email)
        if not user:
            _fail(f"No user with email {email}")
        token = crud.rotate_api_token(session, user)
    typer.echo(token)


@app.command("promote")
def promote(
    email: str = typer.Argument(..., help="Email of the user"),
    demote: bool = typer.Option(False, "--demote", help="Revoke the ADMIN role"),
) -> None:
    """Grant or revoke the ADMIN role."""
    init_db()
    with get_session() as session:
        user = crud.get_user_by_email(session, email)
        if not user:
            _fail(f"No user with email {email}")
        if not demote and user.is_banned:
            _fail("Unban the user before granting the ADMIN role.")
        crud.set_role(session, user, Role.USER if demote else Role.ADMIN)
        role = user.role.value
    typer.echo(f"{email} is now {role}")


@app.command("seed-data")
def seed_data(
    users: int = typer.Option(
        settings.seed_users, "--users", min=1, help="Number of users to create"
    ),
    max_events: int = typer.Option(
        settings.seed_events_per_user,
        "--max-events",
        min=0,
        help="Maximum events to create for each user",
    ),
    max_guests: int = typer.Option(
        settings.seed_guests_per_event,
        "--max-guests",
        min=0,
        help="Maximum guests to invite to each event",
    ),
    reports: int = typer.Option(
        settings.seed_reports,
        "--reports",
        min=0,
        help="Number of reports to file against random events",
    ),
):
    """Populate the database with fake users, events and reports."""
    stats = seed_fake_data(
        user_count=users,
        max_events_per_user=max_events,
        max_guests_per_event=max_guests,
        report_count=reports,
    )
    typer.echo(
        f"Seed complete: {stats['users']} users, {stats['events']} events, "
        f"{stats['guests']} guests, {stats['reports']} reports created."
    )


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Config file to update (defaults to active one)"
    ),
    host: str | None = typer.Option(None, "--host", help="Default bind host"),
    port: int | None = typer.Option(None, "--port", help="Default bind port"),
    enable_scheduler: bool | None = typer.Option(
        None,
        "--enable-scheduler/--disable-scheduler",
        help="Toggle the background notification scheduler",
    ),
    notifications_enabled: bool | None = typer.Option(
        None,
        "--enable-notifications/--disable-notifications",
        help="Toggle outbound notifications",
    ),
    events_per_page: int | None = typer.Option(
        None, "--events-per-page", min=1, help="Page size for public event listings"
    ),
    admin_list_limit: int | None = typer.Option(
        None, "--admin-list-limit", min=1, help="Row limit for moderation listings"
    ),
    seed_users: int | None = typer.Option(
        None, "--seed-users", min=1, help="Default user count for seed-data"
    ),
    seed_events_per_user: int | None = typer.Option(
        None, "--seed-events-per-user", min=0, help="Default events per user"
    ),
    seed_guests_per_event: int | None = typer.Option(
        None, "--seed-guests-per-event", min=0, help="Default guests per event"
    ),
    seed_reports: int | None = typer.Option(
        None, "--seed-reports", min=0, help="Default report count for seed-data"
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "app_host": host,
        "app_port": port,
        "enable_scheduler": enable_scheduler,
        "notifications_enabled": notifications_enabled,
        "events_per_page": events_per_page,
        "admin_list_limit": admin_list_limit,
        "seed_users": seed_users,
        "seed_events_per_user": seed_events_per_user,
        "seed_guests_per_event": seed_guests_per_event,
        "seed_reports": seed_reports,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    target_path = config_path or settings.config_path
    if clean_updates:
        settings_ref = update_config_file(clean_updates, path=target_path)
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not clean_updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2))
