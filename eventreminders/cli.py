"""Typer CLI for the event reminder scheduler."""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import sys
from datetime import datetime
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .engine import cleanup_stale_jobs, run_reminder_cycle
from .errors import ConfigError, TransientStoreError
from .scheduler import start_scheduler, stop_scheduler
from .seed import seed_fake_data
from .storage import (
    ensure_trigger_token,
    fetch_trigger_token,
    init_db,
    rotate_trigger_token,
    upgrade_database,
)
from .utils import to_naive_utc

app = typer.Typer(help="Event reminder scheduler command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _read_only_hint(exc: OperationalError, action: str) -> None:
    message = str(getattr(exc, "orig", exc)).lower()
    if "readonly" in message or "read-only" in message:
        typer.secho(
            f"Unable to {action} because the database is read-only. "
            f"Ensure write access to {settings.database_path}.",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)
    raise exc


def _parse_now(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return to_naive_utc(datetime.fromisoformat(raw))
    except ValueError:
        typer.secho(f"Invalid --now value {raw!r}; use ISO8601", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=2)


@app.command("trigger-token")
def trigger_token() -> None:
    """Print the bearer token required by the HTTP trigger."""
    init_db()
    token = fetch_trigger_token() or ensure_trigger_token()
    typer.echo(token)


@app.command("rotate-trigger-token")
def rotate_token() -> None:
    """Rotate the HTTP trigger bearer token."""
    try:
        init_db()
        token = rotate_trigger_token()
    except OperationalError as exc:
        _read_only_hint(exc, "rotate the trigger token")
        return
    typer.echo(token)


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        _read_only_hint(exc, "upgrade")
        return

    ensure_trigger_token()
    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("run")
def run_cycle(
    now: str | None = typer.Option(
        None, "--now", help="Override the current time (ISO8601, UTC if naive)"
    ),
) -> None:
    """Run one reminder scheduling cycle manually."""
    init_db()
    try:
        stats = run_reminder_cycle(now=_parse_now(now))
    except (ConfigError, TransientStoreError) as exc:
        typer.echo(json.dumps({"success": False, "error": str(exc)}, indent=2))
        raise typer.Exit(code=1)
    typer.echo(json.dumps({"success": True, **stats}, indent=2))


@app.command("cleanup")
def cleanup(
    now: str | None = typer.Option(
        None, "--now", help="Override the current time (ISO8601, UTC if naive)"
    ),
) -> None:
    """Cancel pending jobs for withdrawn events or lapsed fire times."""
    init_db()
    try:
        stats = cleanup_stale_jobs(now=_parse_now(now))
    except (ConfigError, TransientStoreError) as exc:
        typer.echo(json.dumps({"success": False, "error": str(exc)}, indent=2))
        raise typer.Exit(code=1)
    typer.echo(json.dumps({"success": True, "cancelled": stats}, indent=2))


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start FastAPI with APScheduler."""
    init_db()
    if settings.enable_scheduler:
        start_scheduler()
    config = uvicorn.Config(
        "eventreminders.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    try:
        typer.echo(f"Starting event reminder scheduler on {host}:{port}")
        server.run()
    finally:
        stop_scheduler()


@app.command("seed-data")
def seed_data(
    events: int = typer.Option(
        settings.seed_events, "--events", min=0, help="Number of events to create"
    ),
    users: int = typer.Option(
        settings.seed_users, "--users", min=1, help="Number of fake users"
    ),
    days: int = typer.Option(
        3, "--days", min=1, help="Spread events over this many upcoming days"
    ),
):
    """Populate the database with fake events, subscriptions, and preferences."""
    stats = seed_fake_data(event_count=events, user_count=users, days_ahead=days)
    typer.echo(
        f"Seed complete: {stats['events']} events, {stats['favorites']} favorites, "
        f"{stats['rsvps']} RSVPs, {stats['preferences']} preference records created."
    )


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    lookahead_hours: int | None = typer.Option(
        None, "--lookahead-hours", min=1, help="Lookahead window in hours"
    ),
    reminder_tiers: str | None = typer.Option(
        None,
        "--reminder-tiers",
        help=(
            "Comma separated tier ids (1h,1d,1w). A tier only fires when "
            "--lookahead-hours exceeds its offset: use 48 for 1d, 192 for 1w"
        ),
    ),
    event_timezone: str | None = typer.Option(
        None, "--event-timezone", help="IANA timezone for event dates and times"
    ),
    max_workers: int | None = typer.Option(
        None, "--max-workers", min=1, help="Worker pool size for per-event fan-out"
    ),
    retry_attempts: int | None = typer.Option(
        None, "--retry-attempts", min=1, help="Attempts per store operation"
    ),
    retry_backoff_seconds: float | None = typer.Option(
        None, "--retry-backoff-seconds", min=0.0, help="Initial retry backoff"
    ),
    max_run_seconds: int | None = typer.Option(
        None, "--max-run-seconds", min=0, help="Run budget (0 disables)"
    ),
    stale_job_grace_minutes: int | None = typer.Option(
        None,
        "--stale-job-grace-minutes",
        min=0,
        help="Minutes after fire_at before an unclaimed job is cancelled",
    ),
    schedule_interval_minutes: int | None = typer.Option(
        None, "--schedule-interval-minutes", min=1, help="Minutes between cycles"
    ),
    enable_scheduler: bool | None = typer.Option(
        None,
        "--enable-scheduler/--disable-scheduler",
        help="Toggle the in-process scheduler",
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None,
        "--config-path",
        help="Path to eventreminders.toml (default: ./eventreminders.toml)",
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "lookahead_hours": lookahead_hours,
        "reminder_tiers": reminder_tiers,
        "event_timezone": event_timezone,
        "max_workers": max_workers,
        "retry_attempts": retry_attempts,
        "retry_backoff_seconds": retry_backoff_seconds,
        "max_run_seconds": max_run_seconds,
        "stale_job_grace_minutes": stale_job_grace_minutes,
        "schedule_interval_minutes": schedule_interval_minutes,
        "enable_scheduler": enable_scheduler,
        "app_host": host,
        "app_port": port,
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


@app.command("test")
def run_tests(pytest_args: list[str] = typer.Argument(None, help="Extra pytest args")):
    """Run the test suite with helpful defaults."""
    env = os.environ.copy()
    env.setdefault("PYTHONPATH", ".")
    env.setdefault("UV_CACHE_DIR", ".uv-cache")
    uv_path = shutil.which("uv")
    if uv_path:
        cmd = [uv_path, "run", "pytest"]
    else:
        typer.echo("uv not found, falling back to python -m pytest")
        cmd = [sys.executable, "-m", "pytest"]
    if pytest_args:
        cmd.extend(pytest_args)
    typer.echo(f"Running tests: {' '.join(cmd)}")
    result = subprocess.run(cmd, env=env)
    raise typer.Exit(code=result.returncode)


if __name__ == "__main__":
    app()
