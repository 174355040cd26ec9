"""Database initialization and trigger token helpers."""

from __future__ import annotations

import secrets
import shutil
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from .config import settings
from .database import engine, get_session
from .models import Meta
from .utils import utcnow


def init_db() -> None:
    upgrade_database(make_backup=False)
    ensure_trigger_token()


def _alembic_config() -> Config:
    package_dir = Path(__file__).resolve().parent
    script_location = package_dir / "alembic"
    ini_path = script_location.parent / "alembic.ini"

    config = Config(str(ini_path)) if ini_path.exists() else Config()
    config.set_main_option("script_location", str(script_location))
    config.set_main_option(
        "sqlalchemy.url",
        engine.url.render_as_string(hide_password=False).replace("%", "%%"),
    )
    return config


def upgrade_database(*, make_backup: bool = True) -> list[str]:
    """Upgrade the database schema in-place.

    Returns a list of applied actions; empty if already up-to-date.
    """
    actions: list[str] = []
    db_path = Path(settings.database_path)

    if make_backup and engine.dialect.name == "sqlite" and db_path.exists():
        backup_path = db_path.with_suffix(db_path.suffix + ".bak")
        shutil.copy(db_path, backup_path)
        actions.append(f"Backup created at {backup_path}")

    inspector = inspect(engine)
    has_alembic = inspector.has_table("alembic_version")
    has_jobs = inspector.has_table("reminder_jobs")
    config = _alembic_config()

    if not has_alembic and not has_jobs:
        command.upgrade(config, "head")
        actions.append("Ran Alembic upgrade to head (fresh database)")
    elif not has_alembic:
        # Schema created outside Alembic (e.g. metadata.create_all): baseline it.
        command.stamp(config, "head")
        actions.append("Stamped existing database to Alembic head")
    else:
        command.upgrade(config, "head")
        actions.append("Applied Alembic migrations to head")

    return actions


def ensure_trigger_token() -> str:
    with get_session() as session:
        existing = session.get(Meta, settings.trigger_token_key)
        if existing:
            return existing.value
        token = secrets.token_urlsafe(32)
        meta = Meta(key=settings.trigger_token_key, value=token, updated_at=utcnow())
        session.merge(meta)
        return token


def rotate_trigger_token() -> str:
    token = secrets.token_urlsafe(32)
    with get_session() as session:
        meta = Meta(key=settings.trigger_token_key, value=token, updated_at=utcnow())
        session.merge(meta)
    return token


def fetch_trigger_token() -> str | None:
    """Return the stored trigger token, or ``None`` when it was never provisioned."""
    with get_session() as session:
        meta = session.get(Meta, settings.trigger_token_key)
        return meta.value if meta else None


def revoke_trigger_token() -> bool:
    with get_session() as session:
        meta = session.get(Meta, settings.trigger_token_key)
        if not meta:
            return False
        session.delete(meta)
        return True
