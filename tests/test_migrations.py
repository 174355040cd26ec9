from __future__ import annotations

import types

import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from eventreminders import storage, database
from eventreminders.models import Base


def _patch_db(monkeypatch: pytest.MonkeyPatch, engine: Engine, db_path) -> None:
    monkeypatch.setattr(storage, "engine", engine)
    monkeypatch.setattr(database, "engine", engine)
    monkeypatch.setattr(database, "DATABASE_URL", str(engine.url))
    fake_settings = types.SimpleNamespace(database_path=db_path)
    monkeypatch.setattr(storage, "settings", fake_settings)


def _get_version(engine: Engine) -> str | None:
    with engine.connect() as conn:
        try:
            return conn.execute(
                text("select version_num from alembic_version")
            ).scalar()
        except OperationalError:
            return None


def test_upgrade_database_stamps_existing_db(monkeypatch, tmp_path):
    db_path = tmp_path / "existing.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    Base.metadata.create_all(bind=engine)  # existing schema without Alembic tracking
    _patch_db(monkeypatch, engine, db_path)

    actions = storage.upgrade_database(make_backup=False)

    assert "Stamped existing database to Alembic head" in actions
    assert _get_version(engine) == "0002_reminder_jobs"


def test_upgrade_database_creates_fresh_schema(monkeypatch, tmp_path):
    db_path = tmp_path / "fresh.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    _patch_db(monkeypatch, engine, db_path)

    actions = storage.upgrade_database(make_backup=False)

    assert "Ran Alembic upgrade to head (fresh database)" in actions
    assert _get_version(engine) == "0002_reminder_jobs"
    inspector = inspect(engine)
    for table in ("events", "favorites", "rsvps", "notification_preferences", "meta"):
        assert inspector.has_table(table)
    indexes = {index["name"]: index for index in inspector.get_indexes("reminder_jobs")}
    assert indexes["uq_reminder_jobs_active"]["unique"]


def test_migrated_schema_enforces_one_active_job(monkeypatch, tmp_path):
    db_path = tmp_path / "guard.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    _patch_db(monkeypatch, engine, db_path)
    storage.upgrade_database(make_backup=False)

    insert = text(
        "insert into reminder_jobs (id, event_id, user_id, tier_id, fire_at, dedup_key, "
        "status, notification_type, title, body, created_at, status_changed_at) values "
        "(:id, 'e1', 'u1', '1h', '2025-06-09 11:00:00', 'k', :status, 'event_reminder', "
        "'t', 'b', '2025-06-09 10:00:00', '2025-06-09 10:00:00') on conflict do nothing"
    )
    with engine.begin() as conn:
        first = conn.execute(insert, {"id": "a", "status": "cancelled"}).rowcount
        second = conn.execute(insert, {"id": "b", "status": "pending"}).rowcount
        third = conn.execute(insert, {"id": "c", "status": "pending"}).rowcount

    assert (first, second, third) == (1, 1, 0)


def test_upgrade_database_backs_up_sqlite_file(monkeypatch, tmp_path):
    db_path = tmp_path / "backup.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    _patch_db(monkeypatch, engine, db_path)
    storage.upgrade_database(make_backup=False)

    actions = storage.upgrade_database(make_backup=True)

    assert any(action.startswith("Backup created at") for action in actions)
    assert "Applied Alembic migrations to head" in actions
    assert (tmp_path / "backup.sqlite.bak").exists()
