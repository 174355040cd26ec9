"""Shared pytest fixtures for the reminder scheduler."""

from __future__ import annotations

import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from eventreminders import api, config, database, engine, storage
from eventreminders.models import Base

# Naive UTC reference time used across scheduling tests.
NOW = datetime(2025, 6, 9, 10, 0)


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    test_engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    session_factory = scoped_session(
        sessionmaker(
            bind=test_engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = test_engine
    database.SessionLocal = session_factory
    storage.engine = test_engine
    storage.get_session = database.get_session
    api.SessionLocal = session_factory
    Base.metadata.create_all(bind=test_engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield


@pytest.fixture(autouse=True)
def engine_settings(monkeypatch):
    """Run cycles inline in UTC without retry sleeps."""

    patched = replace(
        config.settings,
        max_workers=1,
        retry_attempts=3,
        retry_backoff_seconds=0.0,
        lookahead_hours=24,
        reminder_tiers="1h,1d",
        event_timezone="UTC",
        max_run_seconds=300,
        stale_job_grace_minutes=60,
    )
    monkeypatch.setattr(engine, "settings", patched)
    return patched


@pytest.fixture()
def session():
    db = database.SessionLocal.session_factory()
    try:
        yield db
    finally:
        db.close()
