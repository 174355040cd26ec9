from __future__ import annotations

import pytest
from sqlalchemy import func, select

from eventreminders import engine
from eventreminders.models import Event, NotificationPreference
from eventreminders.seed import seed_fake_data


def test_seed_fake_data_populates_events_and_audiences(session):
    stats = seed_fake_data(event_count=4, user_count=6, days_ahead=2)

    assert stats["events"] == 4
    assert session.scalar(select(func.count()).select_from(Event)) == 4
    assert (
        session.scalar(select(func.count()).select_from(NotificationPreference))
        == stats["preferences"]
    )
    # A seeded database must be schedulable end to end.
    result = engine.run_reminder_cycle()
    assert result["reminders_failed"] == 0


def test_seed_fake_data_validates_counts():
    with pytest.raises(ValueError):
        seed_fake_data(event_count=-1)
    with pytest.raises(ValueError):
        seed_fake_data(user_count=0)
