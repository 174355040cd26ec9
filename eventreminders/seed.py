"""Development helpers for populating fake events, subscriptions, and preferences."""

from __future__ import annotations

import random
from datetime import time, timedelta

from faker import Faker
from sqlalchemy.orm import Session

from .crud import add_favorite, create_event, create_rsvp, set_preferences
from .database import get_session
from .models import Event
from .storage import init_db
from .utils import utcnow

_event_types = [
    "Sound Bath",
    "Breathwork Circle",
    "Yoga Flow",
    "Meditation Walk",
    "Cacao Ceremony",
    "Workshop",
    "Community Dinner",
    "Full Moon Gathering",
]
_rsvp_statuses = ["going", "going", "going", "interested", "not_going"]


def seed_fake_data(
    *,
    event_count: int = 10,
    user_count: int = 25,
    days_ahead: int = 3,
) -> dict[str, int]:
    """Populate the database with synthetic upcoming events and their audiences."""
    if event_count < 0:
        raise ValueError("event_count must be >= 0")
    if user_count < 1:
        raise ValueError("user_count must be >= 1")
    if days_ahead < 1:
        raise ValueError("days_ahead must be >= 1")

    init_db()
    fake = Faker()
    users = [fake.uuid4() for _ in range(user_count)]
    stats = {"events": 0, "favorites": 0, "rsvps": 0, "preferences": 0}

    with get_session() as session:
        for user_id in users:
            if random.random() < 0.2:
                # Users without a preference record never receive reminders.
                continue
            _create_preferences(session, user_id)
            stats["preferences"] += 1

        for _ in range(event_count):
            event = _create_event(session, fake, days_ahead=days_ahead)
            stats["events"] += 1
            favorites, rsvps = _create_audience(session, event, users)
            stats["favorites"] += favorites
            stats["rsvps"] += rsvps

    return stats


def _create_preferences(session: Session, user_id: str) -> None:
    set_preferences(
        session,
        user_id=user_id,
        enabled=random.random() < 0.9,
        event_reminders=random.random() < 0.85,
        reminder_1h_before=random.random() < 0.8,
        reminder_1d_before=random.random() < 0.6,
        reminder_1w_before=random.random() < 0.2,
    )


def _create_event(session: Session, fake: Faker, *, days_ahead: int) -> Event:
    start = utcnow() + timedelta(minutes=random.randint(30, days_ahead * 24 * 60))
    event_time = None
    if random.random() > 0.25:
        event_time = time(start.hour, (start.minute // 15) * 15)
    return create_event(
        session,
        title=f"{fake.city()} {random.choice(_event_types)}",
        date=start.date(),
        time=event_time,
        location_name=fake.street_address(),
        is_cancelled=random.random() < 0.05,
    )


def _create_audience(session: Session, event: Event, users: list[str]) -> tuple[int, int]:
    audience = random.sample(users, k=random.randint(0, min(len(users), 8)))
    favorites = rsvps = 0
    for user_id in audience:
        if random.random() < 0.6:
            add_favorite(session, event=event, user_id=user_id)
            favorites += 1
        if random.random() < 0.5:
            create_rsvp(
                session,
                event=event,
                user_id=user_id,
                status=random.choice(_rsvp_statuses),
            )
            rsvps += 1
    return favorites, rsvps
