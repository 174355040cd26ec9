"""Store queries and helpers for events, subscriptions, and preferences."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Iterable, Sequence

from sqlalchemy import null, select, union
from sqlalchemy.orm import Session

from .models import RSVP, Event, Favorite, NotificationPreference
from .utils import utcnow

VALID_RSVP_STATUSES = {"going", "interested", "not_going"}
PREFERENCE_FIELDS = {
    "enabled",
    "event_reminders",
    "reminder_1h_before",
    "reminder_1d_before",
    "reminder_1w_before",
}
FAVORITE_ITEM_TYPE = "event"
RSVP_GOING = "going"


def _now() -> datetime:
    return utcnow()


def _normalize_rsvp_status(status: str | None) -> str:
    normalized = (status or "").strip().lower() or RSVP_GOING
    if normalized not in VALID_RSVP_STATUSES:
        raise ValueError(f"Invalid RSVP status {status!r}")
    return normalized


def get_events_between_dates(
    session: Session, start_date: date, end_date: date
) -> Sequence[Event]:
    """Return visible events whose calendar date lies in the inclusive range."""
    stmt = (
        select(Event)
        .where(Event.date >= start_date)
        .where(Event.date <= end_date)
        .where(Event.is_cancelled.is_(False))
        .where(Event.hidden_by_reports.is_(False))
        .order_by(Event.date, Event.id)
    )
    return session.scalars(stmt).all()


def get_event_subscriber_ids(session: Session, event_id: str) -> set[str]:
    """Return users who favorited the event or RSVP'd "going"."""
    favorites = select(Favorite.user_id).where(
        Favorite.item_id == event_id, Favorite.item_type == FAVORITE_ITEM_TYPE
    )
    going = select(RSVP.user_id).where(
        RSVP.event_id == event_id, RSVP.status == RSVP_GOING
    )
    return set(session.scalars(union(favorites, going)).all())


def get_preferences_for_users(
    session: Session, user_ids: Iterable[str]
) -> Sequence[NotificationPreference]:
    ids = sorted(set(user_ids))
    if not ids:
        return []
    stmt = select(NotificationPreference).where(NotificationPreference.user_id.in_(ids))
    return session.scalars(stmt).all()


def create_event(
    session: Session,
    *,
    title: str,
    date: date,
    time: time | None = None,
    location_name: str = "",
    is_cancelled: bool = False,
    hidden_by_reports: bool = False,
) -> Event:
    """Create and persist a new event."""
    event = Event(
        title=title,
        date=date,
        time=time,
        location_name=location_name,
        is_cancelled=is_cancelled,
        hidden_by_reports=hidden_by_reports,
        created_at=_now(),
        updated_at=_now(),
    )
    session.add(event)
    session.flush()
    return event


def cancel_event(session: Session, event: Event) -> Event:
    event.is_cancelled = True
    event.updated_at = _now()
    session.add(event)
    session.flush()
    return event


def add_favorite(session: Session, *, event: Event, user_id: str) -> Favorite:
    favorite = Favorite(
        user_id=user_id,
        item_id=event.id,
        item_type=FAVORITE_ITEM_TYPE,
        created_at=_now(),
    )
    session.add(favorite)
    session.flush()
    return favorite


def create_rsvp(
    session: Session,
    *,
    event: Event,
    user_id: str,
    status: str = RSVP_GOING,
) -> RSVP:
    rsvp = RSVP(
        event=event,
        user_id=user_id,
        status=_normalize_rsvp_status(status),
    )
    session.add(rsvp)
    session.flush()
    return rsvp


def set_preferences(
    session: Session, *, user_id: str, **flags: bool | None
) -> NotificationPreference:
    """Create or update a user's notification preferences."""
    unknown = set(flags) - PREFERENCE_FIELDS
    if unknown:
        raise ValueError(f"Unknown preference fields: {', '.join(sorted(unknown))}")
    preference = session.get(NotificationPreference, user_id)
    if preference is None:
        preference = NotificationPreference(user_id=user_id, created_at=_now())
    for field, value in flags.items():
        # None must persist as NULL rather than fall back to the column default.
        setattr(preference, field, null() if value is None else value)
    preference.updated_at = _now()
    session.add(preference)
    session.flush()
    return preference
