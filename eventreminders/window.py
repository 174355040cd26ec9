"""Lookahead window selection for upcoming events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from .crud import get_events_between_dates
from .errors import ConfigError
from .models import Event
from .utils import to_naive_utc

DEFAULT_EVENT_TIME = time(12, 0)


@dataclass(frozen=True)
class UpcomingEvent:
    """Detached snapshot of an event inside the lookahead window."""

    id: str
    title: str
    location_name: str
    start: datetime


def load_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Unknown event timezone {name!r}") from exc


def event_start_datetime(
    event_date: date, event_time: time | None, *, tz: ZoneInfo
) -> datetime:
    """Combine date and time in ``tz`` as naive UTC; a missing time means local noon."""
    local = datetime.combine(event_date, event_time or DEFAULT_EVENT_TIME, tzinfo=tz)
    return to_naive_utc(local)


def select_events_in_window(
    session: Session,
    *,
    now: datetime,
    lookahead: timedelta,
    tz: ZoneInfo,
) -> list[UpcomingEvent]:
    """Return visible events with ``now <= start <= now + lookahead``, soonest first."""
    window_start = to_naive_utc(now)
    window_end = window_start + lookahead
    first_day = _local_date(window_start, tz)
    last_day = _local_date(window_end, tz)

    upcoming: list[UpcomingEvent] = []
    for event in get_events_between_dates(session, first_day, last_day):
        start = event_start_datetime(event.date, event.time, tz=tz)
        if window_start <= start <= window_end:
            upcoming.append(_snapshot(event, start))
    upcoming.sort(key=lambda item: (item.start, item.id))
    return upcoming


def _local_date(moment: datetime, tz: ZoneInfo) -> date:
    return moment.replace(tzinfo=ZoneInfo("UTC")).astimezone(tz).date()


def _snapshot(event: Event, start: datetime) -> UpcomingEvent:
    return UpcomingEvent(
        id=event.id,
        title=event.title,
        location_name=event.location_name or "",
        start=start,
    )
