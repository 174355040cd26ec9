"""Reminder scheduling cycle.

One cycle selects the events starting inside the lookahead window, fans out
per event over a bounded worker pool, and enqueues one pending job per opted-in
(event, user, tier). Re-running a cycle is safe: the job insert is a conditional
insert against the active-job unique index, so repeated observations of the
same candidate are reported as duplicates instead of creating new rows.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from functools import partial
from typing import Callable, Sequence, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .audience import filter_opted_in, load_preferences, resolve_subscribers
from .config import settings
from .database import get_session
from .errors import TransientStoreError
from .jobs import cancel_stale_jobs, insert_job_if_absent
from .tiers import ReminderTier, compute_fire_times, resolve_tiers, unreachable_tiers
from .utils import call_with_retries, to_naive_utc, utcnow
from .window import UpcomingEvent, load_timezone, select_events_in_window

# Use uvicorn's error logger so scheduler messages show up with level prefixes.
logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")

RUN_COUNTERS = (
    "events_processed",
    "reminders_scheduled",
    "reminders_skipped_duplicate",
    "reminders_failed",
    "events_deferred",
)


def _empty_stats() -> dict[str, int]:
    return dict.fromkeys(RUN_COUNTERS, 0)


def _in_session(work: Callable[[Session], T], description: str) -> T:
    """Run ``work`` in its own committed session, retrying transient failures."""

    def operation() -> T:
        with get_session() as session:
            return work(session)

    return call_with_retries(
        operation,
        attempts=settings.retry_attempts,
        backoff_seconds=settings.retry_backoff_seconds,
        description=description,
    )


def _enqueue(
    event: UpcomingEvent,
    tier: ReminderTier,
    fire_at: datetime,
    recipients: Sequence[str],
    *,
    now: datetime,
    stats: dict[str, int],
) -> None:
    title, body = tier.render(title=event.title, location_name=event.location_name)
    for user_id in recipients:
        work = partial(
            insert_job_if_absent,
            event_id=event.id,
            user_id=user_id,
            tier=tier,
            fire_at=fire_at,
            title=title,
            body=body,
            now=now,
        )
        try:
            created = _in_session(
                work, f"enqueue {tier.tier_id} reminder for {user_id} on event {event.id}"
            )
        except (TransientStoreError, SQLAlchemyError) as exc:
            logger.warning(
                "Failed to enqueue %s reminder for user %s on event %s: %s",
                tier.tier_id,
                user_id,
                event.id,
                exc,
            )
            stats["reminders_failed"] += 1
            continue
        if created:
            stats["reminders_scheduled"] += 1
            logger.debug(
                "Scheduled %s reminder for user %s on event %s at %s",
                tier.tier_id,
                user_id,
                event.id,
                fire_at.isoformat(),
            )
        else:
            stats["reminders_skipped_duplicate"] += 1


def process_event(
    event: UpcomingEvent,
    *,
    tiers: Sequence[ReminderTier],
    now: datetime,
    deadline: float | None = None,
) -> dict[str, int]:
    """Resolve, filter, and enqueue reminders for a single event."""
    stats = _empty_stats()
    if deadline is not None and time.monotonic() >= deadline:
        stats["events_deferred"] = 1
        return stats
    stats["events_processed"] = 1

    try:
        subscribers = _in_session(
            partial(resolve_subscribers, event_id=event.id),
            f"subscriber lookup for event {event.id}",
        )
    except (TransientStoreError, SQLAlchemyError) as exc:
        logger.warning("Skipping event %s: %s", event.id, exc)
        stats["reminders_failed"] += 1
        return stats
    if not subscribers:
        return stats

    due = compute_fire_times(event.start, tiers, now=now, horizon=settings.lookahead)
    if not due:
        return stats

    try:
        preferences = _in_session(
            partial(load_preferences, user_ids=subscribers),
            f"preference lookup for event {event.id}",
        )
    except (TransientStoreError, SQLAlchemyError) as exc:
        logger.warning("Skipping event %s: %s", event.id, exc)
        stats["reminders_failed"] += 1
        return stats

    for tier, fire_at in due:
        recipients = filter_opted_in(subscribers, preferences, tier)
        _enqueue(event, tier, fire_at, recipients, now=now, stats=stats)
    return stats


def _merge(results: Sequence[dict[str, int]]) -> dict[str, int]:
    totals = _empty_stats()
    for result in results:
        for key in RUN_COUNTERS:
            totals[key] += result.get(key, 0)
    return totals


def run_reminder_cycle(now: datetime | None = None) -> dict[str, int]:
    """Schedule reminder jobs for every event starting within the lookahead window."""
    now = to_naive_utc(now) or utcnow()
    tiers = resolve_tiers(settings.tier_ids)
    tz = load_timezone(settings.event_timezone)
    lookahead = settings.lookahead
    for tier in unreachable_tiers(tiers, lookahead):
        logger.warning(
            "Reminder tier %s (%s before start) cannot fire within a %dh lookahead",
            tier.tier_id,
            tier.offset,
            settings.lookahead_hours,
        )

    logger.info(
        "Reminder cycle started (now=%s, lookahead_hours=%d, tiers=%s, max_workers=%d)",
        now.isoformat(),
        settings.lookahead_hours,
        ",".join(tier.tier_id for tier in tiers),
        settings.max_workers,
    )
    deadline = (
        time.monotonic() + settings.max_run_seconds
        if settings.max_run_seconds > 0
        else None
    )

    events = _in_session(
        partial(select_events_in_window, now=now, lookahead=lookahead, tz=tz),
        "upcoming event lookup",
    )
    worker = partial(process_event, tiers=tiers, now=now, deadline=deadline)
    if settings.max_workers <= 1 or len(events) <= 1:
        results = [worker(event) for event in events]
    else:
        with ThreadPoolExecutor(
            max_workers=settings.max_workers, thread_name_prefix="reminders"
        ) as pool:
            results = list(pool.map(worker, events))

    stats = _merge(results)
    if stats["events_deferred"]:
        logger.warning(
            "Reminder cycle hit the %ds budget; %d events deferred to the next run",
            settings.max_run_seconds,
            stats["events_deferred"],
        )
    logger.info(
        (
            "Reminder cycle finished: events processed=%d of %d, scheduled=%d, "
            "duplicates=%d, failed=%d"
        ),
        stats["events_processed"],
        len(events),
        stats["reminders_scheduled"],
        stats["reminders_skipped_duplicate"],
        stats["reminders_failed"],
    )
    return stats


def cleanup_stale_jobs(now: datetime | None = None) -> dict[str, int]:
    """Cancel pending jobs for withdrawn events or with lapsed fire times."""
    now = to_naive_utc(now) or utcnow()
    stats = _in_session(
        partial(cancel_stale_jobs, now=now, grace=settings.stale_job_grace),
        "stale job cleanup",
    )
    logger.info(
        "Stale job cleanup finished: event_cancelled=%d, event_deleted=%d, lapsed=%d",
        stats["event_cancelled"],
        stats["event_deleted"],
        stats["lapsed"],
    )
    return stats
