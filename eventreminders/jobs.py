"""Reminder job persistence: idempotent enqueue, lifecycle transitions, cleanup."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from hashlib import blake2s
from typing import Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from .errors import ConfigError, InvalidJobTransition, JobNotFound
from .models import (
    JOB_STATUS_CANCELLED,
    JOB_STATUS_PENDING,
    JOB_STATUS_SENT,
    Event,
    ReminderJob,
)
from .tiers import ReminderTier
from .utils import utcnow

NOTIFICATION_TYPE = "event_reminder"
TERMINAL_STATUSES = {JOB_STATUS_SENT, JOB_STATUS_CANCELLED}

_DIALECT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def build_dedup_key(event_id: str, user_id: str, tier_id: str) -> str:
    """Deterministic identifier for one (event, user, tier) reminder."""
    raw = f"{event_id}:{user_id}:{tier_id}".encode("utf-8")
    return blake2s(raw, digest_size=16).hexdigest()


def _dialect_insert(session: Session):
    dialect = session.get_bind().dialect.name
    try:
        return _DIALECT_INSERTS[dialect]
    except KeyError as exc:
        raise ConfigError(
            f"Conditional inserts are not supported for the {dialect!r} dialect"
        ) from exc


def insert_job_if_absent(
    session: Session,
    *,
    event_id: str,
    user_id: str,
    tier: ReminderTier,
    fire_at: datetime,
    title: str,
    body: str,
    now: datetime | None = None,
) -> bool:
    """Atomically insert a pending job unless an active one already exists.

    Returns ``True`` when a row was created and ``False`` when the partial
    unique index on (event_id, user_id, tier_id) already held an active job.
    """
    created_at = now or utcnow()
    insert = _dialect_insert(session)
    stmt = (
        insert(ReminderJob)
        .values(
            id=str(uuid.uuid4()),
            event_id=event_id,
            user_id=user_id,
            tier_id=tier.tier_id,
            fire_at=fire_at,
            dedup_key=build_dedup_key(event_id, user_id, tier.tier_id),
            status=JOB_STATUS_PENDING,
            notification_type=NOTIFICATION_TYPE,
            title=title,
            body=body,
            created_at=created_at,
            status_changed_at=created_at,
        )
        .on_conflict_do_nothing()
    )
    result = session.execute(stmt)
    return result.rowcount == 1


def list_due_jobs(
    session: Session, *, now: datetime | None = None, limit: int = 100
) -> Sequence[ReminderJob]:
    stmt = (
        select(ReminderJob)
        .where(ReminderJob.status == JOB_STATUS_PENDING)
        .where(ReminderJob.fire_at <= (now or utcnow()))
        .order_by(ReminderJob.fire_at, ReminderJob.id)
    )
    if limit and limit > 0:
        stmt = stmt.limit(limit)
    return session.scalars(stmt).all()


def transition_job(
    session: Session,
    job_id: str,
    status: str,
    *,
    reason: str | None = None,
    now: datetime | None = None,
) -> ReminderJob:
    """Move a pending job to ``sent`` or ``cancelled``; terminal states never change."""
    if status not in TERMINAL_STATUSES:
        raise InvalidJobTransition(f"Cannot move a job to {status!r}")
    result = session.execute(
        update(ReminderJob)
        .where(ReminderJob.id == job_id)
        .where(ReminderJob.status == JOB_STATUS_PENDING)
        .values(
            status=status,
            cancel_reason=reason if status == JOB_STATUS_CANCELLED else None,
            status_changed_at=now or utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    job = session.get(ReminderJob, job_id, populate_existing=True)
    if job is None:
        raise JobNotFound(f"Reminder job {job_id} not found")
    if result.rowcount != 1:
        raise InvalidJobTransition(
            f"Reminder job {job_id} is already {job.status}"
        )
    return job


def _cancel_pending(session: Session, condition, *, reason: str, now: datetime) -> int:
    result = session.execute(
        update(ReminderJob)
        .where(ReminderJob.status == JOB_STATUS_PENDING)
        .where(condition)
        .values(
            status=JOB_STATUS_CANCELLED,
            cancel_reason=reason,
            status_changed_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def cancel_stale_jobs(
    session: Session, *, now: datetime, grace: timedelta
) -> dict[str, int]:
    """Cancel pending jobs whose event went away or whose fire time lapsed."""
    withdrawn_events = select(Event.id).where(
        or_(Event.is_cancelled.is_(True), Event.hidden_by_reports.is_(True))
    )
    known_events = select(Event.id)
    return {
        "event_cancelled": _cancel_pending(
            session,
            ReminderJob.event_id.in_(withdrawn_events),
            reason="event_cancelled",
            now=now,
        ),
        "event_deleted": _cancel_pending(
            session,
            ReminderJob.event_id.not_in(known_events),
            reason="event_deleted",
            now=now,
        ),
        "lapsed": _cancel_pending(
            session,
            ReminderJob.fire_at < now - grace,
            reason="lapsed",
            now=now,
        ),
    }
