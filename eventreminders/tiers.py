"""Reminder tier policy table and fire time calculation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from .errors import ConfigError


@dataclass(frozen=True)
class ReminderTier:
    tier_id: str
    offset: timedelta
    preference_flag: str
    title_template: str
    body_template: str

    def render(self, *, title: str, location_name: str | None) -> tuple[str, str]:
        location = location_name or "the event location"
        return (
            self.title_template.format(title=title, location=location),
            self.body_template.format(title=title, location=location),
        )


TIER_CATALOG: dict[str, ReminderTier] = {
    "1h": ReminderTier(
        tier_id="1h",
        offset=timedelta(hours=1),
        preference_flag="reminder_1h_before",
        title_template="Starting Soon: {title}",
        body_template="Your event starts in 1 hour at {location}",
    ),
    "1d": ReminderTier(
        tier_id="1d",
        offset=timedelta(days=1),
        preference_flag="reminder_1d_before",
        title_template="Tomorrow: {title}",
        body_template="Don't forget your event tomorrow at {location}",
    ),
    "1w": ReminderTier(
        tier_id="1w",
        offset=timedelta(days=7),
        preference_flag="reminder_1w_before",
        title_template="Next Week: {title}",
        body_template="Your event is one week away at {location}",
    ),
}

DEFAULT_TIER_IDS = ("1h", "1d")


def resolve_tiers(tier_ids: Iterable[str]) -> list[ReminderTier]:
    """Return catalog tiers for ``tier_ids`` in order, dropping repeats."""
    tiers: list[ReminderTier] = []
    seen: set[str] = set()
    for raw in tier_ids:
        tier_id = raw.strip()
        if not tier_id or tier_id in seen:
            continue
        tier = TIER_CATALOG.get(tier_id)
        if tier is None:
            known = ", ".join(sorted(TIER_CATALOG))
            raise ConfigError(f"Unknown reminder tier {tier_id!r} (known: {known})")
        tiers.append(tier)
        seen.add(tier_id)
    if not tiers:
        raise ConfigError("At least one reminder tier must be enabled")
    return tiers


def unreachable_tiers(
    tiers: Sequence[ReminderTier], lookahead: timedelta
) -> list[ReminderTier]:
    """Tiers whose offset is at least the lookahead can never fire in-window."""
    return [tier for tier in tiers if tier.offset >= lookahead]


def compute_fire_times(
    start: datetime,
    tiers: Sequence[ReminderTier],
    *,
    now: datetime,
    horizon: timedelta,
) -> list[tuple[ReminderTier, datetime]]:
    """Return ``(tier, fire_at)`` pairs with ``now < fire_at <= now + horizon``."""
    window_end = now + horizon
    due: list[tuple[ReminderTier, datetime]] = []
    for tier in tiers:
        fire_at = start - tier.offset
        if fire_at <= now:
            continue
        if fire_at > window_end:
            continue
        due.append((tier, fire_at))
    return due
