"""Subscriber resolution and opt-in preference filtering."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping

from sqlalchemy.orm import Session

from .crud import get_event_subscriber_ids, get_preferences_for_users
from .models import NotificationPreference
from .tiers import TIER_CATALOG, ReminderTier


@dataclass(frozen=True)
class ReminderPreference:
    """Explicit preference snapshot; NULL columns read as ``False``."""

    user_id: str
    enabled: bool = False
    event_reminders: bool = False
    tier_flags: Mapping[str, bool] = field(default_factory=dict)

    def allows(self, tier: ReminderTier) -> bool:
        return (
            self.enabled
            and self.event_reminders
            and self.tier_flags.get(tier.tier_id, False)
        )

    @classmethod
    def from_row(cls, row: NotificationPreference) -> "ReminderPreference":
        return cls(
            user_id=row.user_id,
            enabled=bool(row.enabled),
            event_reminders=bool(row.event_reminders),
            tier_flags={
                tier_id: bool(getattr(row, tier.preference_flag, False))
                for tier_id, tier in TIER_CATALOG.items()
            },
        )


def resolve_subscribers(session: Session, event_id: str) -> set[str]:
    return get_event_subscriber_ids(session, event_id)


def load_preferences(
    session: Session, user_ids: Iterable[str]
) -> dict[str, ReminderPreference]:
    return {
        row.user_id: ReminderPreference.from_row(row)
        for row in get_preferences_for_users(session, user_ids)
    }


def filter_opted_in(
    candidates: Iterable[str],
    preferences: Mapping[str, ReminderPreference],
    tier: ReminderTier,
) -> list[str]:
    """Return candidates opted in to ``tier``; users without a record are excluded."""
    allowed: list[str] = []
    for user_id in sorted(set(candidates)):
        preference = preferences.get(user_id)
        if preference is None:
            continue
        if preference.allows(tier):
            allowed.append(user_id)
    return allowed
