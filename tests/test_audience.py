from __future__ import annotations

from datetime import date

import pytest

from eventreminders.audience import (
    ReminderPreference,
    filter_opted_in,
    load_preferences,
    resolve_subscribers,
)
from eventreminders.crud import add_favorite, create_event, create_rsvp, set_preferences
from eventreminders.models import NotificationPreference
from eventreminders.tiers import TIER_CATALOG


@pytest.fixture()
def event(session):
    event = create_event(session, title="Cacao Ceremony", date=date(2025, 6, 10))
    session.commit()
    return event


def test_subscribers_union_favorites_and_going_rsvps(session, event):
    other = create_event(session, title="Elsewhere", date=date(2025, 6, 10))
    add_favorite(session, event=event, user_id="fav")
    add_favorite(session, event=event, user_id="both")
    create_rsvp(session, event=event, user_id="both", status="going")
    create_rsvp(session, event=event, user_id="going", status="going")
    create_rsvp(session, event=event, user_id="maybe", status="interested")
    create_rsvp(session, event=event, user_id="nope", status="not_going")
    add_favorite(session, event=other, user_id="other-fav")
    session.commit()

    assert resolve_subscribers(session, event.id) == {"fav", "both", "going"}


def test_invalid_rsvp_status_is_rejected(session, event):
    with pytest.raises(ValueError):
        create_rsvp(session, event=event, user_id="x", status="perhaps")


def test_null_preference_columns_read_as_false(session):
    set_preferences(
        session,
        user_id="nulls",
        enabled=None,
        event_reminders=None,
        reminder_1h_before=None,
    )
    session.commit()
    session.expire_all()

    stored = session.get(NotificationPreference, "nulls")
    assert stored.enabled is None
    assert stored.event_reminders is None
    assert stored.reminder_1h_before is None

    preferences = load_preferences(session, ["nulls", "missing"])

    assert set(preferences) == {"nulls"}
    assert preferences["nulls"].allows(TIER_CATALOG["1h"]) is False


def test_filter_requires_master_category_and_tier_flags():
    tier = TIER_CATALOG["1h"]
    everything = {"1h": True, "1d": True}
    preferences = {
        "ok": ReminderPreference("ok", True, True, everything),
        "master-off": ReminderPreference("master-off", False, True, everything),
        "category-off": ReminderPreference("category-off", True, False, everything),
        "tier-off": ReminderPreference("tier-off", True, True, {"1h": False}),
        "other-ok": ReminderPreference("other-ok", True, True, everything),
    }
    candidates = ["other-ok", "ok", "master-off", "category-off", "tier-off", "no-record", "ok"]

    assert filter_opted_in(candidates, preferences, tier) == ["ok", "other-ok"]


def test_filter_with_no_candidates_is_empty():
    assert filter_opted_in([], {}, TIER_CATALOG["1d"]) == []


def test_set_preferences_updates_existing_record(session):
    set_preferences(session, user_id="u1", enabled=True, event_reminders=True)
    set_preferences(session, user_id="u1", reminder_1d_before=False)
    session.commit()

    [preference] = load_preferences(session, ["u1"]).values()

    assert preference.enabled is True
    assert preference.tier_flags["1d"] is False
    with pytest.raises(ValueError):
        set_preferences(session, user_id="u1", push_enabled=True)
