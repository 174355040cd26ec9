from __future__ import annotations

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from eventreminders.errors import ConfigError
from eventreminders.tiers import (
    TIER_CATALOG,
    compute_fire_times,
    resolve_tiers,
    unreachable_tiers,
)
from eventreminders.window import event_start_datetime


def test_resolve_tiers_keeps_order_and_drops_repeats():
    tiers = resolve_tiers(["1d", " 1h", "1d", ""])
    assert [tier.tier_id for tier in tiers] == ["1d", "1h"]


def test_resolve_tiers_rejects_unknown_and_empty():
    with pytest.raises(ConfigError):
        resolve_tiers(["1h", "2h"])
    with pytest.raises(ConfigError):
        resolve_tiers([])


def test_date_only_event_fires_day_before_at_noon():
    start = event_start_datetime(
        datetime(2025, 6, 10).date(), None, tz=ZoneInfo("UTC")
    )
    now = datetime(2025, 6, 9, 8, 0)

    due = compute_fire_times(
        start, [TIER_CATALOG["1d"]], now=now, horizon=timedelta(hours=48)
    )

    assert due == [(TIER_CATALOG["1d"], datetime(2025, 6, 9, 12, 0))]


def test_fire_time_must_be_strictly_after_now():
    now = datetime(2025, 6, 9, 10, 0)
    start = now + timedelta(hours=1)

    assert compute_fire_times(
        start, [TIER_CATALOG["1h"]], now=now, horizon=timedelta(hours=24)
    ) == []
    assert compute_fire_times(
        start + timedelta(seconds=1),
        [TIER_CATALOG["1h"]],
        now=now,
        horizon=timedelta(hours=24),
    ) == [(TIER_CATALOG["1h"], now + timedelta(seconds=1))]


def test_fire_time_beyond_horizon_is_skipped():
    now = datetime(2025, 6, 9, 10, 0)
    start = now + timedelta(days=9)

    due = compute_fire_times(
        start, resolve_tiers(["1h", "1d", "1w"]), now=now, horizon=timedelta(days=3)
    )

    assert [(tier.tier_id, fire_at) for tier, fire_at in due] == [
        ("1w", now + timedelta(days=2))
    ]


def test_unreachable_tiers_flags_offsets_at_or_past_lookahead():
    tiers = resolve_tiers(["1h", "1d", "1w"])
    assert [t.tier_id for t in unreachable_tiers(tiers, timedelta(hours=24))] == [
        "1d",
        "1w",
    ]
    assert [t.tier_id for t in unreachable_tiers(tiers, timedelta(days=8))] == []


def test_render_fills_title_and_location():
    title, body = TIER_CATALOG["1d"].render(title="Yoga Flow", location_name="Park")
    assert title == "Tomorrow: Yoga Flow"
    assert body == "Don't forget your event tomorrow at Park"

    _, fallback = TIER_CATALOG["1h"].render(title="Yoga Flow", location_name=None)
    assert fallback == "Your event starts in 1 hour at the event location"
