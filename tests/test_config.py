from __future__ import annotations

from datetime import timedelta

import pytest

from eventreminders import config


@pytest.fixture()
def isolated_env(monkeypatch, tmp_path):
    for key in list(config.os.environ):
        if key.startswith("EVENTREMINDERS_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("EVENTREMINDERS_BASE_DIR", str(tmp_path))
    return tmp_path


def test_defaults_apply_without_config_file(isolated_env):
    loaded = config.load_settings()

    assert loaded.lookahead == timedelta(hours=24)
    assert loaded.tier_ids == ["1h", "1d"]
    assert loaded.event_timezone == "UTC"
    assert loaded.database_path == isolated_env / "data" / "eventreminders.db"
    assert loaded.database_url == f"sqlite:///{loaded.database_path}"
    assert loaded.data_dir.is_dir()


def test_environment_overrides_toml(isolated_env, monkeypatch):
    path = isolated_env / "eventreminders.toml"
    config.write_config_file(
        {"lookahead_hours": 48, "reminder_tiers": "1h,1d,1w", "enable_scheduler": False},
        path=path,
    )
    monkeypatch.setenv("EVENTREMINDERS_LOOKAHEAD_HOURS", "72")

    loaded = config.load_settings()

    assert loaded.lookahead_hours == 72
    assert loaded.tier_ids == ["1h", "1d", "1w"]
    assert loaded.enable_scheduler is False


def test_toml_list_of_tiers_is_accepted(isolated_env):
    path = isolated_env / "custom.toml"
    path.write_text('reminder_tiers = ["1d", "1w"]\nstale_job_grace_minutes = 15\n')

    loaded = config.load_settings(path)

    assert loaded.tier_ids == ["1d", "1w"]
    assert loaded.stale_job_grace == timedelta(minutes=15)


def test_invalid_values_are_rejected(isolated_env, monkeypatch):
    monkeypatch.setenv("EVENTREMINDERS_LOOKAHEAD_HOURS", "0")
    with pytest.raises(ValueError):
        config.load_settings()

    monkeypatch.setenv("EVENTREMINDERS_LOOKAHEAD_HOURS", "24")
    monkeypatch.setenv("EVENTREMINDERS_ENABLE_SCHEDULER", "maybe")
    with pytest.raises(ValueError):
        config.load_settings()


def test_update_config_file_merges_and_reloads(isolated_env, monkeypatch):
    monkeypatch.setattr(config, "settings", config.load_settings())
    path = isolated_env / "eventreminders.toml"

    updated = config.update_config_file({"max_workers": 8, "bogus": 1}, path=path)
    updated = config.update_config_file({"event_timezone": "Europe/Berlin"}, path=path)

    assert updated.max_workers == 8
    assert updated.event_timezone == "Europe/Berlin"
    assert "bogus" not in path.read_text()
    assert config.settings_as_dict(updated)["max_workers"] == 8
