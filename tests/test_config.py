"""
tests/test_config.py — YAML Configuration Loader Tests
=======================================================
"""

from __future__ import annotations

import pytest

from benchline.config import DEFAULT_EXPO_PUSH_URL, load_config


def test_defaults_applied(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text('league_name: "Tuesday Night Hockey"\napi_port: 8080\n', encoding="utf-8")

    cfg = load_config(path)

    assert cfg.league_name == "Tuesday Night Hockey"
    assert cfg.api_port == 8080
    assert cfg.payment_deadline_hours == 2
    assert cfg.sweep_interval_minutes == 15
    assert cfg.push_enabled is True
    assert cfg.expo_push_url == DEFAULT_EXPO_PUSH_URL


def test_overrides(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "league_name: Beer League\n"
        "api_port: 9000\n"
        "payment_deadline_hours: 6\n"
        "sweep_interval_minutes: 5\n"
        "push_enabled: false\n"
        "expo_push_url: https://push.test/send\n",
        encoding="utf-8",
    )

    cfg = load_config(path)

    assert cfg.payment_deadline_hours == 6
    assert cfg.sweep_interval_minutes == 5
    assert cfg.push_enabled is False
    assert cfg.expo_push_url == "https://push.test/send"


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError, match="config.yaml.example"):
        load_config(tmp_path / "nope.yaml")


def test_missing_required_key(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("league_name: Beer League\n", encoding="utf-8")
    with pytest.raises(KeyError):
        load_config(path)


def test_config_is_frozen(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("league_name: X\napi_port: 1\n", encoding="utf-8")
    cfg = load_config(path)
    with pytest.raises(AttributeError):
        cfg.api_port = 2
