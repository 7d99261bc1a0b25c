"""
benchline.config — YAML Configuration Loader
=============================================

Reads ``config.yaml`` for league-level tuning (payment window, sweep
interval, push delivery).  Secrets such as ``DATABASE_URL`` and
``JWT_SECRET`` come from the environment (``.env``), never from YAML.

Usage::

    from benchline.config import load_config

    cfg = load_config()                 # reads ./config.yaml by default
    print(cfg.league_name)              # "Tuesday Night Hockey"
    print(cfg.payment_deadline_hours)   # 2
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

DEFAULT_EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class BenchlineConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    league_name: str

    # API
    api_port: int

    # Waitlist / payments
    payment_deadline_hours: int = 2
    sweep_interval_minutes: int = 15

    # Push delivery
    push_enabled: bool = True
    expo_push_url: str = DEFAULT_EXPO_PUSH_URL


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> BenchlineConfig:
    """Read *path* and return a :class:`BenchlineConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return BenchlineConfig(
        league_name=raw["league_name"],
        api_port=int(raw["api_port"]),
        payment_deadline_hours=int(raw.get("payment_deadline_hours", 2)),
        sweep_interval_minutes=int(raw.get("sweep_interval_minutes", 15)),
        push_enabled=bool(raw.get("push_enabled", True)),
        expo_push_url=raw.get("expo_push_url") or DEFAULT_EXPO_PUSH_URL,
    )
