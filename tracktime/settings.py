"""Application settings with JSON persistence.

Settings are stored at:
    ~/Library/Application Support/TrackTime/settings.json

Usage::

    settings = load_settings()
    settings.sync_interval_ms = 60_000
    save_settings(settings)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, asdict, fields
from pathlib import Path

log = logging.getLogger(__name__)

APP_SUPPORT_DIR = Path.home() / "Library" / "Application Support" / "TrackTime"
SETTINGS_PATH = APP_SUPPORT_DIR / "settings.json"

CONFLICT_STRATEGIES = ("server-wins", "local-wins", "merge")


@dataclass
class Settings:
    """All user-configurable preferences."""

    # ── storage ───────────────────────────────────────────────────────
    database_url: str = f"sqlite:///{APP_SUPPORT_DIR / 'tracktime.db'}"
    local_state_path: str = str(APP_SUPPORT_DIR / "timer_state.json")

    # ── client mirror ─────────────────────────────────────────────────
    tick_interval_ms: int = 1000
    sync_interval_ms: int = 30_000
    health_check_interval_ms: int = 30_000
    validation_interval_ms: int = 5 * 60 * 1000
    drift_threshold_seconds: int = 10
    drift_check_every_ticks: int = 30
    request_timeout: float = 10.0          # seconds
    max_action_attempts: int = 3
    max_queued_actions: int = 10
    stale_after_seconds: int = 24 * 60 * 60
    conflict_resolution: str = "server-wins"

    # ── server core ───────────────────────────────────────────────────
    lock_retries: int = 3
    lock_retry_delay: float = 0.05         # seconds, grows linearly
    recent_entries_limit: int = 10

    # ── logging ───────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_console: bool = False


def load_settings() -> Settings:
    """Load settings from disk, falling back to defaults."""
    try:
        if SETTINGS_PATH.exists():
            data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise TypeError("settings must be a JSON object")
            # Only use keys that exist in the dataclass
            valid_keys = {f.name for f in fields(Settings)}
            filtered = {k: v for k, v in data.items() if k in valid_keys}
            settings = Settings(**filtered)
            if settings.conflict_resolution not in CONFLICT_STRATEGIES:
                settings.conflict_resolution = "server-wins"
            return settings
    except (OSError, ValueError, TypeError):
        log.warning("Unreadable settings at %s, using defaults", SETTINGS_PATH)
    return Settings()


def save_settings(settings: Settings) -> None:
    """Write settings to disk as JSON."""
    APP_SUPPORT_DIR.mkdir(parents=True, exist_ok=True)
    SETTINGS_PATH.write_text(
        json.dumps(asdict(settings), indent=2) + "\n",
        encoding="utf-8",
    )
