from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from .errors import ConfigError

DEFAULT_CONFIG_PATH = Path("configs/config.json")


class Config:
    def __init__(self, d: dict[str, Any]):
        self.raw = d

        s = d.get("storage", {})
        self.storage_path = Path(
            os.getenv("DISTANCE_ALARM_STORAGE", s.get("path", "data/alarm.json"))
        )

        n = d.get("notifications", {})
        self.outbox_dir = Path(
            os.getenv("DISTANCE_ALARM_OUTBOX", n.get("outbox_dir", "data/outbox"))
        )
        self.outbox_max_files = int(n.get("max_files", 100))
        self.alert_title = str(n.get("title", "Arrived!"))
        self.alert_body_template = str(
            n.get("body_template", "You are within {distance}m of your destination!")
        )

        t = d.get("tracking", {})
        self.foreground_interval_ms = int(t.get("foreground_interval_ms", 2000))
        self.foreground_distance_m = float(t.get("foreground_distance_m", 5.0))
        self.background_interval_ms = int(t.get("background_interval_ms", 5000))
        self.background_distance_m = float(t.get("background_distance_m", 10.0))
        self.default_radius_m = float(t.get("default_radius_m", 500.0))

        lg = d.get("logging", {})
        self.log_level = os.getenv("LOG_LEVEL", lg.get("level", "INFO")).upper()
        # "console" | "json"
        self.log_format = os.getenv("LOG_FORMAT", lg.get("format", "console")).lower()


def load_config(path: str | Path | None = None) -> Config:
    """Reads the JSON config; a missing file gives all defaults.

    The path falls back to $DISTANCE_ALARM_CONFIG, then configs/config.json.
    """
    p = Path(path or os.getenv("DISTANCE_ALARM_CONFIG") or DEFAULT_CONFIG_PATH)
    if not p.exists():
        return Config({})
    try:
        with p.open("r", encoding="utf-8") as f:
            d = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"cannot read config {p}: {e}") from e
    if not isinstance(d, dict):
        raise ConfigError(f"config {p} must hold a JSON object")
    return Config(d)
