from __future__ import annotations

import json
import math
from enum import Enum
from typing import TypeVar

import structlog

from .errors import ConfigError, StoreError
from .models import AlarmConfig, AlertPreferences, Coordinate, SoundId, VibrationPattern
from .storage import KeyValueStorage

logger = structlog.get_logger(__name__)

KEY_TARGET = "targetLocation"
KEY_RADIUS = "alarmRadius"
KEY_TRACKING = "isTracking"
KEY_SOUND = "alarmSound"
KEY_VIBRATION = "vibrationPattern"
KEY_CUSTOM_VIBRATION = "customVibrationDuration"

DEFAULT_PREFERENCES = AlertPreferences()

E = TypeVar("E", bound=Enum)


def _parse_enum(cls: type[E], raw: str | None, default: E) -> E:
    if raw is None:
        return default
    try:
        return cls(raw)
    except ValueError:
        logger.warning("unknown stored preference, using default", kind=cls.__name__, value=raw)
        return default


def _parse_duration(raw: str | None, default: int) -> int:
    if raw is None:
        return default
    try:
        ms = int(raw)
    except ValueError:
        logger.warning("bad stored vibration duration, using default", value=raw)
        return default
    return ms if ms >= 0 else default


class AlarmStore:
    """
    Owns the durable alarm state on top of a string key/value storage.

    Every storage failure comes out as StoreError. load_arming leaves the fail-safe
    decision to the caller; load_preferences falls back to defaults itself.
    """

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    def _get(self, key: str) -> str | None:
        try:
            return self.storage.get(key)
        except StoreError:
            # JsonFileStorage already reports the file and cause
            raise
        except Exception as e:
            raise StoreError(f"read of {key!r} failed: {e}") from e

    def _set_all(self, items: dict[str, str]) -> None:
        """Writes items in insertion order, in one call when the storage supports it."""
        try:
            set_many = getattr(self.storage, "set_many", None)
            if set_many is not None:
                set_many(items)
            else:
                for k, v in items.items():
                    self.storage.set(k, v)
        except StoreError:
            # JsonFileStorage already reports the file and cause
            raise
        except Exception as e:
            raise StoreError(f"write of {list(items)} failed: {e}") from e

    # -------------------- arming --------------------

    def save_arming(self, config: AlarmConfig) -> None:
        config.validate()
        prefs = config.preferences
        # the flag goes last so no reader sees armed=true without a target
        self._set_all(
            {
                KEY_TARGET: json.dumps(config.target.to_dict()),
                KEY_RADIUS: repr(float(config.radius_m)),
                KEY_SOUND: prefs.sound.value,
                KEY_VIBRATION: prefs.vibration.value,
                KEY_CUSTOM_VIBRATION: str(int(prefs.custom_vibration_ms)),
                KEY_TRACKING: "true",
            }
        )

    def load_arming(self) -> AlarmConfig | None:
        if self._get(KEY_TRACKING) != "true":
            return None
        raw_target = self._get(KEY_TARGET)
        raw_radius = self._get(KEY_RADIUS)
        try:
            target = Coordinate.from_dict(json.loads(raw_target or ""))
            radius = float(raw_radius or "")
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(
                "armed flag set but stored target/radius unusable; treating as not armed",
                target=raw_target,
                radius=raw_radius,
                error=str(e),
            )
            return None
        if not math.isfinite(radius) or radius <= 0 or not target.is_valid():
            logger.warning("stored alarm config invalid; treating as not armed", radius=radius)
            return None
        return AlarmConfig(target=target, radius_m=radius, preferences=self.load_preferences())

    def clear_arming(self) -> None:
        self._set_all({KEY_TRACKING: "false"})

    # -------------------- preferences --------------------

    def save_preferences(self, prefs: AlertPreferences) -> None:
        if prefs.custom_vibration_ms < 0:
            raise ConfigError("custom vibration duration must be >= 0 ms")
        self._set_all(
            {
                KEY_SOUND: prefs.sound.value,
                KEY_VIBRATION: prefs.vibration.value,
                KEY_CUSTOM_VIBRATION: str(int(prefs.custom_vibration_ms)),
            }
        )

    def load_preferences(self) -> AlertPreferences:
        d = DEFAULT_PREFERENCES
        try:
            sound = self._get(KEY_SOUND)
            vibration = self._get(KEY_VIBRATION)
            duration = self._get(KEY_CUSTOM_VIBRATION)
        except StoreError as e:
            logger.warning("preferences unreadable, using defaults", error=str(e))
            return d
        return AlertPreferences(
            sound=_parse_enum(SoundId, sound, d.sound),
            vibration=_parse_enum(VibrationPattern, vibration, d.vibration),
            custom_vibration_ms=_parse_duration(duration, d.custom_vibration_ms),
        )
