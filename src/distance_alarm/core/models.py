from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import ConfigError


class ArmingState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    # momentary: folded back into IDLE once the disarm write returns
    TRIGGERED = "triggered"


class SoundId(str, Enum):
    BELL = "bell"
    ALARM = "alarm"
    CHIME = "chime"
    BEEP = "beep"
    SIREN = "siren"


class VibrationPattern(str, Enum):
    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"
    INTENSE = "intense"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    def is_valid(self) -> bool:
        return (
            math.isfinite(self.latitude)
            and math.isfinite(self.longitude)
            and -90.0 <= self.latitude <= 90.0
            and -180.0 <= self.longitude <= 180.0
        )

    def to_dict(self) -> dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Coordinate:
        return cls(latitude=float(d["latitude"]), longitude=float(d["longitude"]))


@dataclass(frozen=True)
class PositionSample:
    coord: Coordinate
    timestamp_ms: int
    # None when the platform did not report an accuracy
    accuracy_m: float | None = None


@dataclass(frozen=True)
class AlertPreferences:
    sound: SoundId = SoundId.ALARM
    vibration: VibrationPattern = VibrationPattern.MEDIUM
    # only used when vibration is CUSTOM
    custom_vibration_ms: int = 500


@dataclass(frozen=True)
class AlarmConfig:
    target: Coordinate
    radius_m: float
    preferences: AlertPreferences = field(default_factory=AlertPreferences)

    def validate(self) -> None:
        """Raises ConfigError if this config must not be armed."""
        if self.target is None:
            raise ConfigError("no destination selected")
        if not self.target.is_valid():
            raise ConfigError(f"destination out of range: {self.target}")
        if not isinstance(self.radius_m, (int, float)) or not math.isfinite(self.radius_m):
            raise ConfigError(f"alarm radius must be a finite number, got {self.radius_m!r}")
        if self.radius_m <= 0:
            raise ConfigError(f"alarm radius must be positive, got {self.radius_m}")
        if self.preferences.custom_vibration_ms < 0:
            raise ConfigError("custom vibration duration must be >= 0 ms")
