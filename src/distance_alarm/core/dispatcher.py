"""
Alert dispatcher.

Turns a trigger decision into one notification request for the platform's
notification service. Whether an alert should be sent at all is decided by the
engine; the dispatcher sends exactly what it is asked to send.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol
from uuid import uuid4

import structlog

from .errors import DispatchError
from .models import SoundId, VibrationPattern

logger = structlog.get_logger(__name__)

ALARM_CHANNEL_ID = "alarm_channel"
DEFAULT_CHANNEL_ID = "default"


@dataclass(frozen=True)
class SoundSpec:
    name: str
    ios_sound: str
    android_id: str


SOUNDS: dict[SoundId, SoundSpec] = {
    SoundId.BELL: SoundSpec("Bell Ring", "notification_bell.wav", "bell"),
    SoundId.ALARM: SoundSpec("Alarm Clock", "notification_alarm.wav", "alarm"),
    SoundId.CHIME: SoundSpec("Chime", "notification_chime.wav", "chime"),
    SoundId.BEEP: SoundSpec("Beep", "notification_beep.wav", "beep"),
    SoundId.SIREN: SoundSpec("Siren", "notification_siren.wav", "siren"),
}

# wait/vibrate alternation in ms, starting with the initial delay
VIBRATION_TIMINGS: dict[VibrationPattern, list[int]] = {
    VibrationPattern.LIGHT: [0, 200],
    VibrationPattern.MEDIUM: [0, 500, 250, 500],
    VibrationPattern.HEAVY: [0, 800, 200, 800, 200, 800],
    VibrationPattern.INTENSE: [0, 1000, 100, 1000, 100, 1000, 100, 1000],
}


def vibration_timings(pattern: VibrationPattern, custom_ms: int = 0) -> list[int]:
    if pattern is VibrationPattern.CUSTOM:
        return [0, max(0, int(custom_ms))]
    return list(VIBRATION_TIMINGS[pattern])


def available_sounds() -> list[tuple[SoundId, str]]:
    return [(sid, spec.name) for sid, spec in SOUNDS.items()]


@dataclass(frozen=True)
class NotificationContent:
    title: str
    body: str
    sound: str
    ios_sound: str
    vibrate: list[int]
    channel_id: str = ALARM_CHANNEL_ID
    priority: str = "max"
    badge: int = 1


@dataclass(frozen=True)
class NotificationChannel:
    channel_id: str
    name: str
    importance: str
    vibration: list[int] = field(default_factory=list)
    sound: str | None = None
    bypass_dnd: bool = False


ALARM_CHANNEL = NotificationChannel(
    channel_id=ALARM_CHANNEL_ID,
    name="Alarm Notifications",
    importance="max",
    vibration=[0, 500, 250, 500],
    sound="alarm",
    bypass_dnd=True,
)
DEFAULT_CHANNEL = NotificationChannel(
    channel_id=DEFAULT_CHANNEL_ID,
    name="Default Notifications",
    importance="default",
)


class NotificationService(Protocol):
    """Platform notification system. schedule() returns once the request is accepted."""

    def schedule(self, content: NotificationContent) -> None: ...

    def create_channel(self, channel: NotificationChannel) -> None: ...


class AlertDispatcher:
    def __init__(self, service: NotificationService):
        self.service = service
        self.sent_count = 0
        self.failure_count = 0
        self.last_error: str | None = None

    def setup_channels(self) -> bool:
        """Registers the alarm and default channels. Failures are logged only."""
        try:
            for ch in (ALARM_CHANNEL, DEFAULT_CHANNEL):
                self.service.create_channel(ch)
        except Exception as e:
            logger.error("notification channel setup failed", error=str(e))
            return False
        return True

    def build_content(
        self,
        title: str,
        body: str,
        sound: SoundId,
        vibration: VibrationPattern,
        custom_vibration_ms: int = 0,
    ) -> NotificationContent:
        spec = SOUNDS[sound]
        return NotificationContent(
            title=title,
            body=body,
            sound=spec.android_id,
            ios_sound=spec.ios_sound,
            vibrate=vibration_timings(vibration, custom_vibration_ms),
        )

    def dispatch(
        self,
        title: str,
        body: str,
        sound: SoundId,
        vibration: VibrationPattern,
        custom_vibration_ms: int = 0,
    ) -> NotificationContent:
        content = self.build_content(title, body, sound, vibration, custom_vibration_ms)
        try:
            self.service.schedule(content)
        except Exception as e:
            self.failure_count += 1
            self.last_error = str(e)
            raise DispatchError(f"notification not accepted: {e}") from e
        self.sent_count += 1
        self.last_error = None
        logger.info("alert dispatched", title=title, sound=content.sound, vibrate=content.vibrate)
        return content


class OutboxNotificationService:
    """
    Writes every notification as a JSON file into an outbox directory for the
    host shell to deliver.

    Files are named notification_<utc timestamp>_<id>.json; once more than
    max_files exist the oldest are deleted.
    """

    def __init__(self, outbox_dir: str | Path, max_files: int = 100):
        self.outbox_dir = Path(outbox_dir)
        self.max_files = max_files

    def _write(self, prefix: str, payload: dict) -> Path:
        self.outbox_dir.mkdir(parents=True, exist_ok=True)
        ts = datetime.now(UTC).strftime("%Y%m%d_%H%M%S_%f")
        path = self.outbox_dir / f"{prefix}_{ts}_{uuid4().hex[:8]}.json"
        with path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        return path

    def schedule(self, content: NotificationContent) -> None:
        self._write("notification", {"kind": "notification", **asdict(content)})
        self._cleanup()

    def create_channel(self, channel: NotificationChannel) -> None:
        self.outbox_dir.mkdir(parents=True, exist_ok=True)
        path = self.outbox_dir / f"channel_{channel.channel_id}.json"
        with path.open("w", encoding="utf-8") as f:
            json.dump({"kind": "channel", **asdict(channel)}, f, ensure_ascii=False, indent=2)

    def _cleanup(self) -> None:
        files = sorted(self.outbox_dir.glob("notification_*.json"), reverse=True)
        for old in files[self.max_files :]:
            try:
                old.unlink()
            except OSError as e:
                logger.warning("outbox cleanup failed", file=old.name, error=str(e))
