from __future__ import annotations


class AlarmError(Exception):
    """Base class for every failure the alarm engine reports."""


class ConfigError(AlarmError):
    """Arming request rejected before any state change (bad radius, missing target, ...)."""


class StoreError(AlarmError):
    """Durable storage could not be read or written."""


class DispatchError(AlarmError):
    """The notification service did not accept the alert."""
