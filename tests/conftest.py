"""Shared fixtures and fakes for the alarm engine tests."""

import pytest

from distance_alarm.core.dispatcher import AlertDispatcher
from distance_alarm.core.engine import ProximityAlarmEngine
from distance_alarm.core.models import AlarmConfig, Coordinate, PositionSample
from distance_alarm.core.storage import MemoryStorage
from distance_alarm.core.store import AlarmStore


class RecordingNotificationService:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.scheduled = []
        self.channels = []

    def schedule(self, content):
        if self.fail:
            raise RuntimeError("notification service unavailable")
        self.scheduled.append(content)

    def create_channel(self, channel):
        if self.fail:
            raise RuntimeError("notification service unavailable")
        self.channels.append(channel)


class FlakyStorage(MemoryStorage):
    """MemoryStorage whose reads/writes can be switched to fail, per key if needed."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.fail_reads = False
        self.fail_writes = False
        self.fail_write_keys: set[str] = set()
        self.writes = 0

    def get(self, key):
        if self.fail_reads:
            raise OSError("read failed")
        return super().get(key)

    def set(self, key, value):
        self.set_many({key: value})

    def set_many(self, items):
        if self.fail_writes or self.fail_write_keys & set(items):
            raise OSError("write failed")
        self.writes += 1
        super().set_many(items)


class FakeSubscription:
    def __init__(self, source):
        self.source = source
        self.removed = False

    def remove(self):
        self.removed = True


class FakePositionSource:
    def __init__(self):
        self.callback = None
        self.params = None
        self.subscription = None

    def subscribe(self, min_interval_ms, min_distance_m, on_sample):
        self.params = (min_interval_ms, min_distance_m)
        self.callback = on_sample
        self.subscription = FakeSubscription(self)
        return self.subscription

    def emit(self, sample):
        if self.callback is not None and not self.subscription.removed:
            self.callback(sample)


TARGET = Coordinate(0.0, 0.0)
# ~998.9 m and ~1000.8 m from TARGET on a great circle through it
ON_BOUNDARY = Coordinate(0.0, 0.008983)
JUST_OUTSIDE = Coordinate(0.0, 0.0090)
FAR_AWAY = Coordinate(0.1, 0.1)


def sample(coord, ts=1_000):
    return PositionSample(coord=coord, timestamp_ms=ts)


@pytest.fixture
def storage():
    return FlakyStorage()


@pytest.fixture
def store(storage):
    return AlarmStore(storage)


@pytest.fixture
def notifier():
    return RecordingNotificationService()


@pytest.fixture
def dispatcher(notifier):
    return AlertDispatcher(notifier)


@pytest.fixture
def engine(store, dispatcher):
    return ProximityAlarmEngine(store, dispatcher)


@pytest.fixture
def config():
    return AlarmConfig(target=TARGET, radius_m=1000.0)
