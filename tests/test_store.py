"""Tests for the alarm configuration store and its storage backends."""

import json

import pytest

from distance_alarm.core.errors import ConfigError, StoreError
from distance_alarm.core.models import (
    AlarmConfig,
    AlertPreferences,
    Coordinate,
    SoundId,
    VibrationPattern,
)
from distance_alarm.core.storage import JsonFileStorage, MemoryStorage
from distance_alarm.core.store import (
    KEY_CUSTOM_VIBRATION,
    KEY_RADIUS,
    KEY_SOUND,
    KEY_TARGET,
    KEY_TRACKING,
    KEY_VIBRATION,
    AlarmStore,
)


class SequentialStorage:
    """Storage without set_many; records the order of writes."""

    def __init__(self):
        self.data = {}
        self.order = []

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.order.append(key)
        self.data[key] = value


class TestArming:
    def test_save_then_load(self, store, config):
        store.save_arming(config)
        assert store.load_arming() == config

    def test_persisted_layout(self, storage, store):
        prefs = AlertPreferences(SoundId.SIREN, VibrationPattern.CUSTOM, 1200)
        store.save_arming(AlarmConfig(Coordinate(41.5, 29.25), 750.0, prefs))

        assert json.loads(storage.data[KEY_TARGET]) == {"latitude": 41.5, "longitude": 29.25}
        assert storage.data[KEY_RADIUS] == "750.0"
        assert storage.data[KEY_TRACKING] == "true"
        assert storage.data[KEY_SOUND] == "siren"
        assert storage.data[KEY_VIBRATION] == "custom"
        assert storage.data[KEY_CUSTOM_VIBRATION] == "1200"

    def test_single_write_when_storage_supports_it(self, storage, store, config):
        store.save_arming(config)
        assert storage.writes == 1

    def test_flag_written_last_without_set_many(self, config):
        backend = SequentialStorage()
        AlarmStore(backend).save_arming(config)
        assert backend.order[-1] == KEY_TRACKING
        assert backend.order.index(KEY_TARGET) < backend.order.index(KEY_TRACKING)
        assert backend.order.index(KEY_RADIUS) < backend.order.index(KEY_TRACKING)

    def test_load_when_never_armed(self, store):
        assert store.load_arming() is None

    def test_clear(self, storage, store, config):
        store.save_arming(config)
        store.clear_arming()
        assert store.load_arming() is None
        assert storage.data[KEY_TRACKING] == "false"

    @pytest.mark.parametrize("radius", [0.0, -5.0, float("nan"), float("inf")])
    def test_invalid_radius_not_written(self, storage, store, radius):
        with pytest.raises(ConfigError):
            store.save_arming(AlarmConfig(Coordinate(0, 0), radius))
        assert storage.data == {}

    def test_write_failure_surfaces(self, storage, store, config):
        storage.fail_writes = True
        with pytest.raises(StoreError):
            store.save_arming(config)

    def test_read_failure_surfaces(self, storage, store):
        storage.fail_reads = True
        with pytest.raises(StoreError):
            store.load_arming()

    @pytest.mark.parametrize(
        "target,radius",
        [
            (None, "500"),
            ("not json", "500"),
            ('{"latitude": 1.0}', "500"),
            ('[1, 2]', "500"),
            ('{"latitude": 1.0, "longitude": 2.0}', None),
            ('{"latitude": 1.0, "longitude": 2.0}', "abc"),
            ('{"latitude": 1.0, "longitude": 2.0}', "-10"),
            ('{"latitude": 123.0, "longitude": 2.0}', "500"),
        ],
    )
    def test_armed_flag_with_bad_payload_reads_as_not_armed(self, target, radius):
        data = {KEY_TRACKING: "true"}
        if target is not None:
            data[KEY_TARGET] = target
        if radius is not None:
            data[KEY_RADIUS] = radius
        assert AlarmStore(MemoryStorage(data)).load_arming() is None

    def test_stale_config_ignored_when_not_tracking(self):
        data = {
            KEY_TRACKING: "false",
            KEY_TARGET: '{"latitude": 1.0, "longitude": 2.0}',
            KEY_RADIUS: "500",
        }
        assert AlarmStore(MemoryStorage(data)).load_arming() is None


class TestPreferences:
    def test_defaults_when_unset(self, store):
        prefs = store.load_preferences()
        assert prefs.sound is SoundId.ALARM
        assert prefs.vibration is VibrationPattern.MEDIUM
        assert prefs.custom_vibration_ms == 500

    def test_round_trip(self, store):
        prefs = AlertPreferences(SoundId.CHIME, VibrationPattern.HEAVY, 250)
        store.save_preferences(prefs)
        assert store.load_preferences() == prefs

    def test_unknown_values_fall_back_per_field(self):
        data = {KEY_SOUND: "foghorn", KEY_VIBRATION: "light", KEY_CUSTOM_VIBRATION: "soon"}
        prefs = AlarmStore(MemoryStorage(data)).load_preferences()
        assert prefs.sound is SoundId.ALARM
        assert prefs.vibration is VibrationPattern.LIGHT
        assert prefs.custom_vibration_ms == 500

    def test_negative_duration_falls_back(self):
        prefs = AlarmStore(MemoryStorage({KEY_CUSTOM_VIBRATION: "-3"})).load_preferences()
        assert prefs.custom_vibration_ms == 500

    def test_read_failure_gives_defaults(self, storage, store):
        store.save_preferences(AlertPreferences(SoundId.BEEP))
        storage.fail_reads = True
        assert store.load_preferences() == AlertPreferences()

    def test_negative_duration_rejected_on_save(self, store):
        with pytest.raises(ConfigError):
            store.save_preferences(AlertPreferences(custom_vibration_ms=-1))


class TestJsonFileStorage:
    def test_missing_file_reads_empty(self, tmp_path):
        assert JsonFileStorage(tmp_path / "nope.json").get("isTracking") is None

    def test_persists_across_instances(self, tmp_path, config):
        path = tmp_path / "state" / "alarm.json"
        AlarmStore(JsonFileStorage(path)).save_arming(config)
        assert AlarmStore(JsonFileStorage(path)).load_arming() == config

    def test_no_temp_files_left(self, tmp_path):
        s = JsonFileStorage(tmp_path / "alarm.json")
        s.set("a", "1")
        s.set_many({"b": "2", "c": "3"})
        assert [p.name for p in tmp_path.iterdir()] == ["alarm.json"]
        assert json.loads((tmp_path / "alarm.json").read_text()) == {"a": "1", "b": "2", "c": "3"}

    def test_corrupt_file_raises_store_error(self, tmp_path):
        path = tmp_path / "alarm.json"
        path.write_text("{not json")
        with pytest.raises(StoreError):
            JsonFileStorage(path).get("isTracking")

    def test_non_object_raises_store_error(self, tmp_path):
        path = tmp_path / "alarm.json"
        path.write_text("[1, 2, 3]")
        with pytest.raises(StoreError):
            JsonFileStorage(path).get("isTracking")

    def test_unwritable_location_raises_store_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        with pytest.raises(StoreError):
            JsonFileStorage(blocker / "alarm.json").set("a", "1")

    def test_store_keeps_file_error_unwrapped(self, tmp_path):
        path = tmp_path / "alarm.json"
        path.write_text("{not json")
        with pytest.raises(StoreError, match="corrupt storage file") as exc:
            AlarmStore(JsonFileStorage(path)).load_arming()
        assert exc.value.__cause__ is not None
        assert not isinstance(exc.value.__cause__, StoreError)
