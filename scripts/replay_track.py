# scripts/replay_track.py
"""
Replays a recorded track through the background entry point, one independent
invocation per row, and reports where the alarm fired.

    python scripts/replay_track.py --track trip.csv --lat 41.0151 --lon 28.9795 --radius 500
"""

import argparse
import json
import numbers
import tempfile
from datetime import UTC
from pathlib import Path

import pandas as pd
from dateutil import parser as dtp

from distance_alarm.core.dispatcher import AlertDispatcher, OutboxNotificationService
from distance_alarm.core.engine import evaluate_background
from distance_alarm.core.logging_setup import setup_logging
from distance_alarm.core.models import AlarmConfig, Coordinate, PositionSample
from distance_alarm.core.storage import JsonFileStorage
from distance_alarm.core.store import AlarmStore


def to_epoch_ms(ts) -> int:
    """
    Numeric values are taken as epoch milliseconds; anything else is parsed as a
    date string. Naive timestamps are assumed to be UTC.
    """
    if isinstance(ts, numbers.Real) and not isinstance(ts, bool):
        return int(ts)
    dt = dtp.parse(str(ts))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp() * 1000)


def load_track(path: Path) -> pd.DataFrame:
    if path.suffix.lower() in {".jsonl", ".json"}:
        df = pd.read_json(path, lines=path.suffix.lower() == ".jsonl")
    else:
        df = pd.read_csv(path)
    for c in ["timestamp", "lat", "lon"]:
        if c not in df.columns:
            raise ValueError(f"missing required column: {c}")
    df = df.dropna(subset=["timestamp", "lat", "lon"])
    df["timestamp_ms"] = df["timestamp"].map(to_epoch_ms)
    if "accuracy" not in df.columns:
        df["accuracy"] = None
    return df.sort_values(by="timestamp_ms", kind="stable").reset_index(drop=True)


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--track", required=True, help="CSV/JSONL: timestamp, lat, lon[, accuracy]")
    ap.add_argument("--lat", type=float, required=True, help="destination latitude")
    ap.add_argument("--lon", type=float, required=True, help="destination longitude")
    ap.add_argument("--radius", type=float, default=500.0, help="alarm radius (m)")
    ap.add_argument("--outbox", default=None, help="notification outbox dir (default: temp dir)")
    ap.add_argument("--log-level", default="WARNING")
    args = ap.parse_args()

    setup_logging(args.log_level)
    df = load_track(Path(args.track))

    with tempfile.TemporaryDirectory() as tmp:
        store = AlarmStore(JsonFileStorage(Path(tmp) / "alarm.json"))
        dispatcher = AlertDispatcher(OutboxNotificationService(args.outbox or Path(tmp) / "outbox"))
        store.save_arming(AlarmConfig(Coordinate(args.lat, args.lon), args.radius))

        fired = None
        for i, r in df.iterrows():
            acc = r["accuracy"]
            sample = PositionSample(
                Coordinate(float(r["lat"]), float(r["lon"])),
                int(r["timestamp_ms"]),
                None if pd.isna(acc) else float(acc),
            )
            decision = evaluate_background(store, dispatcher, [sample])
            if decision.triggered:
                fired = {
                    "row": int(i),
                    "timestamp_ms": sample.timestamp_ms,
                    "distance_m": decision.distance_m,
                }
                break

    if fired is None:
        print(f"[--] alarm did not fire | rows: {len(df)}")
    else:
        print(f"[OK] alarm fired -> {json.dumps(fired)}")


if __name__ == "__main__":
    main()
