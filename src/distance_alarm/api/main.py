from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..core.config import Config, load_config
from ..core.dispatcher import (
    AlertDispatcher,
    NotificationService,
    OutboxNotificationService,
    available_sounds,
)
from ..core.engine import Decision, ProximityAlarmEngine, evaluate_background
from ..core.errors import ConfigError, StoreError
from ..core.logging_setup import setup_logging
from ..core.models import (
    AlarmConfig,
    AlertPreferences,
    ArmingState,
    Coordinate,
    PositionSample,
    SoundId,
    VibrationPattern,
)
from ..core.storage import JsonFileStorage, KeyValueStorage
from ..core.store import AlarmStore
from ..core.tracking import ForegroundTracker, PositionSource

# -------------------- Pydantic schemas --------------------


class CoordinateIn(BaseModel):
    latitude: float
    longitude: float

    def to_model(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)


class PreferencesIO(BaseModel):
    sound: SoundId = SoundId.ALARM
    vibration: VibrationPattern = VibrationPattern.MEDIUM
    custom_vibration_ms: int = Field(500, ge=0, description="ms, used with vibration=custom")

    def to_model(self) -> AlertPreferences:
        return AlertPreferences(self.sound, self.vibration, self.custom_vibration_ms)

    @classmethod
    def from_model(cls, p: AlertPreferences) -> PreferencesIO:
        return cls(sound=p.sound, vibration=p.vibration, custom_vibration_ms=p.custom_vibration_ms)


class ArmIn(BaseModel):
    # left optional so a missing destination is reported like any other arming error
    target: CoordinateIn | None = None
    # falls back to tracking.default_radius_m
    radius_m: float | None = None
    preferences: PreferencesIO | None = None


class SampleIn(BaseModel):
    latitude: float
    longitude: float
    timestamp_ms: int
    accuracy_m: float | None = None

    def to_model(self) -> PositionSample:
        return PositionSample(
            Coordinate(self.latitude, self.longitude), self.timestamp_ms, self.accuracy_m
        )


class BackgroundIn(BaseModel):
    locations: list[SampleIn]


class DecisionOut(BaseModel):
    state: ArmingState
    reason: str
    triggered: bool
    distance_m: float | None = None
    alert_dispatched: bool
    disarm_persisted: bool
    timestamp: datetime

    @classmethod
    def from_decision(cls, d: Decision) -> DecisionOut:
        return cls(
            state=d.state,
            reason=d.reason,
            triggered=d.triggered,
            distance_m=d.distance_m,
            alert_dispatched=d.alert_dispatched,
            disarm_persisted=d.disarm_persisted,
            timestamp=d.timestamp,
        )


class StatusOut(BaseModel):
    state: ArmingState
    target: CoordinateIn | None = None
    radius_m: float | None = None
    last_distance_m: float | None = None
    preferences: PreferencesIO | None = None


class SoundOut(BaseModel):
    id: SoundId
    name: str


# -------------------- App factory --------------------


def create_app(
    cfg: Config | None = None,
    storage: KeyValueStorage | None = None,
    service: NotificationService | None = None,
    source: PositionSource | None = None,
) -> FastAPI:
    """
    Builds the app around one long-lived engine.

    With a position source, the app also runs foreground tracking while armed. The
    engine is only touched from the event loop, so the endpoints that use it are async.
    """
    cfg = cfg or load_config()
    store = AlarmStore(storage if storage is not None else JsonFileStorage(cfg.storage_path))
    if service is None:
        service = OutboxNotificationService(cfg.outbox_dir, cfg.outbox_max_files)
    dispatcher = AlertDispatcher(service)
    engine = ProximityAlarmEngine(
        store, dispatcher, title=cfg.alert_title, body_template=cfg.alert_body_template
    )
    tracker = None
    if source is not None:
        tracker = ForegroundTracker(
            engine, source, cfg.foreground_interval_ms, cfg.foreground_distance_m
        )
    tasks: set[asyncio.Task] = set()

    def start_tracking() -> None:
        if tracker is None or tracker.running or engine.state is not ArmingState.ARMED:
            return
        tracker.start()
        task = asyncio.get_running_loop().create_task(tracker.run())
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        setup_logging(cfg.log_level, cfg.log_format)
        dispatcher.setup_channels()
        # the previous process may have been killed while armed
        engine.recover()
        start_tracking()
        yield
        if tracker is not None:
            tracker.stop()
        if tasks:
            await asyncio.gather(*tasks)

    app = FastAPI(title="Distance Alarm", version="0.1.0", lifespan=lifespan)
    app.state.cfg = cfg
    app.state.store = store
    app.state.dispatcher = dispatcher
    app.state.engine = engine
    app.state.tracker = tracker

    @app.exception_handler(ConfigError)
    async def _config_error(_: Request, exc: ConfigError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(StoreError)
    async def _store_error(_: Request, exc: StoreError):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    # -------------------- Endpoints --------------------

    @app.get("/health")
    def health():
        return {
            "ok": True,
            "version": "0.1.0",
            "state": engine.state.value,
            "tracking": {
                "foreground_interval_ms": cfg.foreground_interval_ms,
                "foreground_distance_m": cfg.foreground_distance_m,
                "background_interval_ms": cfg.background_interval_ms,
                "background_distance_m": cfg.background_distance_m,
                "default_radius_m": cfg.default_radius_m,
            },
        }

    @app.get("/alarm", response_model=StatusOut)
    async def status():
        # a background invocation may have triggered and disarmed meanwhile
        engine.recover()
        c = engine.config
        if c is None:
            return StatusOut(state=engine.state)
        return StatusOut(
            state=engine.state,
            target=CoordinateIn(latitude=c.target.latitude, longitude=c.target.longitude),
            radius_m=c.radius_m,
            last_distance_m=engine.last_distance_m,
            preferences=PreferencesIO.from_model(c.preferences),
        )

    @app.post("/alarm/arm", response_model=StatusOut)
    async def arm(inp: ArmIn):
        prefs = inp.preferences.to_model() if inp.preferences else store.load_preferences()
        radius = inp.radius_m if inp.radius_m is not None else cfg.default_radius_m
        engine.arm(
            AlarmConfig(
                target=inp.target.to_model() if inp.target else None,
                radius_m=radius,
                preferences=prefs,
            )
        )
        start_tracking()
        return await status()

    @app.post("/alarm/disarm", response_model=StatusOut)
    async def disarm():
        engine.disarm()
        return StatusOut(state=engine.state)

    @app.post("/location", response_model=DecisionOut)
    async def location(inp: SampleIn):
        """Foreground sample, evaluated by the long-lived engine."""
        return DecisionOut.from_decision(engine.observe(inp.to_model()))

    @app.post("/location/background", response_model=DecisionOut)
    def location_background(inp: BackgroundIn):
        """
        Background batch, evaluated as an independent invocation: fresh engine,
        state taken from the store only.
        """
        decision = evaluate_background(
            store,
            dispatcher,
            [s.to_model() for s in inp.locations],
            title=cfg.alert_title,
            body_template=cfg.alert_body_template,
        )
        return DecisionOut.from_decision(decision)

    @app.get("/preferences", response_model=PreferencesIO)
    def get_preferences():
        return PreferencesIO.from_model(store.load_preferences())

    @app.put("/preferences", response_model=PreferencesIO)
    def put_preferences(inp: PreferencesIO):
        store.save_preferences(inp.to_model())
        return inp

    @app.get("/sounds", response_model=list[SoundOut])
    def sounds():
        return [SoundOut(id=sid, name=name) for sid, name in available_sounds()]

    return app


app = create_app()
