"""
Proximity alarm state machine.

    IDLE --arm--> ARMED --observe (distance <= radius)--> TRIGGERED --> IDLE
                  ARMED --observe (distance > radius)---> ARMED
                  ARMED --disarm------------------------> IDLE

The durable store is the source of truth. An engine re-reads it on its first use
in a process and again right before dispatching, so a disarm written by another
context (foreground UI vs. background invocation) cancels the alert. There is no
cross-process lock: two contexts that both pass the pre-dispatch read before
either clears the flag can each send one alert. That race is accepted; it can
produce at most one duplicate alert per arming.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog

from ..utils.geo import distance_m
from .dispatcher import AlertDispatcher
from .errors import DispatchError, StoreError
from .models import AlarmConfig, ArmingState, PositionSample
from .store import AlarmStore

logger = structlog.get_logger(__name__)

DEFAULT_TITLE = "Arrived!"
DEFAULT_BODY_TEMPLATE = "You are within {distance}m of your destination!"

StateListener = Callable[[ArmingState, ArmingState], None]


def _same_arming(a: AlarmConfig | None, b: AlarmConfig | None) -> bool:
    """Target and radius identify an arming; preferences can change while armed."""
    if a is None or b is None:
        return a is b
    return a.target == b.target and a.radius_m == b.radius_m


@dataclass
class Decision:
    """Outcome of evaluating one position sample."""

    state: ArmingState
    reason: str
    triggered: bool = False
    distance_m: float | None = None
    alert_dispatched: bool = False
    # False only when the post-trigger disarm write failed (armed flag may be stuck)
    disarm_persisted: bool = True
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class ProximityAlarmEngine:
    def __init__(
        self,
        store: AlarmStore,
        dispatcher: AlertDispatcher,
        title: str = DEFAULT_TITLE,
        body_template: str = DEFAULT_BODY_TEMPLATE,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.title = title
        self.body_template = body_template

        self._state = ArmingState.IDLE
        self._config: AlarmConfig | None = None
        self._last_distance_m: float | None = None
        self._last_ts_ms: int | None = None
        self._recovered = False
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> ArmingState:
        return self._state

    @property
    def config(self) -> AlarmConfig | None:
        return self._config

    @property
    def last_distance_m(self) -> float | None:
        return self._last_distance_m

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _set_state(self, new: ArmingState) -> None:
        old = self._state
        if old is new:
            return
        self._state = new
        for listener in list(self._listeners):
            listener(old, new)

    def _to_idle(self) -> None:
        self._config = None
        self._last_distance_m = None
        self._last_ts_ms = None
        self._set_state(ArmingState.IDLE)

    # -------------------- lifecycle --------------------

    def recover(self) -> ArmingState:
        """
        Loads the persisted arming. An unreadable store counts as not armed.

        Reloading the arming this engine already holds keeps the cached distance
        and the newest evaluated timestamp; only updated preferences are taken over.
        """
        self._recovered = True
        try:
            persisted = self.store.load_arming()
        except StoreError as e:
            logger.warning("arming state unreadable, assuming not armed", error=str(e))
            persisted = None

        if persisted is None:
            if self._state is not ArmingState.IDLE:
                logger.info("alarm no longer armed in store")
            self._to_idle()
        elif self._state is ArmingState.ARMED and _same_arming(persisted, self._config):
            self._config = persisted
        else:
            self._config = persisted
            self._last_distance_m = None
            self._last_ts_ms = None
            self._set_state(ArmingState.ARMED)
            logger.info(
                "resumed armed alarm",
                target=persisted.target.to_dict(),
                radius_m=persisted.radius_m,
            )
        return self._state

    def _ensure_recovered(self) -> None:
        if not self._recovered:
            self.recover()

    def arm(self, config: AlarmConfig) -> None:
        """
        Persists config and starts evaluating samples against it.

        Raises ConfigError before any write if the config is unusable and
        StoreError if the write fails; in both cases the engine state is unchanged.
        Arming while already armed replaces the previous config.
        """
        config.validate()
        self.store.save_arming(config)
        self._recovered = True
        if self._state is ArmingState.ARMED:
            logger.info("replacing armed config")
        self._config = config
        self._last_distance_m = None
        self._last_ts_ms = None
        self._set_state(ArmingState.ARMED)
        logger.info(
            "alarm armed",
            target=config.target.to_dict(),
            radius_m=config.radius_m,
            sound=config.preferences.sound.value,
            vibration=config.preferences.vibration.value,
        )

    def disarm(self) -> None:
        """
        User-initiated stop. No alert is sent.

        The in-memory state drops to IDLE before the write so this engine stops
        alerting even when clear_arming raises StoreError.
        """
        self._recovered = True
        self._to_idle()
        self.store.clear_arming()
        logger.info("alarm disarmed")

    # -------------------- evaluation --------------------

    def observe(self, sample: PositionSample) -> Decision:
        self._ensure_recovered()
        if self._state is not ArmingState.ARMED or self._config is None:
            return Decision(state=self._state, reason="not_armed")

        if self._last_ts_ms is not None and sample.timestamp_ms < self._last_ts_ms:
            logger.debug(
                "dropping stale sample",
                timestamp_ms=sample.timestamp_ms,
                newest_ms=self._last_ts_ms,
            )
            return Decision(
                state=self._state, reason="stale_sample", distance_m=self._last_distance_m
            )
        self._last_ts_ms = sample.timestamp_ms

        d = distance_m(sample.coord, self._config.target)
        self._last_distance_m = d
        if math.isnan(d) or d > self._config.radius_m:
            return Decision(state=self._state, reason="outside_radius", distance_m=d)
        return self._trigger(sample, d)

    def _trigger(self, sample: PositionSample, d: float) -> Decision:
        # another context may have disarmed or re-armed since this engine last looked
        try:
            persisted = self.store.load_arming()
        except StoreError as e:
            logger.warning("cannot confirm arming before alert; will retry", error=str(e))
            return Decision(state=self._state, reason="store_unreadable", distance_m=d)

        if persisted is None:
            logger.info("alarm was disarmed elsewhere; discarding sample", distance_m=d)
            self._to_idle()
            return Decision(state=self._state, reason="disarmed_elsewhere", distance_m=d)

        rearmed = not _same_arming(persisted, self._config)
        # preferences saved since arming apply to this alert
        self._config = persisted
        if rearmed:
            d = distance_m(sample.coord, persisted.target)
            self._last_distance_m = d
            if math.isnan(d) or d > persisted.radius_m:
                logger.info("alarm re-armed elsewhere; sample outside new radius")
                return Decision(state=self._state, reason="outside_radius", distance_m=d)

        config = self._config
        self._set_state(ArmingState.TRIGGERED)
        logger.info("destination reached", distance_m=round(d, 1), radius_m=config.radius_m)

        prefs = config.preferences
        dispatched = False
        try:
            self.dispatcher.dispatch(
                self.title,
                self.body_template.format(distance=round(d)),
                prefs.sound,
                prefs.vibration,
                prefs.custom_vibration_ms,
            )
            dispatched = True
        except DispatchError as e:
            # still disarm: a failed alert must not leave the alarm silently re-armable
            logger.error("alert dispatch failed", error=str(e))

        persisted_ok = True
        try:
            self.store.clear_arming()
        except StoreError as e:
            persisted_ok = False
            logger.error(
                "alert sent but disarm not persisted; armed flag may be stale until manual disarm",
                error=str(e),
            )

        self._to_idle()
        return Decision(
            state=self._state,
            reason="entered_radius",
            triggered=True,
            distance_m=d,
            alert_dispatched=dispatched,
            disarm_persisted=persisted_ok,
        )


def evaluate_background(
    store: AlarmStore,
    dispatcher: AlertDispatcher,
    samples: Iterable[PositionSample],
    title: str = DEFAULT_TITLE,
    body_template: str = DEFAULT_BODY_TEMPLATE,
) -> Decision:
    """
    Entry point for a platform-scheduled background invocation.

    Builds a fresh engine from persisted state and evaluates only the newest
    sample of the batch; nothing survives the call except what the store holds.
    """
    engine = ProximityAlarmEngine(store, dispatcher, title=title, body_template=body_template)
    engine.recover()
    batch = list(samples)
    if not batch:
        return Decision(state=engine.state, reason="no_samples")
    newest = max(batch, key=lambda s: s.timestamp_ms)
    decision = engine.observe(newest)
    logger.debug(
        "background evaluation",
        samples=len(batch),
        reason=decision.reason,
        distance_m=decision.distance_m,
    )
    return decision
