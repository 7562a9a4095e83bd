from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Protocol

import structlog

from .engine import Decision, ProximityAlarmEngine
from .models import ArmingState, PositionSample

logger = structlog.get_logger(__name__)


class SubscriptionHandle(Protocol):
    def remove(self) -> None: ...


class PositionSource(Protocol):
    """Foreground location updates supplied by the platform."""

    def subscribe(
        self,
        min_interval_ms: int,
        min_distance_m: float,
        on_sample: Callable[[PositionSample], None],
    ) -> SubscriptionHandle: ...


class PositionChannel:
    """
    Single-consumer queue of position samples.

    close() wakes the consumer; samples queued before the close are still
    delivered, samples put afterwards are dropped.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[PositionSample | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, sample: PositionSample) -> bool:
        if self._closed:
            return False
        self._queue.put_nowait(sample)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    def __aiter__(self) -> PositionChannel:
        return self

    async def __anext__(self) -> PositionSample:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item


class ForegroundTracker:
    """
    Feeds in-process location updates into the engine while the UI is alive.

    The subscription is removed and the channel closed as soon as the engine
    leaves ARMED, whether by trigger or disarm.
    """

    def __init__(
        self,
        engine: ProximityAlarmEngine,
        source: PositionSource,
        min_interval_ms: int = 2000,
        min_distance_m: float = 5.0,
    ):
        self.engine = engine
        self.source = source
        self.min_interval_ms = min_interval_ms
        self.min_distance_m = min_distance_m
        self._channel: PositionChannel | None = None
        self._handle: SubscriptionHandle | None = None

    @property
    def running(self) -> bool:
        return self._channel is not None and not self._channel.closed

    def start(self) -> PositionChannel:
        if self._channel is not None and not self._channel.closed:
            return self._channel
        self._channel = PositionChannel()
        self._handle = self.source.subscribe(
            self.min_interval_ms, self.min_distance_m, self._channel.put
        )
        self.engine.add_listener(self._on_state_change)
        logger.debug(
            "foreground tracking started",
            interval_ms=self.min_interval_ms,
            distance_m=self.min_distance_m,
        )
        return self._channel

    async def run(self) -> Decision | None:
        """Drains the channel into the engine; returns the last decision made."""
        channel = self._channel or self.start()
        last: Decision | None = None
        async for sample in channel:
            last = self.engine.observe(sample)
        return last

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.remove()
            self._handle = None
        if self._channel is not None:
            self._channel.close()
        self.engine.remove_listener(self._on_state_change)

    def _on_state_change(self, old: ArmingState, new: ArmingState) -> None:
        if new is ArmingState.IDLE:
            logger.debug("engine left armed state; stopping", previous=old.value)
            self.stop()
