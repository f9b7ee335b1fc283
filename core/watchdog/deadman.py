"""Dead man's switch state machine.

The watchdog consumes three kinds of events from a single intake queue:
periodic ticks, heartbeats from the watched system and a stop request. Events
are handled strictly one at a time, so the state needs no locking.

A tick with no heartbeat since the previous tick is a missed heartbeat. The
first missed tick of a window fires the alert; while heartbeats stay absent the
alert is repeated every ``window_ticks`` ticks. A failed alert delivery keeps
the window at its start, so every following tick retries until one succeeds.
A heartbeat restarts the window and, when an alert was delivered, sends the
recovery notification (retried on the next heartbeat if it fails).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from opentelemetry.trace import Status, StatusCode

from core.alerting.notifier import AlertNotifier
from core.watchdog.metrics import WatchdogMetrics, get_default_metrics
from otel_init import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

# Number of 30s intervals in 12 hours
DEFAULT_WINDOW_TICKS = 2 * 60 * 12

# Heartbeats beyond this many unprocessed events make the sender wait.
DEFAULT_QUEUE_SIZE = 64


@dataclass(frozen=True, slots=True)
class WatchdogConfig:
    interval: timedelta = timedelta(seconds=30)
    window_ticks: int = DEFAULT_WINDOW_TICKS

    def __post_init__(self) -> None:
        if self.interval <= timedelta(0):
            raise ValueError(f"interval must be positive, got {self.interval}")
        if self.window_ticks < 1:
            raise ValueError(f"window_ticks must be >= 1, got {self.window_ticks}")


@dataclass(slots=True)
class WatchdogState:
    skip_next_tick: bool = False
    firing: bool = False
    tick_counter: int = 0


class EventKind(StrEnum):
    TICK = "tick"
    HEARTBEAT = "heartbeat"
    STOP = "stop"


@dataclass(slots=True)
class WatchdogEvent:
    kind: EventKind
    at: datetime = field(default_factory=lambda: datetime.now(UTC))


class Deadman:
    """Owns the watchdog state and the loop that mutates it."""

    def __init__(
        self,
        *,
        notifier: AlertNotifier,
        config: WatchdogConfig | None = None,
        metrics: WatchdogMetrics | None = None,
        notify_timeout: float | None = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        self.notifier = notifier
        self.config = config or WatchdogConfig()
        self.metrics = metrics or get_default_metrics()
        self.notify_timeout = notify_timeout
        self.state = WatchdogState()
        self.last_heartbeat_at: datetime | None = None

        self._events: asyncio.Queue[WatchdogEvent] = asyncio.Queue(
            maxsize=queue_size
        )
        self._ticker: asyncio.Task | None = None
        self._tick_pending = False
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def handle_tick(self) -> None:
        self.metrics.ticks_total.inc()
        state = self.state

        if not state.skip_next_tick:
            due = state.tick_counter == 0
            # A failed alert leaves the counter at 0 so the next tick retries.
            if not due or await self._deliver(is_alert=True):
                state.tick_counter = (state.tick_counter + 1) % self.config.window_ticks

        state.skip_next_tick = False

    async def handle_heartbeat(self, at: datetime | None = None) -> None:
        self.last_heartbeat_at = at or datetime.now(UTC)
        state = self.state
        state.skip_next_tick = True
        state.tick_counter = 0

        if state.firing:
            await self._deliver(is_alert=False)

    async def _deliver(self, *, is_alert: bool) -> bool:
        """Attempt one notification and update ``firing`` on success."""
        self.metrics.ticks_notified.inc()

        with tracer.start_as_current_span("deadman.notify") as span:
            span.set_attribute("deadman.alert", is_alert)
            span.set_attribute("deadman.tick_counter", self.state.tick_counter)
            try:
                if self.notify_timeout is None:
                    await self.notifier.notify(is_alert)
                else:
                    await asyncio.wait_for(
                        self.notifier.notify(is_alert), timeout=self.notify_timeout
                    )
            except Exception as e:
                self.metrics.notifications_failed.inc()
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, "notification_failed"))
                kind = "alert" if is_alert else "recovery"
                logger.error(f"Failed to send {kind} notification: {e!r}")
                return False

        self.state.firing = is_alert
        logger.info(
            "Alert notification sent" if is_alert else "Recovery notification sent"
        )
        return True

    async def heartbeat(self, at: datetime | None = None) -> None:
        """Queue a heartbeat for the running loop, waiting while the queue is full."""
        if self._stopped:
            logger.debug("Ignoring heartbeat received after stop")
            return
        await self._events.put(
            WatchdogEvent(EventKind.HEARTBEAT, at or datetime.now(UTC))
        )

    async def stop(self) -> None:
        """Stop the tick source and make ``run`` return after the current event."""
        if self._stopped:
            return
        self._stopped = True
        if self._ticker is not None:
            self._ticker.cancel()
        await self._events.put(WatchdogEvent(EventKind.STOP))

    async def _tick_source(self) -> None:
        loop = asyncio.get_running_loop()
        period = self.config.interval.total_seconds()
        next_at = loop.time() + period
        while True:
            await asyncio.sleep(max(next_at - loop.time(), 0))
            next_at += period
            # At most one tick waits in the queue; ticks that come due while
            # the loop is busy are dropped.
            if self._tick_pending:
                logger.debug("Dropping tick, previous tick not yet handled")
                continue
            try:
                self._events.put_nowait(WatchdogEvent(EventKind.TICK))
            except asyncio.QueueFull:
                logger.debug("Dropping tick, event queue is full")
                continue
            self._tick_pending = True

    async def run(self) -> None:
        """Process events until a stop event is received."""
        if self._ticker is None and not self._stopped:
            self._ticker = asyncio.create_task(self._tick_source(), name="deadman-ticker")
        logger.info(
            f"Deadman watchdog started: interval={self.config.interval}, "
            f"window_ticks={self.config.window_ticks}"
        )

        try:
            while True:
                event = await self._events.get()
                if event.kind is EventKind.STOP:
                    break
                if event.kind is EventKind.TICK:
                    self._tick_pending = False
                    await self.handle_tick()
                else:
                    await self.handle_heartbeat(event.at)
        finally:
            if self._ticker is not None:
                self._ticker.cancel()
                await asyncio.gather(self._ticker, return_exceptions=True)

        logger.info("Deadman watchdog stopped")
