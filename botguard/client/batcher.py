"""Event batching for the telemetry collector.

The batcher is a two-state machine: *idle* (no flush pending) and *armed*
(a flush timer is pending). Events are flushed when the queue reaches
``max_batch_size``, when the timer fires, or when the host forces it on
page hide / shutdown.
"""

import asyncio
import logging
import random
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from botguard.models import Batch, TelemetryEvent

logger = logging.getLogger("botguard.client")


def now_ms() -> int:
    return int(time.time() * 1000)


class CollectorConfig(BaseModel):
    """Collector configuration. Intervals are in milliseconds."""

    endpoint: str = "/bot-events"
    site_id: Optional[str] = None
    consent_required: bool = False
    batch_interval_ms: int = Field(default=3000, gt=0)
    max_batch_size: int = Field(default=50, ge=1)
    sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    user_id: Optional[str] = None
    step: Optional[str] = None


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle: ...


class ThreadingScheduler:
    """Runs callbacks on daemon ``threading.Timer`` threads."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


class AsyncioScheduler:
    """Schedules callbacks on an asyncio event loop (the host's cooperative timeline)."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class Transport(Protocol):
    def send(self, endpoint: str, batch: Batch) -> None: ...


class EventBatcher:
    """Queues telemetry events and hands complete batches to a transport.

    A queue drain is atomic with respect to the flush cycle: every event is
    read exactly once, even when the timer fires while the host is enqueueing.
    """

    def __init__(
        self,
        config: CollectorConfig,
        transport: Transport,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], int] = now_ms,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.transport = transport
        self.scheduler = scheduler or ThreadingScheduler()
        self.clock = clock
        self.rng = rng or random.Random()
        self.fingerprint: Optional[str] = None
        self.started_at = clock()

        self._queue: List[TelemetryEvent] = []
        self._timer: Optional[TimerHandle] = None
        self._lock = threading.RLock()
        self._closed = False

    @property
    def state(self) -> str:
        return "armed" if self._timer is not None else "idle"

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def closed(self) -> bool:
        return self._closed

    def enqueue(self, event: TelemetryEvent) -> None:
        with self._lock:
            if self._closed:
                return
            self._queue.append(event)
            full = len(self._queue) >= self.config.max_batch_size
            if not full and self._timer is None:
                self._timer = self.scheduler.call_later(self.config.batch_interval_ms / 1000.0, self._on_timer)
        if full:
            self.flush()

    def push(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> TelemetryEvent:
        event = TelemetryEvent(type=event_type, timestamp=self.clock(), payload=payload or {})
        self.enqueue(event)
        return event

    def flush(self) -> Optional[Batch]:
        """Drain the queue into a Batch and send it. Returns the batch sent, if any."""
        with self._lock:
            self._cancel_timer()
            if not self._queue:
                return None

            if self.rng.random() >= self.config.sample_rate:
                logger.debug("Batch of %d events dropped by sampling", len(self._queue))
                self._queue = []
                return None

            events, self._queue = self._queue, []
            created_at = self.clock()
            batch = Batch(
                site_id=self.config.site_id,
                fingerprint=self.fingerprint,
                created_at=created_at,
                session_duration_ms=created_at - self.started_at,
                user_id=self.config.user_id,
                step=self.config.step,
                events=events,
            )

        try:
            self.transport.send(self.config.endpoint, batch)
        except Exception:
            # Delivery is best-effort; a lost batch is never retried
            logger.debug("Transport failed for batch of %d events", len(batch.events), exc_info=True)
        return batch

    def shutdown(self) -> Optional[Batch]:
        """Refuse further events, then flush whatever is left."""
        with self._lock:
            # Closed before the drain, so nothing can land behind the final batch
            self._closed = True
        return self.flush()

    def _on_timer(self) -> None:
        with self._lock:
            self._timer = None
        self.flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
