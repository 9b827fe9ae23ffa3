"""Interaction observers that turn raw notifications into telemetry events.

Each analyzer owns one channel (mouse, scroll, forms) and reports through an
``emit(type, payload)`` callback, normally ``EventBatcher``-backed
``BotTagger.send_custom_event``.
"""

import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, Hashable, List, NamedTuple, Optional, Sequence

import numpy as np

from botguard.config import (FAST_SUBMIT_MS, LINEARITY_MAX_RESIDUAL, LINEARITY_MIN_SAMPLES,
                             LINEARITY_WINDOW, MOUSE_SUMMARY_EVERY, RISK_RECENT_SCROLL_WINDOW,
                             SCROLL_FAST_DELTA_MS, SCROLL_FAST_MIN_COUNT, SCROLL_RECENT_WINDOW,
                             SCROLL_RING_SIZE)
from botguard.models import EventType

logger = logging.getLogger("botguard.client")

Emit = Callable[[str, Dict[str, Any]], None]
Clock = Callable[[], int]


class MouseSample(NamedTuple):
    x: float
    y: float
    timestamp: int


def compute_linearity(samples: Sequence[MouseSample]) -> float:
    """Score how straight the recent mouse path is.

    Fits an ordinary least-squares line through at most ``LINEARITY_WINDOW``
    points taken backwards from the newest sample at an even stride, then maps
    the mean absolute residual onto [0, 1]. 1.0 is a perfectly straight path
    (scripted movement); organic jitter scores lower.

    Returns 0.0 when there is not enough data to judge.
    """
    total = len(samples) if samples else 0
    if total < LINEARITY_MIN_SAMPLES:
        return 0.0

    n = min(LINEARITY_WINDOW, total)
    step = total // n or 1
    indices = list(range(total - 1, -1, -step))[:n]
    if len(indices) < 3:
        return 0.0

    pts = np.array([[samples[i].x, samples[i].y] for i in indices], dtype=float)
    x, y = pts[:, 0], pts[:, 1]
    count = len(pts)

    sx, sy = x.sum(), y.sum()
    sxx, sxy = (x * x).sum(), (x * y).sum()
    denom = count * sxx - sx * sx
    if denom == 0:
        denom = 1.0
    m = (count * sxy - sx * sy) / denom
    b = (sy - m * sx) / count

    avg_residual = float(np.abs(y - (m * x + b)).mean())
    linearity = (LINEARITY_MAX_RESIDUAL - avg_residual) / LINEARITY_MAX_RESIDUAL
    return round(float(np.clip(linearity, 0.0, 1.0)), 2)


class MouseLinearityAnalyzer:
    """Accumulates movement samples and emits a ``mouse_summary`` every 50th one."""

    def __init__(self, emit: Emit, clock: Clock):
        self._emit = emit
        self._clock = clock
        self.samples: List[MouseSample] = []

    @property
    def count(self) -> int:
        return len(self.samples)

    def linearity(self) -> float:
        return compute_linearity(self.samples)

    def on_move(self, x: float, y: float, timestamp: Optional[int] = None) -> None:
        ts = self._clock() if timestamp is None else timestamp
        self.samples.append(MouseSample(float(x), float(y), ts))
        if self.count % MOUSE_SUMMARY_EVERY == 0:
            linearity = self.linearity()
            logger.debug("Mouse activity: %d points, linearity=%.2f", self.count, linearity)
            self._emit(EventType.MOUSE_SUMMARY.value, {"count": self.count, "linearity": linearity})


class ScrollCadenceAnalyzer:
    """Sliding-window detector for machine-speed scrolling.

    Inter-scroll deltas are kept in a FIFO ring of ``SCROLL_RING_SIZE``. Every
    scroll re-examines the newest ``SCROLL_RECENT_WINDOW`` deltas.
    """

    def __init__(self, emit: Emit, clock: Clock):
        self._emit = emit
        self._clock = clock
        self._last_ts: Optional[int] = None
        self.deltas: Deque[int] = deque(maxlen=SCROLL_RING_SIZE)

    def fast_count(self, window: int = SCROLL_RECENT_WINDOW) -> int:
        recent = list(self.deltas)[-window:]
        return sum(1 for dt in recent if dt < SCROLL_FAST_DELTA_MS)

    def recently_fast(self, window: int = RISK_RECENT_SCROLL_WINDOW) -> bool:
        return self.fast_count(window) >= SCROLL_FAST_MIN_COUNT

    def on_scroll(self, timestamp: Optional[int] = None) -> None:
        ts = self._clock() if timestamp is None else timestamp
        if self._last_ts is not None:
            self.deltas.append(ts - self._last_ts)
            fast = self.fast_count()
            if fast >= SCROLL_FAST_MIN_COUNT:
                logger.debug("Fast scroll detected: %d of last %d deltas", fast, SCROLL_RECENT_WINDOW)
                self._emit(EventType.FAST_SCROLL.value, {"fastCount": fast})
        self._last_ts = ts


class FormTimingAnalyzer:
    """Measures time from first input to submit for each form.

    Forms are identified by any hashable key supplied by the host (an element
    id, a selector). Start times live in an explicit mapping that the host
    clears with ``forget``/``clear`` when forms or the document go away.
    """

    def __init__(self, emit: Emit, clock: Clock, page_loaded_at: int):
        self._emit = emit
        self._clock = clock
        self.page_loaded_at = page_loaded_at
        self._started: Dict[Hashable, int] = {}

    def __len__(self):
        return len(self._started)

    def on_input(self, form: Hashable, timestamp: Optional[int] = None) -> None:
        if form not in self._started:
            self._started[form] = self._clock() if timestamp is None else timestamp

    def on_submit(self, form: Hashable, action: Optional[str] = None,
                  timestamp: Optional[int] = None) -> int:
        ts = self._clock() if timestamp is None else timestamp
        started = self._started.get(form, self.page_loaded_at)
        elapsed = ts - started
        if action is None:
            action = getattr(form, "action", None)

        self._emit(EventType.FORM_SUBMIT.value, {"action": action, "timeToSubmitMs": elapsed})
        logger.debug("Form submitted after %d ms", elapsed)
        if elapsed < FAST_SUBMIT_MS:
            logger.info("Fast form submission detected: %d ms", elapsed)
            self._emit(EventType.FAST_FORM_SUBMIT_FLAG.value, {"timeToSubmit": elapsed})
        return elapsed

    def forget(self, form: Hashable) -> bool:
        return self._started.pop(form, None) is not None

    def clear(self) -> None:
        self._started.clear()


def compute_risk_score(mouse: MouseLinearityAnalyzer, scroll: ScrollCadenceAnalyzer) -> int:
    """Diagnostic 0-100 score. Higher is more bot-like; not used for blocking."""
    score = 10
    score += int(round(mouse.linearity() * -40))
    score += 30 if scroll.recently_fast() else 0
    score += 20 if mouse.count < 4 else 0
    return max(0, min(100, score))
