"""BotTagger: the telemetry collector as an explicit, self-contained instance."""

import logging
import random
from typing import Any, Callable, Dict, Hashable, Optional

from botguard.client.batcher import CollectorConfig, EventBatcher, Scheduler, Transport, now_ms
from botguard.client.extractors import (FormTimingAnalyzer, MouseLinearityAnalyzer,
                                        ScrollCadenceAnalyzer, compute_risk_score)
from botguard.client.transport import BeaconTransport
from botguard.fingerprint import EnvironmentInfo, generate_fingerprint
from botguard.models import Batch, EventType

logger = logging.getLogger("botguard.client")


class BotTagger:
    """Observes one document's interactions and ships them in batches.

    The host forwards its notifications (``on_mouse_move``, ``on_scroll``,
    ``on_form_input``, ``on_form_submit``, ``on_page_hide``). Nothing is
    global, so several collectors can run side by side.

    Example::

        tagger = BotTagger(CollectorConfig(site_id="shop"), transport=BeaconTransport("https://example.test"))
        tagger.start(url="https://example.test/login")
        tagger.on_mouse_move(10, 20)
        tagger.on_page_hide()
    """

    def __init__(
        self,
        config: Optional[CollectorConfig] = None,
        transport: Optional[Transport] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], int] = now_ms,
        rng: Optional[random.Random] = None,
        environment: Optional[EnvironmentInfo] = None,
    ):
        self.config = config or CollectorConfig()
        self.clock = clock
        self.environment = environment
        self.batcher = EventBatcher(self.config, transport or BeaconTransport(), scheduler=scheduler,
                                    clock=clock, rng=rng)
        self.enabled = False
        self.fingerprint: Optional[str] = None

        emit = self.send_custom_event
        self.mouse = MouseLinearityAnalyzer(emit, clock)
        self.scroll = ScrollCadenceAnalyzer(emit, clock)
        self.forms = FormTimingAnalyzer(emit, clock, page_loaded_at=self.batcher.started_at)

    def start(self, url: Optional[str] = None, referrer: Optional[str] = None) -> str:
        """Fingerprint the environment and, unless consent is pending, begin tracking."""
        self.fingerprint = generate_fingerprint(self.environment)
        self.batcher.fingerprint = self.fingerprint
        self.enabled = not self.config.consent_required
        if not self.enabled:
            logger.info("Collector waiting for consent; tracking disabled")
            return self.fingerprint

        self.send_custom_event(EventType.PAGE_LOAD.value, {"url": url, "referrer": referrer})
        self.send_custom_event(EventType.FINGERPRINT.value, {"fingerprint": self.fingerprint})
        return self.fingerprint

    def enable(self) -> None:
        self.enabled = True
        logger.info("Collector enabled")

    def disable(self) -> None:
        self.enabled = False
        logger.info("Collector disabled")

    def send_custom_event(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
        if not self.enabled:
            return
        self.batcher.push(event_type, payload)

    # --- host notifications ---

    def on_mouse_move(self, x: float, y: float) -> None:
        if self.enabled:
            self.mouse.on_move(x, y)

    def on_scroll(self) -> None:
        if self.enabled:
            self.scroll.on_scroll()

    def on_form_input(self, form: Hashable) -> None:
        if self.enabled:
            self.forms.on_input(form)

    def on_form_submit(self, form: Hashable, action: Optional[str] = None) -> None:
        if self.enabled:
            self.forms.on_submit(form, action=action)

    def on_form_removed(self, form: Hashable) -> None:
        self.forms.forget(form)

    def on_page_hide(self) -> Optional[Batch]:
        return self.batcher.flush()

    def flush(self) -> Optional[Batch]:
        return self.batcher.flush()

    def compute_risk_score(self) -> int:
        score = compute_risk_score(self.mouse, self.scroll)
        logger.debug("Current risk score: %d", score)
        return score

    def shutdown(self) -> Optional[Batch]:
        """End of document lifetime: final flush, then drop per-form state."""
        batch = self.batcher.shutdown()
        self.forms.clear()
        self.enabled = False
        return batch
