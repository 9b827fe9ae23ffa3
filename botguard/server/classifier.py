"""Suspicion classifier over one batch of telemetry events.

A batch is suspicious iff at least one of its events matches at least one
rule. Rules are independent predicates, so new heuristics plug in without
touching the blacklist or enforcement code.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Protocol, Sequence

from botguard.config import LINEARITY_SUSPICIOUS_THRESHOLD
from botguard.models import EventType, TelemetryEvent


class SuspicionRule(Protocol):
    name: str

    def matches(self, event: TelemetryEvent) -> bool: ...


@dataclass(frozen=True)
class EventTypeRule:
    """Any event of the given type is evidence on its own."""

    event_type: str
    name: str = ""

    def __post_init__(self):
        if not self.name:
            object.__setattr__(self, "name", self.event_type)

    def matches(self, event: TelemetryEvent) -> bool:
        return event.type == self.event_type


@dataclass(frozen=True)
class MouseLinearityRule:
    """``mouse_summary`` whose linearity is strictly above the threshold."""

    threshold: float = LINEARITY_SUSPICIOUS_THRESHOLD
    name: str = "mouse_linearity"

    def matches(self, event: TelemetryEvent) -> bool:
        if event.type != EventType.MOUSE_SUMMARY.value:
            return False
        value = event.payload.get("linearity", event.payload.get("linearityScore"))
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        return value > self.threshold


def default_rules() -> List[SuspicionRule]:
    return [
        EventTypeRule(EventType.FAST_FORM_SUBMIT_FLAG.value),
        EventTypeRule(EventType.FAST_SCROLL.value),
        MouseLinearityRule(),
    ]


@dataclass
class Verdict:
    suspicious: bool
    matched: List[str] = field(default_factory=list)


class SuspicionClassifier:
    def __init__(self, rules: Optional[Iterable[SuspicionRule]] = None):
        self.rules: List[SuspicionRule] = list(rules) if rules is not None else default_rules()

    def add_rule(self, rule: SuspicionRule) -> None:
        self.rules.append(rule)

    def classify(self, events: Sequence[TelemetryEvent]) -> Verdict:
        matched = []
        for event in events:
            for rule in self.rules:
                if rule.matches(event) and rule.name not in matched:
                    matched.append(rule.name)
        return Verdict(suspicious=bool(matched), matched=matched)

    def is_suspicious(self, events: Sequence[TelemetryEvent]) -> bool:
        return any(rule.matches(event) for event in events for rule in self.rules)
