"""Data model shared by the collector and the server."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator


class EventType(str, Enum):
    """Telemetry event types emitted by the built-in extractors.

    Custom event types are plain strings and are accepted everywhere a
    TelemetryEvent is.
    """

    PAGE_LOAD = "page_load"
    FINGERPRINT = "fingerprint"
    MOUSE_SUMMARY = "mouse_summary"
    FAST_SCROLL = "fast_scroll"
    FORM_SUBMIT = "form_submit"
    FAST_FORM_SUBMIT_FLAG = "fast_form_submit_flag"


class TelemetryEvent(BaseModel):
    """One observed interaction signal. Immutable once created."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: str = Field(..., validation_alias=AliasChoices("type", "t"), min_length=1)
    timestamp: int = Field(default=0, validation_alias=AliasChoices("timestamp", "ts"),
                           description="Milliseconds since epoch")
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value):
        if isinstance(value, EventType):
            return value.value
        return value

    @field_validator("timestamp", mode="before")
    @classmethod
    def _lenient_timestamp(cls, value):
        # An unusable reading becomes 0 instead of rejecting the event
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0
        try:
            return int(value)
        except (OverflowError, ValueError):
            return 0

    @field_validator("payload", mode="before")
    @classmethod
    def _default_payload(cls, value):
        return value if isinstance(value, dict) else {}


class Batch(BaseModel):
    """A bundle of events flushed together by the collector."""

    model_config = ConfigDict(populate_by_name=True)

    site_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("siteId", "site_id"),
                                   serialization_alias="siteId")
    fingerprint: Optional[str] = None
    created_at: int = Field(..., validation_alias=AliasChoices("createdAt", "created_at", "ts"),
                            serialization_alias="createdAt")
    session_duration_ms: int = Field(default=0,
                                     validation_alias=AliasChoices("sessionDurationMs", "session_duration_ms"),
                                     serialization_alias="sessionDurationMs")
    user_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("userId", "user_id", "userid"),
                                   serialization_alias="userId")
    step: Optional[str] = None
    events: List[TelemetryEvent] = Field(default_factory=list)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class IdentityKey(NamedTuple):
    """(network address, user-agent) pair used to correlate and block an actor."""

    ip: str
    user_agent: str


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BlacklistEntry(BaseModel):
    """A stored block on one identity key."""

    model_config = ConfigDict(populate_by_name=True)

    ip: str = Field(..., min_length=1)
    user_agent: str = Field(..., validation_alias=AliasChoices("userAgent", "user_agent"),
                            serialization_alias="userAgent")
    added_at: datetime = Field(default_factory=utcnow,
                               validation_alias=AliasChoices("addedAt", "added_at", "timestamp"),
                               serialization_alias="addedAt")
    fingerprint: Optional[str] = None
    reason: Optional[str] = None

    @property
    def identity(self) -> IdentityKey:
        return IdentityKey(self.ip, self.user_agent)

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def parse_events(raw: Any) -> List[TelemetryEvent]:
    """Build events from an untrusted JSON value, skipping anything malformed.

    An item is malformed when it is not an object or carries no usable type.
    A missing or fractional timestamp is tolerated. Order of the surviving
    events is preserved.
    """
    if not isinstance(raw, list):
        return []
    events = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            events.append(TelemetryEvent.model_validate(item))
        except ValidationError:
            continue
    return events


def extract_user_id(body: Any) -> Optional[str]:
    """Return the explicit account identifier carried by a batch body, if any."""
    if not isinstance(body, dict):
        return None
    for key in ("userId", "user_id", "userid"):
        value = body.get(key)
        if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value):
            return str(value)
    return None
