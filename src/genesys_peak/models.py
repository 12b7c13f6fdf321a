"""Typed records for analytics responses, intervals and peak results."""

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

# Raw analytics records vary by API variant; keep unknown fields and accept
# both camelCase (wire) and snake_case (Python) names.
_RECORD_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


def parse_timestamp(ts: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime, or None."""
    if not ts:
        return None
    try:
        dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except (ValueError, TypeError, AttributeError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Format an aware datetime as an ISO-8601 UTC string with a Z suffix."""
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# Raw conversation records
# =============================================================================


def _valid_items(model: type[BaseModel], value: Any, label: str) -> list:
    """Validate list entries one by one, dropping the ones that fail.

    A null or non-list value reads as an empty list.
    """
    if value is None:
        return []
    if not isinstance(value, list):
        logger.warning("Ignoring non-list %s field of type %s", label, type(value).__name__)
        return []

    items = []
    for item in value:
        if isinstance(item, model):
            items.append(item)
            continue
        try:
            items.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning("Skipping malformed %s: %s", label, e.errors()[0].get("msg"))
    return items


class Segment(BaseModel):
    model_config = _RECORD_CONFIG

    segment_start: Optional[str] = None
    segment_end: Optional[str] = None
    segment_type: Optional[str] = None


class Session(BaseModel):
    model_config = _RECORD_CONFIG

    session_id: Optional[str] = None
    media_type: Optional[str] = None
    direction: Optional[str] = None
    ani: Optional[str] = None
    dnis: Optional[str] = None
    session_dnis: Optional[str] = None
    segments: list[Segment] = Field(default_factory=list)

    @field_validator("segments", mode="before")
    @classmethod
    def _drop_bad_segments(cls, value: Any) -> list:
        return _valid_items(Segment, value, "segment")


class Participant(BaseModel):
    model_config = _RECORD_CONFIG

    participant_id: Optional[str] = None
    participant_name: Optional[str] = None
    purpose: Optional[str] = None
    participant_type: Optional[str] = None
    sessions: list[Session] = Field(default_factory=list)

    @field_validator("sessions", mode="before")
    @classmethod
    def _drop_bad_sessions(cls, value: Any) -> list:
        return _valid_items(Session, value, "session")


class Conversation(BaseModel):
    """One conversation detail record as returned by the analytics API.

    Malformed participants, sessions and segments are dropped individually;
    only a record without a usable conversation id fails validation.
    """

    model_config = _RECORD_CONFIG

    conversation_id: str
    conversation_start: Optional[str] = None
    conversation_end: Optional[str] = None
    division_ids: list[str] = Field(default_factory=list)
    participants: list[Participant] = Field(default_factory=list)

    @field_validator("division_ids", mode="before")
    @classmethod
    def _null_divisions(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("participants", mode="before")
    @classmethod
    def _drop_bad_participants(cls, value: Any) -> list:
        return _valid_items(Participant, value, "participant")


# =============================================================================
# Pipeline values
# =============================================================================


class Interval(BaseModel):
    """Active time span of one externally-facing call leg."""

    conversation_id: str
    participant_id: str
    session_id: str
    start: datetime
    end: datetime
    ani: Optional[str] = None
    dnis: Optional[str] = None
    division_ids: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_order(self) -> "Interval":
        if self.end <= self.start:
            raise ValueError("interval end must be after start")
        return self

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.conversation_id, self.participant_id, self.session_id)


class JobChunk(BaseModel):
    """Bounded sub-interval of the analysis window, driving one analytics job."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @property
    def interval(self) -> str:
        """ISO interval string ``start/end`` used in query bodies."""
        return f"{format_timestamp(self.start)}/{format_timestamp(self.end)}"

    @property
    def days(self) -> float:
        return (self.end - self.start) / timedelta(days=1)


class JobState(str, Enum):
    """Normalized analytics job state."""

    PENDING = "pending"
    FULFILLED = "fulfilled"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @classmethod
    def normalize(cls, raw: Optional[str]) -> "JobState":
        """Map a vendor state string onto the enum; unknown states are still pending."""
        value = (raw or "").strip().lower()
        if value in ("fulfilled", "completed"):
            return cls.FULFILLED
        if value == "failed":
            return cls.FAILED
        if value in ("canceled", "cancelled"):
            return cls.CANCELLED
        if value == "expired":
            return cls.EXPIRED
        return cls.PENDING

    @property
    def is_terminal(self) -> bool:
        return self is not JobState.PENDING

    @property
    def is_failure(self) -> bool:
        return self in (JobState.FAILED, JobState.CANCELLED, JobState.EXPIRED)


class PeakResult(BaseModel):
    """Peak concurrency over a window, with the per-minute running count."""

    peak_concurrent: int = Field(default=0, ge=0)
    peak_minute: Optional[datetime] = None
    peak_minutes: list[datetime] = Field(default_factory=list)
    window_start: datetime
    window_end: datetime
    interval_count: int = 0
    series: list[tuple[datetime, int]] = Field(default_factory=list)
