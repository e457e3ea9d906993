"""Core data types passed between the router, capabilities and storage."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collaborator.storage.memory import ConversationMemory

DEFAULT_WINDOW = timedelta(hours=24)


# ── Timestamps ───────────────────────────────────────────────────────


def utc_now() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO 8601 string (``Z`` suffix allowed) into an aware UTC datetime.

    Naive values are assumed to already be UTC.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def format_timestamp(value: str | datetime) -> str:
    """Normalise to a fixed-width UTC ISO string so text order == time order."""
    return parse_timestamp(value).isoformat(timespec="milliseconds")


# ── Conversation records ─────────────────────────────────────────────


@dataclass(frozen=True)
class MessageRecord:
    """One line of the conversation log.  Append-only."""

    role: str
    author_name: str
    content: str
    activity_id: str
    timestamp: str
    conversation_id: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MessageRecord:
        return cls(
            role=data.get("role", ""),
            author_name=data.get("author_name", ""),
            content=data.get("content", ""),
            activity_id=data.get("activity_id", ""),
            timestamp=data["timestamp"],
            conversation_id=data.get("conversation_id", ""),
        )


@dataclass(frozen=True)
class TimeRange:
    start: datetime
    end: datetime

    @classmethod
    def last(cls, window: timedelta, now: datetime | None = None) -> TimeRange:
        end = now or utc_now()
        return cls(start=end - window, end=end)


@dataclass(frozen=True)
class UserIdentity:
    id: str
    name: str = "User"
    email: str | None = None

    @property
    def upn(self) -> str:
        """User principal name for Graph calls; falls back to the raw id."""
        return self.email or self.id


@dataclass
class RequestContext:
    """Everything a capability needs to serve one inbound message.

    Created per message and discarded once the pipeline finishes.  Only
    ``time_range`` changes mid-pipeline (time-range resolution).
    """

    text: str
    conversation_id: str
    user: UserIdentity
    memory: ConversationMemory
    time_range: TimeRange
    activity_id: str = ""
    timestamp: str = field(default_factory=lambda: format_timestamp(utc_now()))
    is_group: bool = False


def create_request_context(
    *,
    text: str,
    conversation_id: str,
    user: UserIdentity,
    memory: ConversationMemory,
    activity_id: str = "",
    is_group: bool = False,
    now: datetime | None = None,
) -> RequestContext:
    """Build a context whose default time range is the 24 hours before *now*."""
    now = now or utc_now()
    return RequestContext(
        text=text,
        conversation_id=conversation_id,
        user=user,
        memory=memory,
        time_range=TimeRange.last(DEFAULT_WINDOW, now),
        activity_id=activity_id,
        timestamp=format_timestamp(now),
        is_group=is_group,
    )


# ── Capability results ───────────────────────────────────────────────


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AUTH = "auth"
    GATEWAY = "gateway"
    NOT_FOUND = "not_found"
    PERMISSION = "permission"
    CONCURRENCY = "concurrency"


@dataclass(frozen=True)
class Result:
    """The one result shape every capability returns."""

    success: bool
    message: str
    data: dict[str, Any] | None = None
    error_kind: ErrorKind | None = None
    suggestion: str | None = None

    @classmethod
    def ok(cls, message: str, data: dict[str, Any] | None = None) -> Result:
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(
        cls,
        message: str,
        error_kind: ErrorKind,
        suggestion: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> Result:
        return cls(
            success=False,
            message=message,
            data=data,
            error_kind=error_kind,
            suggestion=suggestion,
        )

    def render(self) -> str:
        """User-facing text: the message, plus the suggestion when present."""
        if self.suggestion:
            return f"{self.message}\n\nSuggestion: {self.suggestion}"
        return self.message
