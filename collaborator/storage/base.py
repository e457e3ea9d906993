"""Persistence contract for the conversation log and reply feedback."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from collaborator.models import MessageRecord

DEFAULT_MAX_RESULTS = 5
FEEDBACK_REACTIONS = ("like", "dislike")


class Storage(ABC):
    """Backend behind ``ConversationMemory``.

    Every read returns records ordered by timestamp ascending, except
    ``get_filtered`` which returns newest first.  Time bounds are inclusive
    and passed as normalised ISO strings (see ``models.format_timestamp``).
    """

    name: str = "storage"

    def initialize(self) -> None:  # noqa: B027
        """Prepare the backend.  Raise if it cannot be used."""

    def close(self) -> None:  # noqa: B027
        """Release resources."""

    @abstractmethod
    def add_messages(self, records: Sequence[MessageRecord]) -> None: ...

    @abstractmethod
    def get(self, conversation_id: str) -> list[MessageRecord]: ...

    @abstractmethod
    def get_by_time_range(
        self, conversation_id: str, start: str, end: str,
    ) -> list[MessageRecord]: ...

    @abstractmethod
    def get_recent(self, conversation_id: str, limit: int) -> list[MessageRecord]: ...

    @abstractmethod
    def get_filtered(
        self,
        conversation_id: str,
        keywords: Sequence[str],
        start: str,
        end: str,
        participants: Sequence[str] | None = None,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> list[MessageRecord]: ...

    @abstractmethod
    def clear_conversation(self, conversation_id: str) -> None: ...

    @abstractmethod
    def count_messages(self, conversation_id: str) -> int: ...

    @abstractmethod
    def record_feedback(
        self, reply_id: str, reaction: str, payload: dict | None = None,
    ) -> bool: ...
