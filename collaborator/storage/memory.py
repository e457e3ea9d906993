"""Per-conversation view over a ``Storage`` backend."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from collaborator.models import MessageRecord, format_timestamp
from collaborator.storage.base import DEFAULT_MAX_RESULTS, Storage


class ConversationMemory:
    """Ordered message log for one conversation.

    Reads are timestamp-ascending, except ``filtered`` which is newest first.
    Time bounds are inclusive and may be datetimes or ISO strings.
    """

    def __init__(self, storage: Storage, conversation_id: str):
        self._storage = storage
        self.conversation_id = conversation_id

    def append(self, records: Sequence[MessageRecord]) -> None:
        self._storage.add_messages(records)

    def all(self) -> list[MessageRecord]:
        return self._storage.get(self.conversation_id)

    def by_time_range(self, start: datetime | str, end: datetime | str) -> list[MessageRecord]:
        return self._storage.get_by_time_range(
            self.conversation_id, format_timestamp(start), format_timestamp(end),
        )

    def recent(self, limit: int) -> list[MessageRecord]:
        return self._storage.get_recent(self.conversation_id, limit)

    def filtered(
        self,
        keywords: Sequence[str],
        start: datetime | str,
        end: datetime | str,
        participants: Sequence[str] | None = None,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> list[MessageRecord]:
        """Records containing ANY keyword and, if given, authored by ANY participant."""
        return self._storage.get_filtered(
            self.conversation_id,
            keywords,
            format_timestamp(start),
            format_timestamp(end),
            participants,
            max_results,
        )

    def clear(self) -> None:
        self._storage.clear_conversation(self.conversation_id)

    def count(self) -> int:
        return self._storage.count_messages(self.conversation_id)
