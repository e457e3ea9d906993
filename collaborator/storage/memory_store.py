"""In-process conversation store.

Used as the fallback when the SQLite database cannot be opened, and in
tests.  Nothing survives a restart.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Sequence
from datetime import UTC, datetime

from collaborator.models import MessageRecord, format_timestamp
from collaborator.storage.base import DEFAULT_MAX_RESULTS, FEEDBACK_REACTIONS, Storage

logger = logging.getLogger(__name__)


class InMemoryStorage(Storage):
    name = "memory"

    def __init__(self) -> None:
        self._conversations: dict[str, list[MessageRecord]] = defaultdict(list)
        self._feedback: list[dict] = []
        self._lock = threading.Lock()

    def _ordered(self, conversation_id: str) -> list[MessageRecord]:
        # sorted() is stable, so equal timestamps keep insertion order.
        with self._lock:
            records = list(self._conversations.get(conversation_id, []))
        return sorted(records, key=lambda r: r.timestamp)

    def add_messages(self, records: Sequence[MessageRecord]) -> None:
        with self._lock:
            for record in records:
                normalised = MessageRecord.from_dict(
                    {**record.to_dict(), "timestamp": format_timestamp(record.timestamp)}
                )
                self._conversations[normalised.conversation_id].append(normalised)

    def get(self, conversation_id: str) -> list[MessageRecord]:
        return self._ordered(conversation_id)

    def get_by_time_range(
        self, conversation_id: str, start: str, end: str,
    ) -> list[MessageRecord]:
        return [r for r in self._ordered(conversation_id) if start <= r.timestamp <= end]

    def get_recent(self, conversation_id: str, limit: int) -> list[MessageRecord]:
        if limit <= 0:
            return []
        return self._ordered(conversation_id)[-limit:]

    def get_filtered(
        self,
        conversation_id: str,
        keywords: Sequence[str],
        start: str,
        end: str,
        participants: Sequence[str] | None = None,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> list[MessageRecord]:
        keywords = [k.lower() for k in keywords if k]
        people = [p.lower() for p in participants or [] if p]
        if not keywords:
            return []

        matches = []
        for record in reversed(self.get_by_time_range(conversation_id, start, end)):
            content = record.content.lower()
            if not any(k in content for k in keywords):
                continue
            if people and not any(p in record.author_name.lower() for p in people):
                continue
            matches.append(record)
            if len(matches) >= max_results:
                break
        return matches

    def clear_conversation(self, conversation_id: str) -> None:
        with self._lock:
            self._conversations.pop(conversation_id, None)

    def count_messages(self, conversation_id: str) -> int:
        with self._lock:
            return len(self._conversations.get(conversation_id, []))

    def record_feedback(
        self, reply_id: str, reaction: str, payload: dict | None = None,
    ) -> bool:
        if reaction not in FEEDBACK_REACTIONS:
            logger.error("record_feedback: unsupported reaction %r for %s", reaction, reply_id)
            return False
        with self._lock:
            self._feedback.append({
                "reply_to_id": reply_id,
                "reaction": reaction,
                "feedback": payload,
                "created_at": datetime.now(UTC).isoformat(),
            })
        return True

    @property
    def feedback(self) -> list[dict]:
        with self._lock:
            return list(self._feedback)
