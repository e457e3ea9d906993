"""Durable conversation store on SQLite.

One short-lived connection per operation, so the store is safe to share
between the FastAPI worker threads.  Timestamps are stored normalised
(UTC, millisecond precision) which makes text comparison chronological.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

from collaborator.models import MessageRecord, format_timestamp
from collaborator.storage.base import DEFAULT_MAX_RESULTS, Storage

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id TEXT NOT NULL,
    role            TEXT NOT NULL,
    name            TEXT NOT NULL,
    content         TEXT NOT NULL,
    activity_id     TEXT NOT NULL,
    timestamp       TEXT NOT NULL,
    blob            TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_conversation_ts
    ON conversations(conversation_id, timestamp);
CREATE TABLE IF NOT EXISTS feedback (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    reply_to_id TEXT NOT NULL,
    reaction    TEXT NOT NULL CHECK (reaction IN ('like', 'dislike')),
    feedback    TEXT,
    created_at  TEXT NOT NULL
);
"""


class SQLiteStorage(Storage):
    name = "sqlite"

    def __init__(self, db_path: str | Path):
        self._db_path = Path(db_path)
        self._write_lock = threading.Lock()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _select(self, sql: str, params: Sequence) -> list[MessageRecord]:
        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [MessageRecord.from_dict(json.loads(row["blob"])) for row in rows]

    def initialize(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.executescript(_SCHEMA)
            conn.commit()
        finally:
            conn.close()
        logger.debug("SQLite storage ready at %s", self._db_path)

    # ── Messages ─────────────────────────────────────────────────────

    def add_messages(self, records: Sequence[MessageRecord]) -> None:
        rows = []
        for record in records:
            normalised = MessageRecord.from_dict(
                {**record.to_dict(), "timestamp": format_timestamp(record.timestamp)}
            )
            rows.append((
                normalised.conversation_id,
                normalised.role,
                normalised.author_name,
                normalised.content,
                normalised.activity_id,
                normalised.timestamp,
                json.dumps(normalised.to_dict()),
            ))

        with self._write_lock:
            conn = self._connect()
            try:
                conn.executemany(
                    "INSERT INTO conversations "
                    "(conversation_id, role, name, content, activity_id, timestamp, blob) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    rows,
                )
                conn.commit()
            finally:
                conn.close()

    def get(self, conversation_id: str) -> list[MessageRecord]:
        return self._select(
            "SELECT blob FROM conversations WHERE conversation_id = ? "
            "ORDER BY timestamp ASC, id ASC",
            (conversation_id,),
        )

    def get_by_time_range(
        self, conversation_id: str, start: str, end: str,
    ) -> list[MessageRecord]:
        return self._select(
            "SELECT blob FROM conversations "
            "WHERE conversation_id = ? AND timestamp >= ? AND timestamp <= ? "
            "ORDER BY timestamp ASC, id ASC",
            (conversation_id, start, end),
        )

    def get_recent(self, conversation_id: str, limit: int) -> list[MessageRecord]:
        if limit <= 0:
            return []
        newest_first = self._select(
            "SELECT blob FROM conversations WHERE conversation_id = ? "
            "ORDER BY timestamp DESC, id DESC LIMIT ?",
            (conversation_id, limit),
        )
        return list(reversed(newest_first))

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
        if not keywords:
            return []

        # instr() on lower() instead of LIKE: no wildcard escaping needed.
        where = [
            "conversation_id = ?",
            "timestamp >= ?",
            "timestamp <= ?",
            "(" + " OR ".join("instr(lower(content), ?) > 0" for _ in keywords) + ")",
        ]
        params: list = [conversation_id, start, end, *keywords]

        people = [p.lower() for p in participants or [] if p]
        if people:
            where.append("(" + " OR ".join("instr(lower(name), ?) > 0" for _ in people) + ")")
            params.extend(people)

        params.append(max_results)
        return self._select(
            "SELECT blob FROM conversations WHERE " + " AND ".join(where)
            + " ORDER BY timestamp DESC, id DESC LIMIT ?",
            params,
        )

    def clear_conversation(self, conversation_id: str) -> None:
        with self._write_lock:
            conn = self._connect()
            try:
                conn.execute(
                    "DELETE FROM conversations WHERE conversation_id = ?", (conversation_id,),
                )
                conn.commit()
            finally:
                conn.close()

    def count_messages(self, conversation_id: str) -> int:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM conversations WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
        finally:
            conn.close()
        return int(row["n"])

    # ── Feedback ─────────────────────────────────────────────────────

    def record_feedback(
        self, reply_id: str, reaction: str, payload: dict | None = None,
    ) -> bool:
        with self._write_lock:
            conn = self._connect()
            try:
                conn.execute(
                    "INSERT INTO feedback (reply_to_id, reaction, feedback, created_at) "
                    "VALUES (?, ?, ?, ?)",
                    (
                        reply_id,
                        reaction,
                        json.dumps(payload) if payload else None,
                        datetime.now(UTC).isoformat(),
                    ),
                )
                conn.commit()
                return True
            except sqlite3.Error as exc:
                logger.error("record_feedback failed for %s: %s", reply_id, exc)
                return False
            finally:
                conn.close()
