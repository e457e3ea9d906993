"""Storage backend selection with automatic fallback."""

from __future__ import annotations

import logging
import sqlite3

from collaborator.storage.base import Storage
from collaborator.storage.memory_store import InMemoryStorage
from collaborator.storage.sqlite_store import SQLiteStorage

logger = logging.getLogger(__name__)


def create_storage(backend: str = "sqlite", sqlite_path: str = "data/conversations.db") -> Storage:
    """Initialise the configured backend.

    SQLite is the durable default.  If it cannot be initialised (unwritable
    path, corrupt file) the in-memory store is used instead so the agent can
    still answer, just without history across restarts.
    """
    if backend != "memory":
        storage = SQLiteStorage(sqlite_path)
        try:
            storage.initialize()
            logger.info("Using SQLite storage at %s", sqlite_path)
            return storage
        except (sqlite3.Error, OSError) as exc:
            logger.warning(
                "Failed to initialise SQLite storage at %s, falling back to memory: %s",
                sqlite_path, exc,
            )

    storage = InMemoryStorage()
    storage.initialize()
    logger.info("Using in-memory storage (history is not persisted)")
    return storage
