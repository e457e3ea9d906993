"""Thread-safe in-memory LRU cache with a byte-size ceiling and per-entry TTL.

Used by ``GraphClient`` to memoise lookups that rarely change within a
session: e-mail → user-id resolution and a user's plan list.

• **OrderedDict** for O(1) LRU eviction and promotion.
• **Size tracking** via ``json.dumps`` byte length.
• **Expiry** is checked lazily on read; expired entries are dropped then.
• **Prefix invalidation** so one write can clear a family of keys.

>>> cache = LRUCache(max_bytes=1024 * 1024, default_ttl=600)
>>> cache.put("user_id:alice@contoso.com", "1f0c...")
>>> cache.get("user_id:alice@contoso.com")
'1f0c...'
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_TTL_SECONDS = 15 * 60


class LRUCache:
    """Least-Recently-Used cache bounded by total estimated byte size."""

    def __init__(
        self,
        max_bytes: int = DEFAULT_MAX_BYTES,
        default_ttl: float | None = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_bytes = max_bytes
        self._default_ttl = default_ttl
        self._clock = clock
        self._current_bytes = 0
        # key → (value, size_bytes, expires_at or None)
        self._store: OrderedDict[str, tuple[Any, int, float | None]] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def _estimate_bytes(value: Any) -> int:
        try:
            return len(json.dumps(value, default=str).encode("utf-8"))
        except (TypeError, ValueError, OverflowError):
            return len(str(value).encode("utf-8"))

    def _drop(self, key: str) -> None:
        _, size, _ = self._store.pop(key)
        self._current_bytes -= size

    # ── Core operations ──────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the cached value (promoting it to MRU) or ``None``."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, _, expires_at = entry
            if expires_at is not None and self._clock() >= expires_at:
                self._drop(key)
                logger.debug("Cache: expired %s", key)
                return None
            self._store.move_to_end(key)
            return value

    def put(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Insert or overwrite *key*.  Evicts LRU entries if needed."""
        size = self._estimate_bytes(value)
        if size > self._max_bytes:
            logger.debug("Cache: skipping key %s (size %d > max %d)", key, size, self._max_bytes)
            return

        ttl = self._default_ttl if ttl is None else ttl
        expires_at = self._clock() + ttl if ttl else None

        with self._lock:
            if key in self._store:
                self._drop(key)
            while self._current_bytes + size > self._max_bytes and self._store:
                evicted_key = next(iter(self._store))
                self._drop(evicted_key)
                logger.debug("Cache: evicted %s", evicted_key)
            self._store[key] = (value, size, expires_at)
            self._current_bytes += size

    def invalidate(self, key: str) -> bool:
        """Remove a single key.  Returns ``True`` if the key existed."""
        with self._lock:
            if key in self._store:
                self._drop(key)
                return True
            return False

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove every key that starts with *prefix*.  Returns count removed."""
        with self._lock:
            keys = [k for k in self._store if k.startswith(prefix)]
            for key in keys:
                self._drop(key)
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._current_bytes = 0

    # ── Introspection ────────────────────────────────────────────────

    @property
    def current_bytes(self) -> int:
        return self._current_bytes

    @property
    def entry_count(self) -> int:
        return len(self._store)

    def has(self, key: str) -> bool:
        """Check presence *without* promoting or expiring the entry."""
        return key in self._store
