"""Shared test fixtures for the Collaborator test suite."""

from __future__ import annotations

import os
from datetime import UTC, datetime
from unittest.mock import MagicMock

import httpx
import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py resolves test values on load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("AAD_APP_CLIENT_ID", "test-client-id")
    os.environ.setdefault("AAD_APP_CLIENT_SECRET", "test-client-secret")
    os.environ.setdefault("AAD_APP_TENANT_ID", "test-tenant")
    os.environ.setdefault("STORAGE_BACKEND", "memory")
    os.environ["METRICS_ENABLED"] = "false"


# Wednesday 14 October 2026, 15:30 UTC
NOW = datetime(2026, 10, 14, 15, 30, tzinfo=UTC)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_response():
    """Factory fixture for real ``httpx.Response`` objects."""

    def _make(status_code: int = 200, data: dict | None = None, *, text: str | None = None):
        if data is not None:
            return httpx.Response(status_code, json=data)
        return httpx.Response(status_code, text=text or "")

    return _make


@pytest.fixture
def credentials():
    """Stand-in for ``CredentialCache`` that always hands out the same token."""
    from collaborator.services.auth import Token

    cache = MagicMock()
    cache.get_token.return_value = Token(value="test-token", expires_at=4_102_444_800.0)
    return cache


@pytest.fixture
def sleeps():
    """Records backoff delays instead of sleeping."""
    return []


@pytest.fixture
def graph_client(credentials, sleeps):
    from collaborator.services.graph_client import GraphClient

    client = GraphClient(credentials, sleep=sleeps.append)
    yield client
    client.close()


@pytest.fixture
def storage():
    from collaborator.storage.memory_store import InMemoryStorage

    store = InMemoryStorage()
    store.initialize()
    return store


@pytest.fixture
def memory(storage):
    from collaborator.storage.memory import ConversationMemory

    return ConversationMemory(storage, "conv-1")


@pytest.fixture
def make_record():
    """Factory for ``MessageRecord`` with sensible defaults."""
    from collaborator.models import MessageRecord

    counter = iter(range(1, 10_000))

    def _make(
        content: str,
        timestamp: str,
        author: str = "Alice",
        role: str = "user",
        conversation_id: str = "conv-1",
    ):
        return MessageRecord(
            role=role,
            author_name=author,
            content=content,
            activity_id=f"act-{next(counter)}",
            timestamp=timestamp,
            conversation_id=conversation_id,
        )

    return _make


@pytest.fixture
def make_context(memory, now):
    """Factory for a ``RequestContext`` whose default window ends at ``NOW``."""
    from collaborator.models import UserIdentity, create_request_context

    def _make(text: str = "hello", **overrides):
        return create_request_context(
            text=text,
            conversation_id=overrides.pop("conversation_id", "conv-1"),
            user=overrides.pop(
                "user", UserIdentity(id="u-1", name="Alice", email="alice@contoso.com"),
            ),
            memory=overrides.pop("memory", memory),
            activity_id=overrides.pop("activity_id", "act-in"),
            now=overrides.pop("now", now),
            **overrides,
        )

    return _make
