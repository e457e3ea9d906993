"""Tests for the identity provider and the credential cache."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock, patch

import pytest

from collaborator.errors import AuthError
from collaborator.services.auth import (
    SAFETY_MARGIN_SECONDS,
    ClientCredentialsProvider,
    CredentialCache,
    Token,
)

SCOPES = ("https://graph.microsoft.com/.default",)


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def _provider(app, clock=None) -> ClientCredentialsProvider:
    return ClientCredentialsProvider(
        "client-id",
        "s3cret",
        "tenant-42",
        authority_host="https://login.example.com/",
        app=app,
        clock=clock or FakeClock(),
    )


# ── ClientCredentialsProvider ────────────────────────────────────────


class TestClientCredentialsProvider:
    def test_acquires_token_for_client(self):
        app = MagicMock()
        app.acquire_token_for_client.return_value = {
            "access_token": "abc", "token_type": "Bearer", "expires_in": 3599,
        }
        token = _provider(app, FakeClock(1_000.0)).acquire(SCOPES)

        assert token == Token(value="abc", expires_at=4_599.0)
        app.acquire_token_for_client.assert_called_once_with(scopes=list(SCOPES))

    def test_builds_confidential_client_on_first_use(self):
        with patch("collaborator.services.auth.msal.ConfidentialClientApplication") as app_cls:
            app_cls.return_value.acquire_token_for_client.return_value = {
                "access_token": "abc", "expires_in": 3600,
            }
            provider = _provider(None)
            app_cls.assert_not_called()

            provider.acquire(SCOPES)
            provider.acquire(SCOPES)

        app_cls.assert_called_once()
        args, kwargs = app_cls.call_args
        assert args == ("client-id",)
        assert kwargs["client_credential"] == "s3cret"
        assert kwargs["authority"] == "https://login.example.com/tenant-42"

    def test_rejected_credentials_raise_auth_error(self):
        app = MagicMock()
        app.acquire_token_for_client.return_value = {
            "error": "invalid_client",
            "error_description": "AADSTS7000215: Invalid client secret provided.\nTrace ID: x",
            "correlation_id": "c-1",
        }
        with pytest.raises(AuthError) as exc_info:
            _provider(app).acquire(SCOPES)

        message = str(exc_info.value)
        assert "invalid_client" in message
        assert "AADSTS7000215" in message
        assert "Trace ID" not in message
        assert "s3cret" not in message

    def test_error_without_description(self):
        app = MagicMock()
        app.acquire_token_for_client.return_value = {"error": "unauthorized_client"}
        with pytest.raises(AuthError, match="unauthorized_client"):
            _provider(app).acquire(SCOPES)

    def test_unreachable_endpoint_raises_auth_error(self):
        app = MagicMock()
        app.acquire_token_for_client.side_effect = ConnectionError("connection refused")
        with pytest.raises(AuthError, match="unreachable"):
            _provider(app).acquire(SCOPES)

    def test_failed_authority_discovery_raises_auth_error(self):
        with patch(
            "collaborator.services.auth.msal.ConfidentialClientApplication",
            side_effect=ValueError("Unable to get authority configuration"),
        ):
            with pytest.raises(AuthError, match="authority configuration"):
                _provider(None).acquire(SCOPES)

    def test_missing_access_token_raises_auth_error(self):
        app = MagicMock()
        app.acquire_token_for_client.return_value = {"token_type": "Bearer"}
        with pytest.raises(AuthError, match="access_token"):
            _provider(app).acquire(SCOPES)

    def test_token_repr_hides_value(self):
        assert "abc" not in repr(Token(value="abc", expires_at=1.0))


# ── CredentialCache ──────────────────────────────────────────────────


class TestCredentialCache:
    def _cache(self, clock, expires_in=3_600.0):
        provider = MagicMock()
        counter = iter(range(1, 100))
        provider.acquire.side_effect = lambda scopes: Token(
            value=f"token-{next(counter)}", expires_at=clock() + expires_in,
        )
        return CredentialCache(provider, clock=clock), provider

    def test_reuses_token_before_safety_margin(self):
        clock = FakeClock()
        cache, provider = self._cache(clock)

        first = cache.get_token(SCOPES)
        clock.now += 3_600 - SAFETY_MARGIN_SECONDS - 1
        second = cache.get_token(SCOPES)

        assert first is second
        assert provider.acquire.call_count == 1

    def test_refreshes_inside_safety_margin(self):
        clock = FakeClock()
        cache, provider = self._cache(clock)

        first = cache.get_token(SCOPES)
        clock.now += 3_600 - SAFETY_MARGIN_SECONDS
        second = cache.get_token(SCOPES)

        assert first.value == "token-1"
        assert second.value == "token-2"
        assert provider.acquire.call_count == 2

    def test_token_shorter_than_margin_is_never_reused(self):
        clock = FakeClock()
        cache, provider = self._cache(clock, expires_in=SAFETY_MARGIN_SECONDS - 10)

        cache.get_token(SCOPES)
        cache.get_token(SCOPES)

        assert provider.acquire.call_count == 2

    def test_invalidate_forces_reacquire(self):
        clock = FakeClock()
        cache, provider = self._cache(clock)

        cache.get_token(SCOPES)
        cache.invalidate()
        token = cache.get_token(SCOPES)

        assert token.value == "token-2"

    def test_auth_error_propagates_and_is_not_cached(self):
        provider = MagicMock()
        provider.acquire.side_effect = [
            AuthError("bad secret"),
            Token(value="ok", expires_at=10_000.0),
        ]
        cache = CredentialCache(provider, clock=FakeClock())

        with pytest.raises(AuthError):
            cache.get_token(SCOPES)
        assert cache.get_token(SCOPES).value == "ok"

    def test_concurrent_cold_callers_trigger_one_acquisition(self):
        clock = FakeClock()
        cache, provider = self._cache(clock)
        results = []

        def worker():
            results.append(cache.get_token(SCOPES).value)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert provider.acquire.call_count == 1
        assert results == ["token-1"] * 8
