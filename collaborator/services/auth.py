"""Bearer-token acquisition and caching for the Graph API.

``ClientCredentialsProvider`` performs the OAuth2 client-credentials grant through
MSAL; ``CredentialCache`` sits in front of it and hands out the cached token
until it comes within ``SAFETY_MARGIN_SECONDS`` of expiry.

Token values never leave this module except as the opaque string that goes
into the ``Authorization`` header, and they are never logged.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

import msal

from collaborator.errors import AuthError
from collaborator.services.metrics import metrics

logger = logging.getLogger(__name__)

SAFETY_MARGIN_SECONDS = 5 * 60
TOKEN_REQUEST_TIMEOUT_SECONDS = 15


@dataclass(frozen=True)
class Token:
    value: str = field(repr=False)
    expires_at: float  # epoch seconds, as reported by the provider


class IdentityProvider(Protocol):
    def acquire(self, scopes: Sequence[str]) -> Token: ...


class ClientCredentialsProvider:
    """Client-credentials grant against an Entra ID (Azure AD) tenant.

    The MSAL application is built on first use: building it runs authority
    discovery over the network, and that failure should surface as an
    ``AuthError`` from ``acquire`` rather than at wiring time.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        tenant_id: str,
        *,
        authority_host: str = "https://login.microsoftonline.com",
        app: msal.ConfidentialClientApplication | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._client_id = client_id
        self._client_secret = client_secret
        self._authority = f"{authority_host.rstrip('/')}/{tenant_id}"
        self._app = app
        self._clock = clock

    def _application(self) -> msal.ConfidentialClientApplication:
        if self._app is None:
            self._app = msal.ConfidentialClientApplication(
                self._client_id,
                client_credential=self._client_secret,
                authority=self._authority,
                timeout=TOKEN_REQUEST_TIMEOUT_SECONDS,
            )
        return self._app

    def acquire(self, scopes: Sequence[str]) -> Token:
        t0 = time.perf_counter()
        try:
            result = self._application().acquire_token_for_client(scopes=list(scopes))
        except (ValueError, OSError) as exc:
            # OSError covers the transport errors MSAL lets through.
            metrics.record_failure("identity", "token", error_type=type(exc).__name__)
            raise AuthError(f"Token endpoint unreachable: {exc}") from exc

        elapsed = (time.perf_counter() - t0) * 1000
        if "error" in result:
            metrics.record_failure(
                "identity", "token", error_type=str(result["error"]), latency_ms=elapsed,
            )
            raise AuthError(_describe_token_error(result))

        if "access_token" not in result:
            metrics.record_failure("identity", "token", error_type="malformed", latency_ms=elapsed)
            raise AuthError("Token endpoint returned no access_token")

        metrics.record_success("identity", "token", latency_ms=elapsed)
        expires_in = float(result.get("expires_in", 3600))
        return Token(value=result["access_token"], expires_at=self._clock() + expires_in)


def _describe_token_error(result: dict) -> str:
    """Build an error message from MSAL's error result (never the secret)."""
    code = result.get("error") or "unknown_error"
    description = (result.get("error_description") or "").splitlines()[0:1]
    detail = f"{code}: {description[0]}" if description else code
    return f"Identity provider rejected the credentials: {detail}"


class CredentialCache:
    """Process-wide token cache with a single-flight refresh.

    Concurrent callers arriving while the cache is cold or expired wait on
    one lock; only the first performs an acquisition, the rest reuse it.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        *,
        safety_margin: float = SAFETY_MARGIN_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._provider = provider
        self._safety_margin = safety_margin
        self._clock = clock
        self._token: Token | None = None
        self._lock = threading.Lock()

    def _is_fresh(self, token: Token | None) -> bool:
        return token is not None and self._clock() < token.expires_at - self._safety_margin

    def get_token(self, scopes: Sequence[str]) -> Token:
        """Return a token that is valid for at least the safety margin.

        Raises:
            AuthError: the identity provider rejected the credentials.
        """
        token = self._token
        if self._is_fresh(token):
            return token

        with self._lock:
            token = self._token
            if self._is_fresh(token):
                return token
            try:
                token = self._provider.acquire(scopes)
            except AuthError as exc:
                logger.error("Failed to acquire access token: %s", exc)
                raise
            self._token = token
            logger.info(
                "Acquired access token (valid for %ds)",
                int(token.expires_at - self._clock()),
            )
            return token

    def invalidate(self) -> None:
        """Forget the cached token so the next call re-acquires."""
        with self._lock:
            self._token = None
