"""Exception taxonomy shared by the gateway, capabilities and router."""

from __future__ import annotations


class CollaboratorError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(CollaboratorError):
    """Raised at start-up when required settings are missing."""

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(
            "Missing required configuration: " + ", ".join(self.missing)
        )


class AuthError(CollaboratorError):
    """Raised when the identity provider rejects the app credentials."""


class GatewayError(CollaboratorError):
    """Raised when an API call hit a terminal 4xx or exhausted its retries."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class ConcurrencyError(CollaboratorError):
    """Raised when a conditional update was rejected for a stale or missing
    version token.  Callers should re-read the resource and try again.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class ValidationError(CollaboratorError):
    """Raised for malformed caller-supplied arguments, before any network call."""


class CapabilityError(CollaboratorError):
    """Wraps an exception that escaped a capability handler."""

    def __init__(self, capability: str, message: str):
        self.capability = capability
        super().__init__(f"Capability {capability!r} failed: {message}")


class RoutingError(CollaboratorError):
    """Internal routing failure (unknown capability, illegal oracle outcome).

    Never shown to the end user.
    """
