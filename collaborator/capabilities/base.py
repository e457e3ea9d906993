"""Capability descriptor and the error-to-``Result`` conversion every handler uses."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from collaborator.errors import AuthError, ConcurrencyError, GatewayError, ValidationError
from collaborator.models import ErrorKind, RequestContext, Result

logger = logging.getLogger(__name__)

Handler = Callable[[RequestContext, dict[str, Any]], Result]

# Errors a handler converts into a failed ``Result``.  Anything else escapes
# to the router and ends the pipeline with the generic apology.
HANDLED_ERRORS = (ValidationError, AuthError, ConcurrencyError, GatewayError)

_EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


@dataclass(frozen=True)
class CapabilityDescriptor:
    """A named handler plus the text the decision oracle routes on.

    ``parameters`` is the JSON schema of the arguments the oracle must
    supply when it delegates to this capability.
    """

    name: str
    routing_description: str
    handler: Handler = field(compare=False)
    parameters: dict[str, Any] = field(default_factory=lambda: dict(_EMPTY_SCHEMA), compare=False)

    def __post_init__(self):
        if not self.name or not self.name.replace("_", "").isalnum():
            raise ValueError(f"Invalid capability name: {self.name!r}")


def failure_result(exc: Exception, action: str) -> Result:
    """Map one of ``HANDLED_ERRORS`` to a user-facing failed ``Result``.

    *action* completes the sentence "Sorry, I couldn't ...".
    """
    if isinstance(exc, ValidationError):
        return Result.fail(str(exc), ErrorKind.VALIDATION)

    if isinstance(exc, AuthError):
        logger.error("Authentication failed while trying to %s: %s", action, exc)
        return Result.fail(
            f"Sorry, I couldn't {action}: I could not authenticate with Microsoft Graph.",
            ErrorKind.AUTH,
            suggestion="Check the app registration's client id, client secret and tenant id.",
        )

    if isinstance(exc, ConcurrencyError):
        return Result.fail(
            f"Sorry, I couldn't {action}: the item was changed by someone else.",
            ErrorKind.CONCURRENCY,
            suggestion="Re-read the item and try the update again.",
        )

    if isinstance(exc, GatewayError):
        if exc.status_code == 403:
            return Result.fail(
                f"Sorry, I couldn't {action}: the app is not allowed to do that.",
                ErrorKind.PERMISSION,
                suggestion=(
                    "Grant the app the required Microsoft Graph application permission "
                    "(e.g. Tasks.ReadWrite.All or Mail.Send) and admin consent."
                ),
            )
        if exc.status_code == 404:
            return Result.fail(
                f"Sorry, I couldn't {action}: it was not found.",
                ErrorKind.NOT_FOUND,
                suggestion="Check the id and try again.",
            )
        return Result.fail(
            f"Sorry, I couldn't {action} right now.",
            ErrorKind.GATEWAY,
            suggestion="Please try again in a moment.",
        )

    raise TypeError(f"Unhandled error type: {type(exc).__name__}")


# RFC 5322-ish pattern, covers the vast majority of real-world addresses.
_EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)


def validate_emails(addresses: Any, arg_name: str = "recipients") -> list[str]:
    """Return the stripped addresses or raise ``ValidationError`` naming the bad ones."""
    if isinstance(addresses, str):
        addresses = [addresses]
    if not isinstance(addresses, list):
        raise ValidationError(f"'{arg_name}' must be a list of e-mail addresses.")
    cleaned = [str(a).strip() for a in addresses if str(a).strip()]
    invalid = [a for a in cleaned if not _EMAIL_RE.match(a)]
    if invalid:
        raise ValidationError(
            f"These don't look like valid e-mail addresses: {', '.join(invalid)}. "
            "Please double-check and send a corrected address."
        )
    return cleaned
