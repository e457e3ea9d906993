"""Send e-mail from the bot's mailbox via Graph ``sendMail``."""

from __future__ import annotations

import logging
from typing import Any

from collaborator.capabilities.base import (
    HANDLED_ERRORS,
    CapabilityDescriptor,
    failure_result,
    validate_emails,
)
from collaborator.errors import ValidationError
from collaborator.models import RequestContext, Result, utc_now
from collaborator.services.graph_client import GraphClient

logger = logging.getLogger(__name__)

NAME = "email_sender"

ROUTING_DESCRIPTION = (
    "**email_sender**: send an e-mail to explicit addresses (\"email the notes "
    "to bob@contoso.com\"). Requires recipients, a subject and a body."
)

PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "recipients": {
            "type": "array",
            "items": {"type": "string"},
            "description": "E-mail addresses to send to.",
        },
        "cc_recipients": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Optional CC addresses.",
        },
        "subject": {"type": "string"},
        "body": {"type": "string"},
        "is_html": {"type": "boolean", "description": "Whether the body is HTML."},
    },
    "required": ["recipients", "subject", "body"],
}


def build_message(
    recipients: list[str],
    subject: str,
    body: str,
    cc: list[str] | None = None,
    is_html: bool = False,
) -> dict[str, Any]:
    """Graph ``message`` resource for ``sendMail``."""
    message: dict[str, Any] = {
        "subject": subject,
        "body": {"contentType": "HTML" if is_html else "Text", "content": body},
        "toRecipients": [{"emailAddress": {"address": a}} for a in recipients],
    }
    if cc:
        message["ccRecipients"] = [{"emailAddress": {"address": a}} for a in cc]
    return message


class EmailCapability:
    def __init__(self, graph: GraphClient, sender: str):
        self._graph = graph
        self._sender = sender

    def handle(self, context: RequestContext, args: dict[str, Any]) -> Result:
        try:
            recipients = validate_emails(args.get("recipients") or [], "recipients")
            if not recipients:
                raise ValidationError("No recipients specified. Please give at least one e-mail address.")
            cc = validate_emails(args.get("cc_recipients") or [], "cc_recipients")
            subject = str(args.get("subject") or "").strip()
            body = str(args.get("body") or "").strip()
            if not subject or not body:
                raise ValidationError("An e-mail needs both a subject and a body.")

            message = build_message(recipients, subject, body, cc, bool(args.get("is_html")))
            self._graph.send_mail(message, self._sender)
        except HANDLED_ERRORS as exc:
            logger.warning("Sending e-mail failed: %s", exc)
            return failure_result(exc, "send the e-mail")

        return Result.ok(
            f"E-mail sent from {self._sender} to: {', '.join(recipients)}",
            data={
                "sent_from": self._sender,
                "recipients": recipients,
                "cc": cc,
                "sent_at": utc_now().isoformat(),
            },
        )


def create_email_sender(graph: GraphClient, sender: str) -> CapabilityDescriptor:
    return CapabilityDescriptor(
        name=NAME,
        routing_description=ROUTING_DESCRIPTION,
        handler=EmailCapability(graph, sender).handle,
        parameters=PARAMETERS,
    )
