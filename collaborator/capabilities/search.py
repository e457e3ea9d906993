"""Keyword / participant search over conversation memory."""

from __future__ import annotations

import logging
from typing import Any

from collaborator.capabilities.base import HANDLED_ERRORS, CapabilityDescriptor, failure_result
from collaborator.errors import ValidationError
from collaborator.models import RequestContext, Result, parse_timestamp
from collaborator.storage.base import DEFAULT_MAX_RESULTS

logger = logging.getLogger(__name__)

NAME = "search"
MAX_RESULTS_LIMIT = 20
SNIPPET_CHARS = 200

ROUTING_DESCRIPTION = (
    "**search**: find specific past messages by keyword and/or author "
    "(\"find where Alice mentioned the budget\", \"who talked about the release "
    "last week?\"). Returns the matching messages, newest first."
)

PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "keywords": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Words to look for; a message matches if it contains ANY of them.",
        },
        "participants": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Optional author names; a message matches if ANY of them wrote it.",
        },
        "max_results": {
            "type": "integer",
            "description": f"Maximum number of messages to return (default {DEFAULT_MAX_RESULTS}).",
        },
    },
    "required": ["keywords"],
}


def _string_list(value: Any, field: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"'{field}' must be a list of strings.")
    return [v.strip() for v in value if v.strip()]


def _max_results(value: Any) -> int:
    if value is None:
        return DEFAULT_MAX_RESULTS
    try:
        count = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("'max_results' must be a whole number.") from exc
    if count < 1:
        raise ValidationError("'max_results' must be at least 1.")
    return min(count, MAX_RESULTS_LIMIT)


def _snippet(text: str) -> str:
    text = " ".join(text.split())
    return text if len(text) <= SNIPPET_CHARS else text[: SNIPPET_CHARS - 1] + "…"


def search_messages(context: RequestContext, args: dict[str, Any]) -> Result:
    try:
        keywords = _string_list(args.get("keywords"), "keywords")
        if not keywords:
            raise ValidationError("Tell me at least one keyword to search for.")
        participants = _string_list(args.get("participants"), "participants")
        limit = _max_results(args.get("max_results"))
    except HANDLED_ERRORS as exc:
        return failure_result(exc, "search the conversation")

    window = context.time_range
    records = context.memory.filtered(
        keywords, window.start, window.end, participants or None, limit,
    )
    logger.debug(
        "Search %r (participants=%r) in %s found %d message(s)",
        keywords, participants, context.conversation_id, len(records),
    )

    terms = ", ".join(f'"{k}"' for k in keywords)
    if not records:
        who = f" from {', '.join(participants)}" if participants else ""
        return Result.ok(
            f"No messages{who} mentioning {terms} were found in that period.",
            data={"matches": []},
        )

    lines = [f"Found {len(records)} message(s) mentioning {terms}:\n"]
    for record in records:
        when = parse_timestamp(record.timestamp).strftime("%a %d %b %Y at %H:%M")
        lines.append(f"  • {when}, {record.author_name}: {_snippet(record.content)}")

    return Result.ok(
        "\n".join(lines),
        data={
            "matches": [
                {
                    "activity_id": r.activity_id,
                    "author_name": r.author_name,
                    "timestamp": r.timestamp,
                    "content": r.content,
                }
                for r in records
            ],
        },
    )


def create_search() -> CapabilityDescriptor:
    return CapabilityDescriptor(
        name=NAME,
        routing_description=ROUTING_DESCRIPTION,
        handler=search_messages,
        parameters=PARAMETERS,
    )
