"""Summarise the conversation inside the request's time range."""

from __future__ import annotations

import logging
import time
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from collaborator.capabilities.base import CapabilityDescriptor
from collaborator.llm import content_text
from collaborator.models import MessageRecord, RequestContext, Result, parse_timestamp
from collaborator.services.metrics import metrics

logger = logging.getLogger(__name__)

NAME = "summarizer"

# Keep the newest part of very long transcripts.
MAX_TRANSCRIPT_CHARS = 60_000

ROUTING_DESCRIPTION = (
    "**summarizer**: summaries, recaps, overviews or \"what happened\" questions "
    "about this conversation, optionally over a period (\"summarize last week\", "
    "\"what did we discuss yesterday?\"). Not for creating tasks or finding one "
    "specific message."
)

PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "focus": {
            "type": "string",
            "description": "Optional topic or person the summary should focus on.",
        },
    },
}

SUMMARY_PROMPT = (
    "You summarise a team chat transcript.\n"
    "- Start with a one-sentence overview, then key points as bullets.\n"
    "- Mention decisions and open questions explicitly, with who raised them.\n"
    "- Only use information present in the transcript.\n"
    "- Be concise: at most ~200 words."
)


def _format_dt(iso_str: str) -> str:
    return parse_timestamp(iso_str).strftime("%a %d %b %H:%M")


def format_transcript(records: list[MessageRecord]) -> str:
    lines = [f"[{_format_dt(r.timestamp)}] {r.author_name}: {r.content}" for r in records]
    transcript = "\n".join(lines)
    if len(transcript) > MAX_TRANSCRIPT_CHARS:
        transcript = transcript[-MAX_TRANSCRIPT_CHARS:]
    return transcript


def create_summarizer(llm: BaseChatModel) -> CapabilityDescriptor:
    """Build the summarizer capability around a (fast) chat model."""

    def summarize(context: RequestContext, args: dict[str, Any]) -> Result:
        window = context.time_range
        records = context.memory.by_time_range(window.start, window.end)
        period = f"{window.start:%a %d %b %H:%M} to {window.end:%a %d %b %H:%M} UTC"
        if not records:
            return Result.ok(
                f"There are no messages to summarise from {period}.",
                data={"message_count": 0},
            )

        instructions = SUMMARY_PROMPT
        focus = (args.get("focus") or "").strip()
        if focus:
            instructions += f"\n- Focus on: {focus}"

        t0 = time.perf_counter()
        try:
            response = llm.invoke([
                SystemMessage(content=instructions),
                HumanMessage(content=f"Transcript ({period}):\n{format_transcript(records)}"),
            ])
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", "summarize",
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", "summarize", latency_ms=elapsed)
        logger.debug("Summarised %d messages in %.0fms", len(records), elapsed)

        return Result.ok(
            content_text(response.content),
            data={"message_count": len(records)},
        )

    return CapabilityDescriptor(
        name=NAME,
        routing_description=ROUTING_DESCRIPTION,
        handler=summarize,
        parameters=PARAMETERS,
    )
