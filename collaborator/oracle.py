"""Decision oracle: picks a direct reply, a time-range resolution, a history
reset, or one capability.

The router only depends on ``DecisionPort``.  ``AnthropicDecisionOracle`` is
the production implementation: Claude with one ``delegate_to_<capability>``
tool per registered capability plus ``calculate_time_range`` and
``clear_conversation_history``.  Tests drive the router with scripted stubs
implementing the same protocol.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, SystemMessage

from collaborator.capabilities.base import CapabilityDescriptor
from collaborator.errors import RoutingError
from collaborator.llm import build_routing_llm, content_text
from collaborator.models import MessageRecord
from collaborator.prompts import get_manager_prompt
from collaborator.services.metrics import metrics

logger = logging.getLogger(__name__)

DELEGATE_PREFIX = "delegate_to_"
TIME_RANGE_TOOL = "calculate_time_range"
CLEAR_HISTORY_TOOL = "clear_conversation_history"

TIME_RANGE_TOOL_SPEC: dict[str, Any] = {
    "name": TIME_RANGE_TOOL,
    "description": (
        "Parse a natural-language time expression and calculate the exact "
        "start/end of the period the request is about."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "time_phrase": {
                "type": "string",
                "description": (
                    "The time expression exactly as the user wrote it "
                    '(e.g. "yesterday", "last week", "2 days ago", "past 3 hours").'
                ),
            },
        },
        "required": ["time_phrase"],
    },
}

CLEAR_HISTORY_TOOL_SPEC: dict[str, Any] = {
    "name": CLEAR_HISTORY_TOOL,
    "description": (
        "Delete the stored history of the current conversation. Only when the "
        "user explicitly asks to clear, reset or forget the conversation."
    ),
    "input_schema": {"type": "object", "properties": {}},
}


# ── Decisions ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DirectReply:
    text: str


@dataclass(frozen=True)
class Invoke:
    capability: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolveTimeRange:
    phrase: str


@dataclass(frozen=True)
class ClearHistory:
    """Forget this conversation's stored history."""


Decision = DirectReply | Invoke | ResolveTimeRange | ClearHistory


class DecisionPort(Protocol):
    def decide(
        self,
        message: str,
        history: Sequence[MessageRecord],
        capabilities: Sequence[CapabilityDescriptor],
        *,
        allow_time_resolution: bool = True,
    ) -> Decision: ...


# ── Claude implementation ────────────────────────────────────────────


def capability_tool(descriptor: CapabilityDescriptor) -> dict[str, Any]:
    """Anthropic tool spec that delegates to *descriptor*."""
    return {
        "name": f"{DELEGATE_PREFIX}{descriptor.name}",
        "description": descriptor.routing_description,
        "input_schema": descriptor.parameters,
    }


def history_messages(history: Sequence[MessageRecord]) -> list[AnyMessage]:
    messages: list[AnyMessage] = []
    for record in history:
        if record.role == "assistant":
            messages.append(AIMessage(content=record.content))
        else:
            messages.append(HumanMessage(content=f"{record.author_name}: {record.content}"))
    return messages


class AnthropicDecisionOracle:
    """Routes with a tool-calling chat model (Claude by default)."""

    def __init__(self, llm: BaseChatModel | None = None):
        self._llm = llm or build_routing_llm()

    def decide(
        self,
        message: str,
        history: Sequence[MessageRecord],
        capabilities: Sequence[CapabilityDescriptor],
        *,
        allow_time_resolution: bool = True,
    ) -> Decision:
        tools = [capability_tool(c) for c in capabilities]
        if allow_time_resolution:
            tools.append(TIME_RANGE_TOOL_SPEC)
        tools.append(CLEAR_HISTORY_TOOL_SPEC)
        llm = self._llm.bind_tools(tools)

        prompt = get_manager_prompt(capabilities, allow_time_resolution=allow_time_resolution)
        messages = [SystemMessage(content=prompt), *history_messages(history), HumanMessage(content=message)]

        t0 = time.perf_counter()
        try:
            response = llm.invoke(messages)
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", "route",
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", "route", latency_ms=elapsed)

        return self._parse(response)

    @staticmethod
    def _parse(response: AIMessage) -> Decision:
        tool_calls = getattr(response, "tool_calls", None) or []
        if tool_calls:
            if len(tool_calls) > 1:
                logger.warning(
                    "Oracle requested %d tool calls, honouring only %s",
                    len(tool_calls), tool_calls[0]["name"],
                )
            call = tool_calls[0]
            name, args = call["name"], call.get("args") or {}

            if name == TIME_RANGE_TOOL:
                return ResolveTimeRange(phrase=str(args.get("time_phrase", "")))
            if name == CLEAR_HISTORY_TOOL:
                return ClearHistory()
            if name.startswith(DELEGATE_PREFIX):
                return Invoke(capability=name[len(DELEGATE_PREFIX):], args=dict(args))
            raise RoutingError(f"Oracle called unknown tool {name!r}")

        text = content_text(response.content)
        if not text:
            raise RoutingError("Oracle returned neither text nor a tool call")
        return DirectReply(text=text)
