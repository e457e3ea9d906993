"""Tests for the Claude-backed decision oracle and the manager prompt."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from collaborator.capabilities.base import CapabilityDescriptor
from collaborator.errors import RoutingError
from collaborator.models import MessageRecord, Result
from collaborator.oracle import (
    CLEAR_HISTORY_TOOL,
    TIME_RANGE_TOOL,
    AnthropicDecisionOracle,
    ClearHistory,
    DirectReply,
    Invoke,
    ResolveTimeRange,
    capability_tool,
    history_messages,
)
from collaborator.prompts import get_manager_prompt

PLANNER_SCHEMA = {
    "type": "object",
    "properties": {"action": {"type": "string"}},
    "required": ["action"],
}


@pytest.fixture
def capabilities():
    def handler(context, args):
        return Result.ok("x")

    return [
        CapabilityDescriptor("summarizer", "**summarizer**: recaps.", handler),
        CapabilityDescriptor("planner", "**planner**: tasks.", handler, PLANNER_SCHEMA),
    ]


@pytest.fixture
def llm():
    model = MagicMock()
    model.bind_tools.return_value.invoke.return_value = AIMessage(content="Hello!")
    return model


def _respond(llm, message: AIMessage) -> None:
    llm.bind_tools.return_value.invoke.return_value = message


def _tool_call(name: str, args: dict, call_id: str = "call_1") -> dict:
    return {"name": name, "args": args, "id": call_id}


class TestToolBinding:
    def test_one_delegate_tool_per_capability_plus_builtin_tools(self, llm, capabilities):
        AnthropicDecisionOracle(llm).decide("hi", [], capabilities)

        tools = llm.bind_tools.call_args[0][0]
        assert [t["name"] for t in tools] == [
            "delegate_to_summarizer", "delegate_to_planner", TIME_RANGE_TOOL, CLEAR_HISTORY_TOOL,
        ]
        assert tools[1]["input_schema"] == PLANNER_SCHEMA
        assert tools[1]["description"] == "**planner**: tasks."

    def test_time_tool_withheld_after_resolution(self, llm, capabilities):
        AnthropicDecisionOracle(llm).decide("hi", [], capabilities, allow_time_resolution=False)

        tools = llm.bind_tools.call_args[0][0]
        assert TIME_RANGE_TOOL not in [t["name"] for t in tools]
        assert CLEAR_HISTORY_TOOL in [t["name"] for t in tools]
        system = llm.bind_tools.return_value.invoke.call_args[0][0][0]
        assert "already been resolved" in system.content

    def test_capability_tool(self, capabilities):
        assert capability_tool(capabilities[0])["name"] == "delegate_to_summarizer"


class TestMessages:
    def test_prompt_history_and_message(self, llm, capabilities):
        history = [
            MessageRecord("user", "Alice", "earlier question", "a1", "2026-10-14T09:00:00Z", "c"),
            MessageRecord("assistant", "Collaborator", "earlier answer", "a2", "2026-10-14T09:00:01Z", "c"),
        ]
        AnthropicDecisionOracle(llm).decide("summarize today", history, capabilities)

        messages = llm.bind_tools.return_value.invoke.call_args[0][0]
        assert isinstance(messages[0], SystemMessage)
        assert "**summarizer**" in messages[0].content
        assert messages[1] == HumanMessage(content="Alice: earlier question")
        assert messages[2] == AIMessage(content="earlier answer")
        assert messages[-1] == HumanMessage(content="summarize today")

    def test_history_messages_roles(self):
        record = MessageRecord("user", "Bob", "hi", "a", "2026-10-14T09:00:00Z", "c")
        assert history_messages([record]) == [HumanMessage(content="Bob: hi")]


class TestParsing:
    def test_text_reply(self, llm, capabilities):
        assert AnthropicDecisionOracle(llm).decide("hi", [], capabilities) == DirectReply("Hello!")

    def test_content_block_reply(self, llm, capabilities):
        _respond(llm, AIMessage(content=[{"type": "text", "text": "Hi "}, {"type": "text", "text": "there"}]))
        assert AnthropicDecisionOracle(llm).decide("hi", [], capabilities) == DirectReply("Hi there")

    def test_delegate_call(self, llm, capabilities):
        _respond(llm, AIMessage(content="", tool_calls=[
            _tool_call("delegate_to_planner", {"action": "list_plans"}),
        ]))
        decision = AnthropicDecisionOracle(llm).decide("show my plans", [], capabilities)
        assert decision == Invoke("planner", {"action": "list_plans"})

    def test_time_range_call(self, llm, capabilities):
        _respond(llm, AIMessage(content="", tool_calls=[
            _tool_call(TIME_RANGE_TOOL, {"time_phrase": "last week"}),
        ]))
        decision = AnthropicDecisionOracle(llm).decide("summarize last week", [], capabilities)
        assert decision == ResolveTimeRange("last week")

    def test_clear_history_call(self, llm, capabilities):
        _respond(llm, AIMessage(content="", tool_calls=[_tool_call(CLEAR_HISTORY_TOOL, {})]))
        decision = AnthropicDecisionOracle(llm).decide("forget everything we said", [], capabilities)
        assert decision == ClearHistory()

    def test_only_first_tool_call_is_honoured(self, llm, capabilities):
        _respond(llm, AIMessage(content="", tool_calls=[
            _tool_call("delegate_to_summarizer", {}, "call_1"),
            _tool_call("delegate_to_planner", {"action": "list_plans"}, "call_2"),
        ]))
        decision = AnthropicDecisionOracle(llm).decide("do both", [], capabilities)
        assert decision == Invoke("summarizer", {})

    def test_unknown_tool(self, llm, capabilities):
        _respond(llm, AIMessage(content="", tool_calls=[_tool_call("rm_rf", {})]))
        with pytest.raises(RoutingError):
            AnthropicDecisionOracle(llm).decide("hi", [], capabilities)

    def test_empty_response(self, llm, capabilities):
        _respond(llm, AIMessage(content=""))
        with pytest.raises(RoutingError):
            AnthropicDecisionOracle(llm).decide("hi", [], capabilities)

    def test_model_error_propagates(self, llm, capabilities):
        llm.bind_tools.return_value.invoke.side_effect = RuntimeError("overloaded")
        with pytest.raises(RuntimeError):
            AnthropicDecisionOracle(llm).decide("hi", [], capabilities)


class TestManagerPrompt:
    def test_lists_capabilities_in_order(self, capabilities):
        prompt = get_manager_prompt(capabilities, now=datetime(2026, 10, 14, 15, 30, tzinfo=UTC))
        assert "1. **summarizer**\n2. **planner**" in prompt
        assert "- **summarizer**: recaps.\n- **planner**: tasks." in prompt
        assert "October 14, 2026" in prompt
        assert "(Wednesday)" in prompt
        assert "call `calculate_time_range` FIRST" in prompt
        assert "`clear_conversation_history`" in prompt

    def test_resolved_variant(self, capabilities):
        prompt = get_manager_prompt(capabilities, allow_time_resolution=False)
        assert "Do NOT call `calculate_time_range` again" in prompt
