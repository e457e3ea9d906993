"""Tests for the request router, driven by scripted decision oracles."""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from collaborator.capabilities.base import CapabilityDescriptor
from collaborator.capabilities.registry import CapabilityRegistry
from collaborator.models import ErrorKind, Result, TimeRange
from collaborator.oracle import ClearHistory, DirectReply, Invoke, ResolveTimeRange
from collaborator.router import APOLOGY, ASSISTANT_NAME, COMPLETED, FAILED, HISTORY_CLEARED, RequestRouter

NOW = datetime(2026, 10, 14, 15, 30, tzinfo=UTC)


class ScriptedOracle:
    """Returns pre-set decisions in order and records how it was asked."""

    def __init__(self, *decisions):
        self._decisions = list(decisions)
        self.calls = []

    def decide(self, message, history, capabilities, *, allow_time_resolution=True):
        self.calls.append({
            "message": message,
            "history": list(history),
            "capabilities": [c.name for c in capabilities],
            "allow_time_resolution": allow_time_resolution,
        })
        decision = self._decisions.pop(0)
        if isinstance(decision, Exception):
            raise decision
        return decision


class KeywordOracle:
    """A tiny stand-in for the model: routes on words in the message."""

    def __init__(self):
        self.calls = 0

    def decide(self, message, history, capabilities, *, allow_time_resolution=True):
        self.calls += 1
        text = message.lower()
        if "task" in text:
            return Invoke("planner", {"action": "create_task", "plan_id": "P", "title": "Review proposal"})
        if "summarize" in text:
            if allow_time_resolution and "last week" in text:
                return ResolveTimeRange("last week")
            return Invoke("summarizer", {})
        return DirectReply("Hi there! I can summarise, search, manage Planner tasks or send e-mail.")


def _spy(name, result=None):
    handler = MagicMock(name=f"{name}_handler", return_value=result or Result.ok(f"{name} done"))
    return CapabilityDescriptor(name=name, routing_description=f"**{name}**", handler=handler)


@pytest.fixture
def descriptors():
    return {name: _spy(name) for name in ("summarizer", "search", "planner", "email_sender")}


@pytest.fixture
def make_router(descriptors):
    routers = []

    def _make(oracle, **kwargs):
        kwargs.setdefault("clock", lambda: NOW)
        router = RequestRouter(CapabilityRegistry(list(descriptors.values())), oracle, **kwargs)
        routers.append(router)
        return router

    yield _make
    for router in routers:
        router.close()


def _handlers_called(descriptors):
    return [name for name, d in descriptors.items() if d.handler.called]


# ── Direct replies ───────────────────────────────────────────────────


class TestDirectReply:
    def test_reply_without_capability(self, make_router, make_context, memory, descriptors):
        router = make_router(ScriptedOracle(DirectReply("Hello!")))
        reply = router.handle(make_context("hi", activity_id="act-hi"))

        assert reply.text == "Hello!"
        assert reply.status == COMPLETED
        assert reply.ok
        assert reply.capability is None
        assert _handlers_called(descriptors) == []

        user, assistant = memory.all()
        assert (user.role, user.content, user.activity_id) == ("user", "hi", "act-hi")
        assert (assistant.role, assistant.author_name, assistant.content) == (
            "assistant", ASSISTANT_NAME, "Hello!",
        )
        assert assistant.activity_id == reply.reply_id
        assert assistant.timestamp >= user.timestamp

    def test_registry_is_frozen(self, make_router):
        router = make_router(ScriptedOracle())
        assert router.registry.frozen

    def test_history_is_passed_to_oracle(self, make_router, make_context, memory, make_record):
        memory.append([
            make_record(f"earlier {i}", f"2026-10-14T10:0{i}:00Z") for i in range(4)
        ])
        oracle = ScriptedOracle(DirectReply("ok"))
        make_router(oracle, recent_limit=2).handle(make_context("what's up?"))

        call = oracle.calls[0]
        assert call["message"] == "what's up?"
        assert [r.content for r in call["history"]] == ["earlier 2", "earlier 3"]
        assert call["capabilities"] == ["summarizer", "search", "planner", "email_sender"]
        assert call["allow_time_resolution"] is True


# ── Single dispatch ──────────────────────────────────────────────────


class TestDispatch:
    def test_invokes_exactly_one_handler(self, make_router, make_context, descriptors, memory):
        router = make_router(ScriptedOracle(Invoke("search", {"keywords": ["budget"]})))
        context = make_context("find budget")
        reply = router.handle(context)

        assert reply.status == COMPLETED
        assert reply.capability == "search"
        assert reply.text == "search done"
        assert _handlers_called(descriptors) == ["search"]
        descriptors["search"].handler.assert_called_once_with(context, {"keywords": ["budget"]})
        assert memory.count() == 2

    def test_failed_result_is_rendered_with_suggestion(self, make_router, make_context, descriptors):
        descriptors["planner"].handler.return_value = Result.fail(
            "Sorry, I couldn't create task: the app is not allowed to do that.",
            ErrorKind.PERMISSION,
            suggestion="Grant Tasks.ReadWrite.All.",
        )
        reply = make_router(ScriptedOracle(Invoke("planner", {"action": "create_task"}))).handle(
            make_context("create a task"),
        )

        assert reply.status == COMPLETED
        assert reply.result.error_kind is ErrorKind.PERMISSION
        assert reply.text.endswith("Suggestion: Grant Tasks.ReadWrite.All.")

    def test_plain_string_result_is_wrapped(self, make_router, make_context, descriptors):
        descriptors["search"].handler.return_value = "just text"
        reply = make_router(ScriptedOracle(Invoke("search"))).handle(make_context())
        assert reply.text == "just text"
        assert reply.result == Result.ok("just text")

    def test_planner_and_summarizer_requests_route_independently(self, make_router, make_context, descriptors):
        router = make_router(KeywordOracle())

        router.handle(make_context("create a task 'Review proposal' in plan P"))
        assert _handlers_called(descriptors) == ["planner"]

        router.handle(make_context("summarize"))
        assert descriptors["summarizer"].handler.call_count == 1
        assert descriptors["planner"].handler.call_count == 1

    def test_args_are_copied(self, make_router, make_context, descriptors):
        args = {"keywords": ["x"]}

        def mutate(context, received):
            received["keywords"].append("y")
            received["extra"] = True
            return Result.ok("done")

        descriptors["search"].handler.side_effect = mutate
        make_router(ScriptedOracle(Invoke("search", args))).handle(make_context())
        assert "extra" not in args


# ── Time-range resolution ────────────────────────────────────────────


class TestTimeRangeResolution:
    def test_resolves_once_then_dispatches(self, make_router, make_context, descriptors):
        oracle = ScriptedOracle(ResolveTimeRange("last week"), Invoke("summarizer"))
        context = make_context("summarize last week")
        reply = make_router(oracle).handle(context)

        assert reply.status == COMPLETED
        assert context.time_range == TimeRange(
            datetime(2026, 10, 5, tzinfo=UTC),
            datetime(2026, 10, 11, 23, 59, 59, 999999, tzinfo=UTC),
        )
        assert [c["allow_time_resolution"] for c in oracle.calls] == [True, False]
        handler_context = descriptors["summarizer"].handler.call_args[0][0]
        assert handler_context.time_range == context.time_range

    def test_keyword_oracle_summarize_last_week(self, make_router, make_context, descriptors):
        oracle = KeywordOracle()
        context = make_context("summarize last week")
        make_router(oracle).handle(context)

        assert oracle.calls == 2
        assert _handlers_called(descriptors) == ["summarizer"]
        assert context.time_range.start == datetime(2026, 10, 5, tzinfo=UTC)

    def test_unknown_phrase_keeps_default_window(self, make_router, make_context):
        context = make_context("summarize since the offsite")
        default = context.time_range
        reply = make_router(
            ScriptedOracle(ResolveTimeRange("since the offsite"), Invoke("summarizer")),
        ).handle(context)

        assert reply.status == COMPLETED
        assert context.time_range == default

    def test_second_resolution_request_fails(self, make_router, make_context, descriptors, memory):
        oracle = ScriptedOracle(ResolveTimeRange("yesterday"), ResolveTimeRange("today"))
        reply = make_router(oracle).handle(make_context("summarize yesterday"))

        assert reply.status == FAILED
        assert reply.text == APOLOGY
        assert _handlers_called(descriptors) == []
        assert memory.count() == 0

    def test_direct_reply_after_resolution(self, make_router, make_context):
        reply = make_router(
            ScriptedOracle(ResolveTimeRange("today"), DirectReply("Nothing to do.")),
        ).handle(make_context())
        assert reply.text == "Nothing to do."


# ── Failures ─────────────────────────────────────────────────────────


class TestFailures:
    def test_unknown_capability(self, make_router, make_context, descriptors, memory):
        reply = make_router(ScriptedOracle(Invoke("calendar"))).handle(make_context())

        assert reply.status == FAILED
        assert reply.text == APOLOGY
        assert reply.capability == "calendar"
        assert _handlers_called(descriptors) == []
        assert memory.count() == 0

    def test_handler_exception_is_not_leaked(self, make_router, make_context, descriptors, memory):
        descriptors["summarizer"].handler.side_effect = KeyError("secret internal detail")
        reply = make_router(ScriptedOracle(Invoke("summarizer"))).handle(make_context())

        assert reply.status == FAILED
        assert reply.text == APOLOGY
        assert "secret" not in reply.text
        assert memory.count() == 0

    def test_oracle_exception(self, make_router, make_context, memory):
        reply = make_router(ScriptedOracle(RuntimeError("model overloaded"))).handle(make_context())
        assert reply.status == FAILED
        assert reply.text == APOLOGY
        assert memory.count() == 0

    def test_unexpected_decision_type(self, make_router, make_context):
        reply = make_router(ScriptedOracle("not a decision")).handle(make_context())
        assert reply.status == FAILED

    def test_capability_timeout(self, make_router, make_context, descriptors, memory):
        release = threading.Event()

        def slow(context, args):
            release.wait(5)
            return Result.ok("too late")

        descriptors["search"].handler.side_effect = slow
        router = make_router(ScriptedOracle(Invoke("search")), capability_timeout=0.05)
        try:
            reply = router.handle(make_context())
        finally:
            release.set()

        assert reply.status == FAILED
        assert reply.text == APOLOGY
        assert reply.capability == "search"
        assert memory.count() == 0

    def test_memory_read_failure(self, make_router, make_context):
        broken = MagicMock()
        broken.recent.side_effect = OSError("disk gone")
        oracle = ScriptedOracle(DirectReply("never"))
        reply = make_router(oracle).handle(make_context(memory=broken))

        assert reply.status == FAILED
        assert oracle.calls == []

    def test_memory_write_failure_still_replies(self, make_router, make_context):
        flaky = MagicMock()
        flaky.recent.return_value = []
        flaky.append.side_effect = OSError("disk full")
        reply = make_router(ScriptedOracle(DirectReply("Hello!"))).handle(make_context(memory=flaky))

        assert reply.status == COMPLETED
        assert reply.text == "Hello!"
        flaky.append.assert_called_once()

    def test_timeout_log_keeps_fractional_seconds(self, make_router, make_context, descriptors, caplog):
        release = threading.Event()
        descriptors["search"].handler.side_effect = lambda context, args: release.wait(5)
        router = make_router(ScriptedOracle(Invoke("search")), capability_timeout=0.05)
        try:
            with caplog.at_level("ERROR", logger="collaborator.router"):
                router.handle(make_context())
        finally:
            release.set()

        assert "timed out after 0.05s" in caplog.text


class TestHungCapabilities:
    def test_hung_handlers_do_not_block_later_messages(self, make_router, make_context, descriptors):
        release = threading.Event()
        descriptors["search"].handler.side_effect = lambda context, args: release.wait(5)
        oracle = ScriptedOracle(Invoke("search"), Invoke("search"), Invoke("search"), Invoke("planner"))
        router = make_router(oracle, capability_timeout=0.2)
        try:
            hung = [router.handle(make_context()) for _ in range(3)]
            reply = router.handle(make_context())
        finally:
            release.set()

        assert [r.status for r in hung] == [FAILED] * 3
        assert reply.status == COMPLETED
        assert reply.text == "planner done"
        descriptors["planner"].handler.assert_called_once()

    def test_concurrent_conversations_run_independently(self, make_router, make_context, descriptors):
        release = threading.Event()
        started = threading.Event()

        def slow(context, args):
            started.set()
            release.wait(5)
            return Result.ok("slow done")

        descriptors["search"].handler.side_effect = slow
        router = make_router(KeywordOracleWithSearch(), capability_timeout=5)
        replies = {}
        slow_thread = threading.Thread(
            target=lambda: replies.update(slow=router.handle(make_context(text="search for the deck"))),
        )
        slow_thread.start()
        try:
            assert started.wait(2)
            replies["fast"] = router.handle(make_context(text="create a task"))
        finally:
            release.set()
            slow_thread.join(5)

        assert replies["fast"].status == COMPLETED
        assert replies["fast"].text == "planner done"
        assert replies["slow"].text == "slow done"

    def test_close_reports_abandoned_handlers(self, make_router, make_context, descriptors, caplog):
        release = threading.Event()
        descriptors["search"].handler.side_effect = lambda context, args: release.wait(5)
        router = make_router(ScriptedOracle(Invoke("search")), capability_timeout=0.05)
        try:
            router.handle(make_context())
            with caplog.at_level("WARNING", logger="collaborator.router"):
                router.close()
        finally:
            release.set()

        assert "capability-search" in caplog.text


class KeywordOracleWithSearch(KeywordOracle):
    def decide(self, message, history, capabilities, *, allow_time_resolution=True):
        if "search" in message.lower():
            return Invoke("search", {"keywords": ["deck"]})
        return super().decide(message, history, capabilities, allow_time_resolution=allow_time_resolution)


def test_out_of_range_time_phrase_keeps_default_window(make_router, make_context, descriptors):
    context = make_context("summarize the past 999999 days")
    default = context.time_range
    oracle = ScriptedOracle(ResolveTimeRange("past 999999 days"), Invoke("summarizer"))
    reply = make_router(oracle).handle(context)

    assert reply.status == COMPLETED
    passed = descriptors["summarizer"].handler.call_args[0][0]
    assert passed.time_range == default


class TestClearHistory:
    def test_clears_memory_and_records_nothing(self, make_router, make_context, memory, make_record, descriptors):
        memory.append([make_record(f"old {i}", f"2026-10-14T10:0{i}:00Z") for i in range(3)])
        reply = make_router(ScriptedOracle(ClearHistory())).handle(make_context("forget everything"))

        assert reply.status == COMPLETED
        assert reply.text == HISTORY_CLEARED
        assert reply.capability is None
        assert memory.count() == 0
        assert memory.all() == []
        assert _handlers_called(descriptors) == []

    def test_other_conversations_are_untouched(self, make_router, make_context, storage, make_record):
        from collaborator.storage.memory import ConversationMemory

        other = ConversationMemory(storage, "conv-2")
        other.append([make_record("keep me", "2026-10-14T10:00:00Z", conversation_id="conv-2")])
        make_router(ScriptedOracle(ClearHistory())).handle(make_context("reset"))

        assert [r.content for r in other.all()] == ["keep me"]

    def test_clear_failure_fails_the_request(self, make_router, make_context):
        broken = MagicMock()
        broken.recent.return_value = []
        broken.count.return_value = 2
        broken.clear.side_effect = OSError("read-only database")
        reply = make_router(ScriptedOracle(ClearHistory())).handle(make_context(memory=broken))

        assert reply.status == FAILED
        assert reply.text == APOLOGY
        broken.append.assert_not_called()
