"""Single-dispatch request router built as a LangGraph StateGraph.

Nodes (one per router state):

    load_memory → select → (resolve_time_range → select)? → dispatch → complete
                       ↘ complete (direct reply)              ↘ fail
                       ↘ clear_history

  1. **load_memory**         recent conversation history for the oracle
  2. **select**              asks the ``DecisionPort`` what to do
  3. **resolve_time_range**  turns the oracle's time phrase into absolute
                             bounds on the ``RequestContext`` (once per message)
  4. **dispatch**            runs exactly one capability handler, bounded by
                             ``capability_timeout``
  5. **complete**            appends the inbound/outbound pair to memory
  6. **fail**                generic apology; diagnostics stay in the logs
  7. **clear_history**       empties the conversation's memory; nothing is
                             appended for that message

Any node that records an ``error`` diverts the run to **fail**.  At most one
capability is invoked per message and nothing is retried at this level.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime

from langgraph.graph import END, StateGraph
from typing_extensions import TypedDict

from collaborator.capabilities.registry import CapabilityRegistry
from collaborator.errors import CapabilityError, RoutingError
from collaborator.models import (
    MessageRecord,
    RequestContext,
    Result,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from collaborator.oracle import ClearHistory, DecisionPort, DirectReply, Invoke, ResolveTimeRange
from collaborator.services.metrics import metrics
from collaborator.timerange import resolve_time_range

logger = logging.getLogger(__name__)

APOLOGY = "Sorry, something went wrong while handling your request. Please try again."
HISTORY_CLEARED = "Done. I've cleared the history of this conversation."
ASSISTANT_NAME = "Collaborator"

COMPLETED = "completed"
FAILED = "failed"


# ── State schema ─────────────────────────────────────────────────────


class RouterState(TypedDict, total=False):
    """What flows between the nodes for one inbound message."""

    context: RequestContext
    history: list[MessageRecord]
    decision: DirectReply | Invoke | ResolveTimeRange | ClearHistory | None
    time_resolved: bool
    capability: str | None
    result: Result | None
    reply: str
    reply_id: str | None
    status: str
    error: str | None


@dataclass(frozen=True)
class RouterReply:
    text: str
    status: str
    capability: str | None = None
    result: Result | None = None
    reply_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == COMPLETED


class RequestRouter:
    """Routes each message to a direct reply or exactly one capability."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        oracle: DecisionPort,
        *,
        recent_limit: int = 20,
        capability_timeout: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        registry.freeze()
        self._registry = registry
        self._oracle = oracle
        self._recent_limit = recent_limit
        self._capability_timeout = capability_timeout
        self._clock = clock
        self._abandoned: list[threading.Thread] = []
        self._abandoned_lock = threading.Lock()
        self._graph = self._build_graph()

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    @staticmethod
    def _start_handler(descriptor, context: RequestContext, args: dict) -> tuple[Future, threading.Thread]:
        """Run one handler on its own daemon thread.

        A handler that outlives its timeout cannot be stopped, so it must not
        occupy a slot that later messages wait for.
        """
        future: Future = Future()

        def run():
            if not future.set_running_or_notify_cancel():
                return
            try:
                outcome = descriptor.handler(context, args)
            except BaseException as exc:
                future.set_exception(exc)
            else:
                future.set_result(outcome)

        worker = threading.Thread(target=run, name=f"capability-{descriptor.name}", daemon=True)
        worker.start()
        return future, worker

    # ── Nodes ────────────────────────────────────────────────────────

    def _load_memory(self, state: RouterState) -> dict:
        context = state["context"]
        try:
            history = context.memory.recent(self._recent_limit)
        except Exception as exc:
            logger.exception("Loading memory for %s failed", context.conversation_id)
            return {"error": f"memory: {exc}"}
        return {"history": history}

    def _select(self, state: RouterState) -> dict:
        context = state["context"]
        time_resolved = state.get("time_resolved", False)
        try:
            decision = self._oracle.decide(
                context.text,
                state.get("history", []),
                self._registry.all(),
                allow_time_resolution=not time_resolved,
            )
        except Exception as exc:
            logger.exception("Decision oracle failed for %s", context.conversation_id)
            return {"error": f"oracle: {exc}"}

        if isinstance(decision, ResolveTimeRange) and time_resolved:
            err = RoutingError("Oracle asked for a second time-range resolution")
            logger.error("%s (phrase=%r)", err, decision.phrase)
            return {"error": str(err)}
        if not isinstance(decision, (DirectReply, Invoke, ResolveTimeRange, ClearHistory)):
            err = RoutingError(f"Unexpected oracle decision: {decision!r}")
            logger.error("%s", err)
            return {"error": str(err)}

        logger.debug("Oracle decision for %s: %r", context.conversation_id, decision)
        return {"decision": decision}

    def _resolve_time_range(self, state: RouterState) -> dict:
        context = state["context"]
        phrase = state["decision"].phrase
        resolved = resolve_time_range(phrase, now=self._clock())
        if resolved is None:
            logger.info("Could not resolve time phrase %r, keeping default window", phrase)
        else:
            context.time_range = resolved
            logger.debug("Resolved %r to %s … %s", phrase, resolved.start, resolved.end)
        return {"context": context, "time_resolved": True, "decision": None}

    def _dispatch(self, state: RouterState) -> dict:
        context = state["context"]
        decision: Invoke = state["decision"]
        descriptor = self._registry.find(decision.capability)
        if descriptor is None:
            err = RoutingError(f"Unknown capability {decision.capability!r}")
            logger.error("%s", err)
            return {"error": str(err), "capability": decision.capability}

        t0 = time.perf_counter()
        future, worker = self._start_handler(descriptor, context, dict(decision.args))
        try:
            outcome = future.result(timeout=self._capability_timeout)
        except FutureTimeoutError:
            with self._abandoned_lock:
                self._abandoned = [t for t in self._abandoned if t.is_alive()]
                self._abandoned.append(worker)
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure("capability", descriptor.name, error_type="timeout", latency_ms=elapsed)
            logger.error(
                "Capability %s timed out after %gs", descriptor.name, self._capability_timeout,
            )
            return {"error": f"capability {descriptor.name} timed out", "capability": descriptor.name}
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "capability", descriptor.name, error_type=type(exc).__name__, latency_ms=elapsed,
            )
            err = CapabilityError(descriptor.name, f"{type(exc).__name__}: {exc}")
            logger.error("%s", err, exc_info=exc)
            return {"error": str(err), "capability": descriptor.name}

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("capability", descriptor.name, latency_ms=elapsed)

        result = outcome if isinstance(outcome, Result) else Result.ok(str(outcome))
        logger.info(
            "Capability %s finished in %.0fms (success=%s)", descriptor.name, elapsed, result.success,
        )
        return {"capability": descriptor.name, "result": result, "reply": result.render()}

    def _clear_history(self, state: RouterState) -> dict:
        # Nothing is appended afterwards, the conversation starts empty.
        context = state["context"]
        try:
            removed = context.memory.count()
            context.memory.clear()
        except Exception as exc:
            logger.exception("Clearing memory for %s failed", context.conversation_id)
            return {"error": f"memory: {exc}"}
        logger.info("Cleared %d message(s) from %s", removed, context.conversation_id)
        return {"reply": HISTORY_CLEARED, "status": COMPLETED}

    def _complete(self, state: RouterState) -> dict:
        context = state["context"]
        reply = state.get("reply")
        if reply is None:
            reply = state["decision"].text

        reply_id = uuid.uuid4().hex
        replied_at = max(self._clock(), parse_timestamp(context.timestamp))
        records = [
            MessageRecord(
                role="user",
                author_name=context.user.name,
                content=context.text,
                activity_id=context.activity_id,
                timestamp=context.timestamp,
                conversation_id=context.conversation_id,
            ),
            MessageRecord(
                role="assistant",
                author_name=ASSISTANT_NAME,
                content=reply,
                activity_id=reply_id,
                timestamp=format_timestamp(replied_at),
                conversation_id=context.conversation_id,
            ),
        ]
        try:
            context.memory.append(records)
        except Exception:
            # The user still gets the answer; only the history entry is lost.
            logger.exception("Appending to memory for %s failed", context.conversation_id)

        return {"reply": reply, "reply_id": reply_id, "status": COMPLETED}

    def _fail(self, state: RouterState) -> dict:
        context = state["context"]
        logger.error(
            "Request in %s failed (capability=%s): %s",
            context.conversation_id, state.get("capability"), state.get("error"),
        )
        return {"reply": APOLOGY, "status": FAILED}

    # ── Conditional edges ────────────────────────────────────────────

    @staticmethod
    def _after_load(state: RouterState) -> str:
        return "fail" if state.get("error") else "select"

    @staticmethod
    def _after_select(state: RouterState) -> str:
        if state.get("error"):
            return "fail"
        decision = state["decision"]
        if isinstance(decision, ResolveTimeRange):
            return "resolve_time_range"
        if isinstance(decision, Invoke):
            return "dispatch"
        if isinstance(decision, ClearHistory):
            return "clear_history"
        return "complete"

    @staticmethod
    def _after_dispatch(state: RouterState) -> str:
        return "fail" if state.get("error") else "complete"

    # ── Graph assembly ───────────────────────────────────────────────

    def _build_graph(self):
        graph = StateGraph(RouterState)

        graph.add_node("load_memory", self._load_memory)
        graph.add_node("select", self._select)
        graph.add_node("resolve_time_range", self._resolve_time_range)
        graph.add_node("dispatch", self._dispatch)
        graph.add_node("clear_history", self._clear_history)
        graph.add_node("complete", self._complete)
        graph.add_node("fail", self._fail)

        graph.set_entry_point("load_memory")
        graph.add_conditional_edges(
            "load_memory", self._after_load, {"select": "select", "fail": "fail"},
        )
        graph.add_conditional_edges(
            "select",
            self._after_select,
            {
                "resolve_time_range": "resolve_time_range",
                "dispatch": "dispatch",
                "clear_history": "clear_history",
                "complete": "complete",
                "fail": "fail",
            },
        )
        graph.add_edge("resolve_time_range", "select")
        graph.add_conditional_edges(
            "dispatch", self._after_dispatch, {"complete": "complete", "fail": "fail"},
        )
        graph.add_conditional_edges(
            "clear_history", self._after_dispatch, {"complete": END, "fail": "fail"},
        )
        graph.add_edge("complete", END)
        graph.add_edge("fail", END)

        compiled = graph.compile()
        logger.debug(
            "Router compiled with %d capabilities: %s",
            len(self._registry), ", ".join(self._registry.names()),
        )
        return compiled

    # ── Public API ───────────────────────────────────────────────────

    def handle(self, context: RequestContext) -> RouterReply:
        """Run the pipeline for one message and return what to send back."""
        try:
            final = self._graph.invoke({"context": context, "time_resolved": False})
        except Exception:
            logger.exception("Router crashed for %s", context.conversation_id)
            return RouterReply(text=APOLOGY, status=FAILED)

        return RouterReply(
            text=final.get("reply") or APOLOGY,
            status=final.get("status", FAILED),
            capability=final.get("capability"),
            result=final.get("result"),
            reply_id=final.get("reply_id"),
        )

    def close(self) -> None:
        with self._abandoned_lock:
            running = [t.name for t in self._abandoned if t.is_alive()]
            self._abandoned = []
        if running:
            logger.warning(
                "Shutting down with %d timed-out capability handler(s) still running: %s",
                len(running), ", ".join(running),
            )
