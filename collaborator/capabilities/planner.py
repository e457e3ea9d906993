"""Task management on Microsoft Planner.

Actions
───────
• ``list_plans``   plans the user belongs to (optionally with buckets)
• ``list_tasks``   tasks of a plan, optionally filtered by status
• ``create_task``  new task; assignee e-mails are resolved to directory ids
• ``update_task``  read the task's etag, then conditional PATCH.  A stale
                   etag is re-read and the update retried once.
"""

from __future__ import annotations

import logging
from typing import Any

from collaborator.capabilities.base import (
    HANDLED_ERRORS,
    CapabilityDescriptor,
    failure_result,
    validate_emails,
)
from collaborator.errors import ConcurrencyError, GatewayError, ValidationError
from collaborator.models import ErrorKind, RequestContext, Result, parse_timestamp
from collaborator.services.graph_client import GraphClient

logger = logging.getLogger(__name__)

NAME = "planner"
ACTIONS = ("list_plans", "list_tasks", "create_task", "update_task")

# Planner only knows three progress values.
STATUS_PERCENT = {"not_started": 0, "in_progress": 50, "completed": 100}

ROUTING_DESCRIPTION = (
    "**planner**: Microsoft Planner task management: list plans, list tasks, "
    "create a task (\"create a task 'Review proposal' in plan P\"), or update a "
    "task's title, progress or due date. Not for summarising the conversation."
)

PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "action": {"type": "string", "enum": list(ACTIONS)},
        "plan_id": {"type": "string", "description": "Planner plan id."},
        "task_id": {"type": "string", "description": "Task id (update_task)."},
        "title": {"type": "string", "description": "Task title."},
        "bucket_id": {"type": "string", "description": "Optional bucket id (create_task)."},
        "due_date": {"type": "string", "description": "Due date, YYYY-MM-DD or ISO 8601."},
        "assignee_emails": {
            "type": "array",
            "items": {"type": "string"},
            "description": "E-mail addresses of the people to assign (create_task).",
        },
        "status": {
            "type": "string",
            "enum": list(STATUS_PERCENT),
            "description": "Status filter (list_tasks) or new status (update_task).",
        },
        "priority": {"type": "integer", "description": "Planner priority 0-10."},
        "user_email": {"type": "string", "description": "Whose plans to list; defaults to the sender."},
        "include_buckets": {"type": "boolean"},
    },
    "required": ["action"],
}


def _status_label(percent: int | None) -> str:
    if not percent:
        return "not started"
    if percent >= 100:
        return "completed"
    return "in progress"


def _due_iso(value: Any) -> str:
    try:
        return parse_timestamp(str(value).strip()).strftime("%Y-%m-%dT%H:%M:%SZ")
    except ValueError as exc:
        raise ValidationError(f'"{value}" is not a date I understand. Use YYYY-MM-DD.') from exc


def _due_label(value: str | None) -> str:
    if not value:
        return "no due date"
    try:
        return parse_timestamp(value).strftime("%d %b %Y")
    except ValueError:
        return value


def _required(args: dict[str, Any], name: str, action: str) -> str:
    value = args.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{name}' is required to {action}.")
    return value.strip()


def _priority(value: Any) -> int:
    try:
        priority = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("'priority' must be a number from 0 to 10.") from exc
    if not 0 <= priority <= 10:
        raise ValidationError("'priority' must be a number from 0 to 10.")
    return priority


def _status_percent(value: Any) -> int:
    if value not in STATUS_PERCENT:
        raise ValidationError(
            f"Unknown status {value!r}. Use one of: {', '.join(STATUS_PERCENT)}."
        )
    return STATUS_PERCENT[value]


class PlannerCapability:
    def __init__(self, graph: GraphClient):
        self._graph = graph

    # ── Entry point ──────────────────────────────────────────────────

    def handle(self, context: RequestContext, args: dict[str, Any]) -> Result:
        action = args.get("action")
        if action not in ACTIONS:
            return Result.fail(
                f"I can't do {action!r} in Planner. I can: {', '.join(ACTIONS)}.",
                ErrorKind.VALIDATION,
            )
        handler = getattr(self, action)
        try:
            return handler(context, args)
        except HANDLED_ERRORS as exc:
            logger.warning("Planner %s failed: %s", action, exc)
            return failure_result(exc, action.replace("_", " "))

    # ── Actions ──────────────────────────────────────────────────────

    def list_plans(self, context: RequestContext, args: dict[str, Any]) -> Result:
        upn = (args.get("user_email") or context.user.upn or "").strip()
        if not upn:
            raise ValidationError("I couldn't tell whose plans to list. Please give an e-mail address.")

        plans = self._graph.get_user_plans(upn)
        if not plans:
            return Result.ok(
                f"No Planner plans found for {upn}. You might need to create a plan first.",
                data={"plans": []},
            )

        summary = []
        lines = [f"Found {len(plans)} plan(s):\n"]
        for plan in plans:
            info = {"id": plan.get("id"), "title": plan.get("title")}
            lines.append(f"  • {info['title']} (id: {info['id']})")
            if args.get("include_buckets"):
                buckets = self._graph.get_plan_buckets(plan["id"])
                info["buckets"] = [{"id": b.get("id"), "name": b.get("name")} for b in buckets]
                for bucket in info["buckets"]:
                    lines.append(f"      ◦ {bucket['name']} (bucket id: {bucket['id']})")
            summary.append(info)
        return Result.ok("\n".join(lines), data={"plans": summary})

    def list_tasks(self, context: RequestContext, args: dict[str, Any]) -> Result:
        plan_id = (args.get("plan_id") or "").strip()
        if not plan_id:
            plans = self._graph.get_user_plans(context.user.upn)
            if not plans:
                raise ValidationError("No plan specified and you don't belong to any plans.")
            plan_id = plans[0]["id"]

        tasks = self._graph.get_plan_tasks(plan_id)
        status = args.get("status")
        if status:
            wanted = _status_percent(status)
            tasks = [t for t in tasks if (t.get("percentComplete") or 0) == wanted]

        if not tasks:
            return Result.ok("No matching tasks in that plan.", data={"plan_id": plan_id, "tasks": []})

        formatted = []
        lines = [f"{len(tasks)} task(s):\n"]
        for task in tasks:
            due = task.get("dueDateTime")
            entry = {
                "id": task.get("id"),
                "title": task.get("title"),
                "status": _status_label(task.get("percentComplete")),
                "due": due,
                "assignee_count": len(task.get("assignments") or {}),
            }
            formatted.append(entry)
            lines.append(f"  • {entry['title']}: {entry['status']}, due {_due_label(due)} (id: {entry['id']})")
        return Result.ok("\n".join(lines), data={"plan_id": plan_id, "tasks": formatted})

    def create_task(self, context: RequestContext, args: dict[str, Any]) -> Result:
        plan_id = _required(args, "plan_id", "create a task")
        title = _required(args, "title", "create a task")
        assignees = validate_emails(args.get("assignee_emails") or [], "assignee_emails")

        task: dict[str, Any] = {"planId": plan_id, "title": title}
        if args.get("bucket_id"):
            task["bucketId"] = args["bucket_id"]
        if args.get("due_date"):
            task["dueDateTime"] = _due_iso(args["due_date"])
        if args.get("priority") is not None:
            task["priority"] = _priority(args["priority"])

        assigned, unresolved = self._resolve_assignees(assignees)
        if assigned:
            task["assignments"] = {
                user_id: {"@odata.type": "#microsoft.graph.plannerAssignment", "orderHint": " !"}
                for user_id in assigned.values()
            }

        created = self._graph.create_planner_task(task)
        message = f'Task "{title}" created successfully!'
        if assigned:
            message += f" Assigned to {', '.join(assigned)}."
        if unresolved:
            message += (
                f" I couldn't find {', '.join(unresolved)} in the directory, "
                "so the task is not assigned to them."
            )
        return Result.ok(
            message,
            data={
                "task_id": created.get("id"),
                "plan_id": plan_id,
                "assigned": list(assigned),
                "unresolved_assignees": unresolved,
            },
        )

    def _resolve_assignees(self, emails: list[str]) -> tuple[dict[str, str], list[str]]:
        """Map each e-mail to a directory id.  Unknown addresses are returned separately."""
        assigned: dict[str, str] = {}
        unresolved: list[str] = []
        for email in emails:
            try:
                user = self._graph.get_user_by_email(email)
            except GatewayError as exc:
                if exc.status_code != 404:
                    raise
                user = {}
            if user.get("id"):
                assigned[email] = user["id"]
            else:
                logger.info("Assignee %s has no directory entry", email)
                unresolved.append(email)
        return assigned, unresolved

    def update_task(self, context: RequestContext, args: dict[str, Any]) -> Result:
        task_id = _required(args, "task_id", "update a task")

        updates: dict[str, Any] = {}
        if args.get("title"):
            updates["title"] = args["title"]
        if args.get("status"):
            updates["percentComplete"] = _status_percent(args["status"])
        if args.get("due_date"):
            updates["dueDateTime"] = _due_iso(args["due_date"])
        if args.get("priority") is not None:
            updates["priority"] = _priority(args["priority"])
        if not updates:
            raise ValidationError("Tell me what to change: title, status, due date or priority.")

        _, etag = self._graph.get_task(task_id)
        try:
            self._graph.update_planner_task(task_id, updates, etag)
        except ConcurrencyError:
            logger.info("Task %s changed since it was read, re-reading once", task_id)
            _, etag = self._graph.get_task(task_id)
            self._graph.update_planner_task(task_id, updates, etag)

        changed = ", ".join(sorted(updates))
        return Result.ok(f"Task updated ({changed}).", data={"task_id": task_id, "updates": updates})


def create_planner(graph: GraphClient) -> CapabilityDescriptor:
    return CapabilityDescriptor(
        name=NAME,
        routing_description=ROUTING_DESCRIPTION,
        handler=PlannerCapability(graph).handle,
        parameters=PARAMETERS,
    )
