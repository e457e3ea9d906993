"""HTTP client for the Microsoft Graph REST API (v1.0) with token handling,
classification-aware retries, and an in-memory LRU cache.

Graph API docs: https://learn.microsoft.com/graph/api/overview
Every request carries ``Authorization: Bearer <token>`` obtained from the
injected ``CredentialCache``.

Response classification
───────────────────────
• 2xx                      → success (204 / empty body → ``{}``)
• 429, 5xx, transport error → retried with exponential backoff
• any other 4xx            → ``GatewayError`` immediately, body kept for diagnostics
• 409/412 on a conditional update → ``ConcurrencyError``
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from collaborator.errors import AuthError, ConcurrencyError, GatewayError
from collaborator.services.auth import CredentialCache
from collaborator.services.cache import LRUCache
from collaborator.services.metrics import metrics
from collaborator.services.retry import RetryPolicy, is_retryable_status, is_success

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_SCOPE = "https://graph.microsoft.com/.default"
JSON = "application/json"
CONFLICT_STATUSES = frozenset({409, 412})

# ── Cache key prefixes ──────────────────────────────────────────────
_CK_USER = "user:"
_CK_PLANS = "plans:"


class GraphClient:
    """Resilient wrapper around the Graph REST API.

    ``request`` is the single choke point: it attaches the bearer token and
    JSON headers, classifies the response, and retries transient failures
    according to ``retry_policy``.  The domain helpers below it are what
    capabilities call.
    """

    def __init__(
        self,
        credentials: CredentialCache,
        base_url: str = "https://graph.microsoft.com/v1.0",
        *,
        scopes: tuple[str, ...] = (DEFAULT_SCOPE,),
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] | None = None,
        cache: LRUCache | None = None,
        http_client: httpx.Client | None = None,
    ):
        self._credentials = credentials
        self._scopes = scopes
        self._base_url = base_url
        self._policy = retry_policy or RetryPolicy()
        self._sleep = sleep or time.sleep
        self._cache = cache or LRUCache()
        self._client = http_client or httpx.Client(
            base_url=base_url,
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    # ── Core request loop ────────────────────────────────────────────

    def _headers(self, etag: str | None, accept: str = JSON) -> dict[str, str]:
        token = self._credentials.get_token(self._scopes)
        headers = {
            "Authorization": f"Bearer {token.value}",
            "Content-Type": JSON,
            "Accept": accept,
        }
        if etag is not None:
            headers["If-Match"] = etag
        return headers

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def request(
        self,
        method: str,
        endpoint: str,
        body: dict[str, Any] | None = None,
        *,
        params: dict[str, Any] | None = None,
        etag: str | None = None,
    ) -> dict[str, Any]:
        """Execute an authenticated JSON request with exponential-backoff retries.

        Args:
            method: HTTP verb.  ``PATCH`` requires *etag*.
            endpoint: Path relative to the versioned base URL, e.g.
                ``"/planner/tasks"``.
            body: Optional JSON body.
            params: Optional query parameters.
            etag: Version token sent as ``If-Match``.

        Raises:
            AuthError: no token could be obtained.
            ConcurrencyError: missing or stale version token on an update.
            GatewayError: terminal 4xx, or retries exhausted.
        """
        return self._decode(self._send(method, endpoint, body, params=params, etag=etag))

    def request_text(
        self,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        accept: str = "text/plain",
    ) -> str:
        """GET a non-JSON resource (e.g. a VTT transcript) with the same retries."""
        return self._send("GET", endpoint, params=params, accept=accept).text

    def _send(
        self,
        method: str,
        endpoint: str,
        body: dict[str, Any] | None = None,
        *,
        params: dict[str, Any] | None = None,
        etag: str | None = None,
        accept: str = JSON,
    ) -> httpx.Response:
        method = method.upper()
        operation = f"{method} {endpoint}"
        if method == "PATCH" and not etag:
            raise ConcurrencyError(f"{operation} requires an If-Match version token")

        last_error: GatewayError | None = None
        t0 = time.perf_counter()
        max_attempts = self._policy.max_attempts

        for attempt in range(1, max_attempts + 1):
            headers = self._headers(etag, accept)
            try:
                response = self._client.request(
                    method,
                    endpoint,
                    params=params,
                    json=body,
                    headers=headers,
                )
            except httpx.TransportError as exc:
                last_error = GatewayError(f"{type(exc).__name__}: {exc}")
                reason = type(exc).__name__
            else:
                status = response.status_code
                if is_success(status):
                    elapsed = (time.perf_counter() - t0) * 1000
                    metrics.record_success("graph", operation, latency_ms=elapsed)
                    return response

                text = response.text
                if etag is not None and status in CONFLICT_STATUSES:
                    logger.warning("Graph API %s rejected version token (%d)", operation, status)
                    metrics.record_failure("graph", operation, error_type="concurrency")
                    raise ConcurrencyError(
                        f"Version token rejected ({status}): {text}",
                        status_code=status,
                        body=text,
                    )

                if not is_retryable_status(status):
                    logger.error("Graph API %s error: %d - %s", operation, status, text)
                    if status == 401:
                        self._credentials.invalidate()
                    metrics.record_failure("graph", operation, error_type=str(status))
                    raise GatewayError(
                        f"Client error {status}: {text}",
                        status_code=status,
                        body=text,
                    )

                last_error = GatewayError(
                    f"Transient error {status}: {text}",
                    status_code=status,
                    body=text,
                )
                reason = str(status)

            if attempt < max_attempts:
                delay = self._policy.delay_for(attempt)
                logger.warning(
                    "Graph API %s attempt %d/%d failed (%s). Retrying in %.1fs…",
                    operation, attempt, max_attempts, reason, delay,
                )
                metrics.record_retry("graph", operation, reason=reason)
                self._sleep(delay)

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_failure("graph", operation, error_type="retries_exhausted", latency_ms=elapsed)
        logger.error("Graph API %s failed after %d attempts: %s", operation, max_attempts, last_error)
        raise GatewayError(
            f"Graph API request failed after {max_attempts} attempts: {last_error}",
            status_code=last_error.status_code,
            body=last_error.body,
        ) from last_error

    # ── Users ────────────────────────────────────────────────────────

    def get_user_by_email(self, email: str) -> dict[str, Any]:
        """Resolve a user principal name / e-mail to its directory entry (cached)."""
        key = f"{_CK_USER}{email.lower()}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        data = self.request(
            "GET", f"/users/{email}", params={"$select": "id,displayName,mail"},
        )
        user = {
            "id": data.get("id"),
            "displayName": data.get("displayName"),
            "mail": data.get("mail") or email,
        }
        self._cache.put(key, user)
        return user

    def test_connectivity(self) -> dict[str, Any]:
        """Check that a token can be obtained and the directory can be read."""
        try:
            data = self.request(
                "GET", "/users", params={"$top": "1", "$select": "id,displayName,mail"},
            )
        except (AuthError, GatewayError) as exc:
            logger.warning("Graph connectivity check failed: %s", exc)
            return {"success": False, "message": f"Cannot reach Graph API: {exc}"}

        users = data.get("value", [])
        sample = users[0].get("mail") if users else None
        return {
            "success": True,
            "message": "Connected to Graph API.",
            "user_email": sample,
        }

    # ── Planner ──────────────────────────────────────────────────────

    def get_user_plans(self, upn: str) -> list[dict[str, Any]]:
        """List the Planner plans a user belongs to (cached)."""
        key = f"{_CK_PLANS}{upn.lower()}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        data = self.request("GET", f"/users/{upn}/planner/plans")
        plans = data.get("value", [])
        self._cache.put(key, plans)
        return plans

    def get_plan_buckets(self, plan_id: str) -> list[dict[str, Any]]:
        data = self.request("GET", f"/planner/plans/{plan_id}/buckets")
        return data.get("value", [])

    def get_plan_tasks(self, plan_id: str) -> list[dict[str, Any]]:
        """List tasks of a plan.  Not cached, task state changes constantly."""
        try:
            data = self.request("GET", f"/planner/plans/{plan_id}/tasks")
        except GatewayError as exc:
            if exc.status_code == 404:
                # The plan is gone; cached plan listings may still name it.
                removed = self._cache.invalidate_prefix(_CK_PLANS)
                logger.info("Plan %s not found, dropped %d cached plan listing(s)", plan_id, removed)
            raise
        return data.get("value", [])

    def get_task(self, task_id: str) -> tuple[dict[str, Any], str | None]:
        """Return the task and its ``@odata.etag`` version token."""
        task = self.request("GET", f"/planner/tasks/{task_id}")
        return task, task.get("@odata.etag")

    def create_planner_task(self, task: dict[str, Any]) -> dict[str, Any]:
        created = self.request("POST", "/planner/tasks", task)
        logger.info("Created Planner task %s in plan %s", created.get("id"), task.get("planId"))
        return created

    def update_planner_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        etag: str | None,
    ) -> dict[str, Any]:
        """Conditionally update a task.  Raises ``ConcurrencyError`` on a stale etag."""
        result = self.request("PATCH", f"/planner/tasks/{task_id}", updates, etag=etag)
        logger.info("Updated Planner task %s", task_id)
        return result

    # ── Meetings ─────────────────────────────────────────────────────

    def get_chat_online_meeting(self, chat_id: str) -> dict[str, Any] | None:
        """``onlineMeetingInfo`` of a meeting chat; ``None`` for any other chat."""
        try:
            chat = self.request("GET", f"/chats/{chat_id}")
        except GatewayError as exc:
            if exc.status_code == 404:
                return None
            raise
        info = chat.get("onlineMeetingInfo") or {}
        return info if info.get("joinWebUrl") else None

    def find_online_meeting(self, organizer_id: str, join_url: str) -> dict[str, Any] | None:
        escaped = join_url.replace("'", "''")
        data = self.request(
            "GET",
            f"/users/{organizer_id}/onlineMeetings",
            params={"$filter": f"JoinWebUrl eq '{escaped}'"},
        )
        meetings = data.get("value", [])
        return meetings[0] if meetings else None

    def list_meeting_transcripts(self, organizer_id: str, meeting_id: str) -> list[dict[str, Any]]:
        data = self.request("GET", f"/users/{organizer_id}/onlineMeetings/{meeting_id}/transcripts")
        return data.get("value", [])

    def get_transcript_content(self, organizer_id: str, meeting_id: str, transcript_id: str) -> str:
        """Raw WebVTT text of one transcript."""
        return self.request_text(
            f"/users/{organizer_id}/onlineMeetings/{meeting_id}/transcripts/{transcript_id}/content",
            params={"$format": "text/vtt"},
            accept="text/vtt",
        )

    def list_calendar_meetings(
        self,
        upn: str,
        start: str,
        end: str,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        """Online meetings on *upn*'s calendar between *start* and *end*, newest first."""
        data = self.request(
            "GET",
            f"/users/{upn}/calendarView",
            params={
                "startDateTime": start,
                "endDateTime": end,
                "$orderby": "start/dateTime desc",
                "$top": str(limit),
                "$select": "subject,start,end,organizer,isOnlineMeeting,onlineMeeting",
            },
        )
        return [e for e in data.get("value", []) if e.get("isOnlineMeeting")]

    # ── Mail ─────────────────────────────────────────────────────────

    def send_mail(self, message: dict[str, Any], sender: str) -> None:
        """Send *message* from the *sender* mailbox and keep a copy in Sent Items."""
        self.request(
            "POST",
            f"/users/{sender}/sendMail",
            {"message": message, "saveToSentItems": True},
        )
        recipients = [r["emailAddress"]["address"] for r in message.get("toRecipients", [])]
        logger.info("Sent mail from %s to %s", sender, ", ".join(recipients))

    def close(self) -> None:
        self._client.close()
