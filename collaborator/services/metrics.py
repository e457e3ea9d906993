"""CloudWatch custom metrics emitter with background batching.

Publishes per-call metrics (count, latency, errors, retries) for every
external service the agent talks to: ``graph`` (REST API), ``identity``
(token endpoint) and ``anthropic`` (decision oracle, summariser).

Design
------
* Datapoints are collected in a thread-safe in-memory buffer.
* A daemon thread flushes the buffer to CloudWatch every
  ``FLUSH_INTERVAL_SECONDS``.
* When ``METRICS_ENABLED != "true"`` datapoints are logged at DEBUG and
  dropped on flush; boto3 is never imported.
* Each ``put_metric_data`` call sends at most ``MAX_BATCH_SIZE`` datapoints.

Usage
-----
>>> from collaborator.services.metrics import metrics
>>> metrics.record_success("graph", "GET /planner/plans", latency_ms=123.4)
>>> metrics.record_retry("graph", "POST /planner/tasks", reason="503")
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "Collaborator"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call


def _dims(**pairs: str) -> list[dict[str, str]]:
    return [{"Name": name, "Value": value} for name, value in pairs.items()]


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    @property
    def enabled(self) -> bool:
        return self._enabled

    # ── Public API ────────────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """Record a successful external call."""
        now = datetime.now(UTC)
        self._put("ExternalAPI/RequestCount", 1, "Count", now,
                  _dims(Service=service, Status="success"))
        self._put("ExternalAPI/Latency", latency_ms, "Milliseconds", now,
                  _dims(Service=service, Operation=operation))
        logger.debug("Metric: %s %s success latency=%.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Record a failed external call (after any retries)."""
        now = datetime.now(UTC)
        self._put("ExternalAPI/RequestCount", 1, "Count", now,
                  _dims(Service=service, Status="failure"))
        self._put("ExternalAPI/ErrorCount", 1, "Count", now,
                  _dims(Service=service, ErrorType=error_type))
        if latency_ms > 0:
            self._put("ExternalAPI/Latency", latency_ms, "Milliseconds", now,
                      _dims(Service=service, Operation=operation))
        logger.debug(
            "Metric: %s %s failure error=%s latency=%.1fms",
            service, operation, error_type, latency_ms,
        )

    def record_retry(self, service: str, operation: str, reason: str) -> None:
        """Record one retry attempt caused by a transient failure."""
        self._put("ExternalAPI/RetryCount", 1, "Count", datetime.now(UTC),
                  _dims(Service=service, Reason=reason))
        logger.debug("Metric: %s %s retry reason=%s", service, operation, reason)

    def flush(self) -> int:
        """Send buffered datapoints to CloudWatch.  Returns count sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

        if not self._enabled:
            logger.debug("Metrics flush skipped (not enabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    # ── Internal ──────────────────────────────────────────────────────

    def _put(
        self,
        name: str,
        value: float,
        unit: str,
        timestamp: datetime,
        dimensions: list[dict[str, str]],
    ) -> None:
        datum = {
            "MetricName": name,
            "Dimensions": dimensions,
            "Timestamp": timestamp,
            "Value": value,
            "Unit": unit,
        }
        with self._lock:
            self._buffer.append(datum)

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        t = threading.Thread(target=_loop, daemon=True, name="metrics-flush")
        t.start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()
