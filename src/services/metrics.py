"""Batched CloudWatch metrics for provider calls, completions and tools.

Three families of data points are recorded:

* ``ExternalAPI/*`` for every HTTP call to Google, Asana or Fireflies
  (plus the completion service, recorded as service ``anthropic``).
* ``Tool/*`` for every tool dispatch, keyed by tool name and outcome.
* ``Completion/Tokens`` for input/output token usage per completion.

Points are buffered in memory and pushed by a daemon thread every
``FLUSH_INTERVAL_SECONDS`` when ``METRICS_ENABLED=true``.  Otherwise they
are logged at DEBUG and dropped on flush.

>>> from src.services.metrics import metrics
>>> metrics.record_success("google", "GET /calendars/primary/events", latency_ms=84.0)
>>> metrics.record_tool_call("search_emails", success=False, latency_ms=12.5)
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

FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # PutMetricData limit


def _dims(**pairs: str) -> list[dict[str, str]]:
    return [{"Name": name, "Value": value} for name, value in pairs.items()]


class MetricsClient:
    """Thread-safe buffer of CloudWatch data points."""

    def __init__(self, namespace: str | None = None) -> None:
        self.namespace = namespace or os.getenv("METRICS_NAMESPACE", "ChiefOfStaff")
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── External API calls ───────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """Record a successful call to an external service."""
        self._append(
            self._data_point(
                "ExternalAPI/RequestCount", 1, "Count",
                _dims(Service=service, Status="success"),
            ),
            self._data_point(
                "ExternalAPI/Latency", latency_ms, "Milliseconds",
                _dims(Service=service, Operation=operation),
            ),
        )
        logger.debug("Metric: %s %s ok %.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Record a failed call.  Latency is only recorded when measured."""
        points = [
            self._data_point(
                "ExternalAPI/RequestCount", 1, "Count",
                _dims(Service=service, Status="failure"),
            ),
            self._data_point(
                "ExternalAPI/ErrorCount", 1, "Count",
                _dims(Service=service, ErrorType=error_type),
            ),
        ]
        if latency_ms > 0:
            points.append(
                self._data_point(
                    "ExternalAPI/Latency", latency_ms, "Milliseconds",
                    _dims(Service=service, Operation=operation),
                )
            )
        self._append(*points)
        logger.debug(
            "Metric: %s %s failed (%s) %.1fms", service, operation, error_type, latency_ms,
        )

    # ── Tools & completions ──────────────────────────────────────────

    def record_tool_call(self, tool_name: str, *, success: bool, latency_ms: float) -> None:
        status = "success" if success else "failure"
        self._append(
            self._data_point(
                "Tool/InvocationCount", 1, "Count", _dims(Tool=tool_name, Status=status),
            ),
            self._data_point(
                "Tool/Latency", latency_ms, "Milliseconds", _dims(Tool=tool_name),
            ),
        )

    def record_token_usage(self, model: str, *, input_tokens: int, output_tokens: int) -> None:
        self._append(
            self._data_point(
                "Completion/Tokens", input_tokens, "Count",
                _dims(Model=model, Direction="input"),
            ),
            self._data_point(
                "Completion/Tokens", output_tokens, "Count",
                _dims(Model=model, Direction="output"),
            ),
        )

    # ── Flushing ─────────────────────────────────────────────────────

    def flush(self) -> int:
        """Send buffered points to CloudWatch.  Returns the number sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

        if not self._enabled:
            logger.debug("Metrics disabled; dropped %d data points", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=self.namespace, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    # ── Internal ─────────────────────────────────────────────────────

    @staticmethod
    def _data_point(
        name: str, value: float, unit: str, dimensions: list[dict[str, str]],
    ) -> dict[str, Any]:
        return {
            "MetricName": name,
            "Dimensions": dimensions,
            "Timestamp": datetime.now(UTC),
            "Value": value,
            "Unit": unit,
        }

    def _append(self, *points: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.extend(points)

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        threading.Thread(target=_loop, daemon=True, name="metrics-flush").start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (every %ds)", FLUSH_INTERVAL_SECONDS)


metrics = MetricsClient()
