"""WebhookMonitor - per-event-type processing statistics.

Accumulates counters and timings in process memory for dashboards and
alerting, and mirrors them into Prometheus series. One monitor is meant
to live for the whole process; construct it at startup and pass it to
request handlers (``get_monitor()`` returns a shared default).
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field, replace
from typing import Any

import structlog

from hookguard.observability.metrics import WEBHOOK_EVENTS, WEBHOOK_PROCESSING_DURATION

logger = structlog.get_logger()


@dataclass
class EventTypeMetric:
    """Counters for a single event type."""

    total_events: int = 0
    successful_events: int = 0
    failed_events: int = 0
    duplicate_events: int = 0
    average_processing_time_ms: float = 0.0
    last_processed_at: float | None = None  # unix seconds

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        data = asdict(self)
        data["average_processing_time_ms"] = round(self.average_processing_time_ms, 3)
        return data


@dataclass
class MetricsSummary:
    """Aggregate across all event types."""

    total_events: int = 0
    successful_events: int = 0
    failed_events: int = 0
    duplicate_events: int = 0
    average_processing_time_ms: float = 0.0
    success_rate: float = 0.0
    event_types: dict[str, EventTypeMetric] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "total_events": self.total_events,
            "successful_events": self.successful_events,
            "failed_events": self.failed_events,
            "duplicate_events": self.duplicate_events,
            "average_processing_time_ms": round(self.average_processing_time_ms, 3),
            "success_rate": round(self.success_rate, 4),
            "event_types": {name: m.to_dict() for name, m in self.event_types.items()},
        }


@dataclass(frozen=True)
class StartHandle:
    """Returned by ``start_processing``; carries the monotonic start time."""

    event_type: str
    started_at: float


class WebhookMonitor:
    """Process-wide webhook processing statistics.

    All mutations hold an internal lock, so the monitor can be shared by
    concurrent tasks and worker threads.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the monitor.

        Args:
            clock: Monotonic clock used for processing durations (seconds).
            now: Wall clock used for ``last_processed_at`` (unix seconds).
        """
        self._clock = clock
        self._now = now
        self._metrics: dict[str, EventTypeMetric] = {}
        self._lock = threading.Lock()

    def _get_or_create(self, event_type: str, total_events: int = 0) -> EventTypeMetric:
        metric = self._metrics.get(event_type)
        if metric is None:
            metric = EventTypeMetric(total_events=total_events)
            self._metrics[event_type] = metric
        return metric

    def start_processing(self, event_type: str) -> StartHandle:
        """Count a new event and start its timer."""
        with self._lock:
            self._get_or_create(event_type).total_events += 1
        WEBHOOK_EVENTS.labels(event_type=event_type, outcome="started").inc()
        return StartHandle(event_type=event_type, started_at=self._clock())

    def record_success(self, event_type: str, handle: StartHandle) -> float:
        """Record a successfully processed event. Returns elapsed milliseconds."""
        elapsed_ms = max(0.0, (self._clock() - handle.started_at) * 1000)

        with self._lock:
            # success without start_processing still counts as one event
            metric = self._get_or_create(event_type, total_events=1)
            metric.successful_events += 1
            metric.last_processed_at = self._now()
            n = metric.successful_events
            metric.average_processing_time_ms = (
                metric.average_processing_time_ms * (n - 1) + elapsed_ms
            ) / n

        WEBHOOK_EVENTS.labels(event_type=event_type, outcome="success").inc()
        WEBHOOK_PROCESSING_DURATION.labels(event_type=event_type).observe(elapsed_ms / 1000)
        return elapsed_ms

    def record_failure(self, event_type: str) -> None:
        """Record an event whose processing failed."""
        with self._lock:
            metric = self._get_or_create(event_type, total_events=1)
            metric.failed_events += 1
            metric.last_processed_at = self._now()
        WEBHOOK_EVENTS.labels(event_type=event_type, outcome="failure").inc()

    def record_duplicate(self, event_type: str) -> None:
        """Record a redelivered event that was answered from the cache."""
        with self._lock:
            self._get_or_create(event_type).duplicate_events += 1
        WEBHOOK_EVENTS.labels(event_type=event_type, outcome="duplicate").inc()
        logger.info("Duplicate webhook event", event_type=event_type)

    def get_metrics(self, event_type: str | None = None) -> EventTypeMetric | MetricsSummary | None:
        """Return a snapshot for one event type, or a summary of all of them.

        Returns None when ``event_type`` is given but has never been seen.
        """
        with self._lock:
            if event_type is not None:
                metric = self._metrics.get(event_type)
                return replace(metric) if metric is not None else None

            snapshot = {name: replace(m) for name, m in self._metrics.items()}

        summary = MetricsSummary(event_types=snapshot)
        for metric in snapshot.values():
            summary.total_events += metric.total_events
            summary.successful_events += metric.successful_events
            summary.failed_events += metric.failed_events
            summary.duplicate_events += metric.duplicate_events

        if summary.total_events > 0:
            summary.success_rate = summary.successful_events / summary.total_events
        if snapshot:
            summary.average_processing_time_ms = sum(
                m.average_processing_time_ms for m in snapshot.values()
            ) / len(snapshot)
        return summary

    def reset_metrics(self) -> None:
        """Clear all accumulated state. Prometheus series are not reset."""
        with self._lock:
            self._metrics.clear()
        logger.info("Webhook metrics reset")

    @property
    def event_types(self) -> list[str]:
        with self._lock:
            return list(self._metrics)


_monitor: WebhookMonitor | None = None


def get_monitor() -> WebhookMonitor:
    """Get or create the process-wide default monitor."""
    global _monitor
    if _monitor is None:
        _monitor = WebhookMonitor()
    return _monitor


def reset_monitor() -> None:
    """Drop the process-wide default monitor. Useful for testing."""
    global _monitor
    _monitor = None
