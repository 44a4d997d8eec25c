from hookguard.observability.metrics import (
    DEDUP_ENTRIES,
    SIGNATURE_FAILURES,
    WEBHOOK_EVENTS,
    WEBHOOK_PROCESSING_DURATION,
    WEBHOOK_RETRIES,
    generate_metrics,
    get_content_type,
)
from hookguard.observability.monitor import (
    EventTypeMetric,
    MetricsSummary,
    StartHandle,
    WebhookMonitor,
    get_monitor,
    reset_monitor,
)

__all__ = [
    # Metrics
    "WEBHOOK_EVENTS",
    "WEBHOOK_PROCESSING_DURATION",
    "WEBHOOK_RETRIES",
    "SIGNATURE_FAILURES",
    "DEDUP_ENTRIES",
    "generate_metrics",
    "get_content_type",
    # Monitor
    "WebhookMonitor",
    "EventTypeMetric",
    "MetricsSummary",
    "StartHandle",
    "get_monitor",
    "reset_monitor",
]
