from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

WEBHOOK_EVENTS = Counter(
    "hookguard_webhook_events_total",
    "Webhook events by outcome",
    ["event_type", "outcome"],  # outcome: started/success/failure/duplicate
)

WEBHOOK_PROCESSING_DURATION = Histogram(
    "hookguard_webhook_processing_seconds",
    "Processing time of successfully handled webhook events",
    ["event_type"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

WEBHOOK_RETRIES = Counter(
    "hookguard_webhook_retries_total",
    "Retry attempts scheduled after a failed webhook operation",
    ["event_type", "operation"],
)

SIGNATURE_FAILURES = Counter(
    "hookguard_signature_failures_total",
    "Rejected webhook signatures",
    ["reason"],
)

DEDUP_ENTRIES = Gauge(
    "hookguard_dedup_entries",
    "Entries currently held by the deduplication cache",
)


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
