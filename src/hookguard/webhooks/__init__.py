"""Hookguard Webhook Reliability Module.

Verifies, deduplicates and retries inbound webhook deliveries.

Components:
- SignatureVerifier: ``t=<ts>,<algo>=<digest>`` headers, constant-time compare
- DeduplicationCache: event id -> cached result, 24h TTL
- RetryExecutor: bounded exponential backoff around async callbacks
- WebhookPipeline: composes the above with a WebhookMonitor

Usage:
    from hookguard.webhooks import (
        DeduplicationCache,
        RetryExecutor,
        SignatureVerifier,
        WebhookPipeline,
    )
    from hookguard.observability import WebhookMonitor

    pipeline = WebhookPipeline(
        verifier=SignatureVerifier(secret="whsec_..."),
        cache=DeduplicationCache(),
        executor=RetryExecutor(),
        monitor=WebhookMonitor(),
    )

    outcome = await pipeline.process(body, headers["X-Signature"], handle_event)
"""

from hookguard.webhooks.dedup import (
    Cached,
    Claimed,
    DedupEntry,
    DeduplicationCache,
)
from hookguard.webhooks.pipeline import (
    PipelineResult,
    WebhookEvent,
    WebhookPipeline,
    parse_json_event,
)
from hookguard.webhooks.retry import (
    DEFAULT_RETRY_POLICY,
    RetryContext,
    RetryExecutor,
    RetryPolicy,
    compute_backoff_delay,
    execute_with_retry,
)
from hookguard.webhooks.verifier import (
    SignatureAlgorithm,
    SignatureHeader,
    SignatureVerifier,
    VerificationResult,
    VerificationStatus,
    compute_digest,
    generate_signature,
    parse_signature_header,
    verify_signature,
)

__all__ = [
    # Verification
    "SignatureVerifier",
    "SignatureAlgorithm",
    "SignatureHeader",
    "VerificationResult",
    "VerificationStatus",
    "compute_digest",
    "generate_signature",
    "parse_signature_header",
    "verify_signature",
    # Deduplication
    "DeduplicationCache",
    "DedupEntry",
    "Cached",
    "Claimed",
    # Retry
    "RetryExecutor",
    "RetryPolicy",
    "RetryContext",
    "DEFAULT_RETRY_POLICY",
    "compute_backoff_delay",
    "execute_with_retry",
    # Pipeline
    "WebhookPipeline",
    "WebhookEvent",
    "PipelineResult",
    "parse_json_event",
]
