"""Webhook processing pipeline.

Runs one inbound delivery through the reliability layer:

1. verify the signature header (never retried)
2. parse the body into a ``WebhookEvent``
3. claim the event id, or answer from the dedup cache
4. time the handler with the monitor
5. run the handler under the retry executor (and optional deadline)
6. cache the result on success; release the claim on failure

The handler is the caller's business logic. Its return value is cached
and re-served for redeliveries; any exception it raises is retried.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import structlog

from hookguard.errors import MalformedPayloadError, ProcessingTimeoutError
from hookguard.observability.monitor import WebhookMonitor
from hookguard.webhooks.dedup import Cached, DeduplicationCache
from hookguard.webhooks.retry import RetryContext, RetryExecutor, RetryPolicy
from hookguard.webhooks.verifier import SignatureVerifier

logger = structlog.get_logger()

T = TypeVar("T")

PROCESS_OPERATION = "process_webhook_event"


@dataclass
class WebhookEvent:
    """Authenticated, parsed webhook event."""

    id: str
    type: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class PipelineResult(Generic[T]):
    """Outcome of a delivery that did not fail."""

    event: WebhookEvent
    result: T
    duplicate: bool = False
    signed_at: int | None = None

    @property
    def status(self) -> str:
        return "duplicate" if self.duplicate else "processed"


EventParser = Callable[[bytes], WebhookEvent]
EventHandler = Callable[[WebhookEvent], Awaitable[T]]


def parse_json_event(payload: bytes) -> WebhookEvent:
    """Parse a JSON webhook body with string ``id`` and ``type`` fields.

    Raises:
        MalformedPayloadError: Body is not a JSON object with an id and a type.
    """
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedPayloadError(f"Invalid JSON payload: {e}") from e

    if not isinstance(data, dict):
        raise MalformedPayloadError("Webhook payload must be a JSON object")

    event_id = data.get("id")
    event_type = data.get("type")
    if not isinstance(event_id, str) or not event_id:
        raise MalformedPayloadError("Webhook payload has no event id")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedPayloadError("Webhook payload has no event type")

    return WebhookEvent(id=event_id, type=event_type, data=data)


class WebhookPipeline(Generic[T]):
    """Composes verifier, dedup cache, retry executor and monitor."""

    def __init__(
        self,
        verifier: SignatureVerifier,
        cache: DeduplicationCache[T],
        executor: RetryExecutor,
        monitor: WebhookMonitor,
        retry_policy: RetryPolicy | None = None,
        parser: EventParser = parse_json_event,
        processing_timeout: float | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            verifier: Signature verifier bound to the shared secret.
            cache: Dedup cache; long-lived, shared by all requests.
            executor: Retry executor wrapping the handler.
            monitor: Statistics sink; long-lived, shared by all requests.
            retry_policy: Overrides the executor's policy.
            parser: Turns the authenticated body into a WebhookEvent.
            processing_timeout: Overall deadline in seconds for the retry
                loop. None or 0 disables it.
        """
        self.verifier = verifier
        self.cache = cache
        self.executor = executor
        self.monitor = monitor
        self.retry_policy = retry_policy
        self.parser = parser
        self.processing_timeout = processing_timeout or None

    async def process(
        self,
        payload: bytes,
        signature: str | None,
        handler: EventHandler[T],
    ) -> PipelineResult[T]:
        """Process one delivery.

        Raises:
            SignatureError: Header malformed, stale, or not matching.
            MalformedPayloadError: Authenticated body is not a valid event.
            ExhaustedRetriesError: Handler failed on every attempt.
            ProcessingTimeoutError: Deadline elapsed before the handler succeeded.
        """
        signed_at = self.verifier.verify_or_raise(payload, signature)
        event = self.parser(payload)
        log = logger.bind(event_id=event.id, event_type=event.type)

        claim = await self.cache.claim_or_get(event.id)
        if isinstance(claim, Cached):
            self.monitor.record_duplicate(event.type)
            log.info("Webhook event already processed, returning cached result")
            return PipelineResult(event=event, result=claim.result, duplicate=True, signed_at=signed_at)

        handle = self.monitor.start_processing(event.type)
        try:
            result = await self._run_handler(event, handler)
        except BaseException:
            # cancellation counts as failure too; waiters must not hang
            self.cache.release(event.id)
            self.monitor.record_failure(event.type)
            raise

        self.cache.mark_processed(event.id, result)
        elapsed_ms = self.monitor.record_success(event.type, handle)
        log.info("Webhook event processed", processing_time_ms=round(elapsed_ms, 2))
        return PipelineResult(event=event, result=result, signed_at=signed_at)

    async def _run_handler(self, event: WebhookEvent, handler: EventHandler[T]) -> T:
        context = RetryContext(
            event_type=event.type,
            event_id=event.id,
            operation=PROCESS_OPERATION,
        )
        attempts = 0

        async def attempt() -> T:
            nonlocal attempts
            attempts += 1
            return await handler(event)

        retry = self.executor.execute_with_retry(
            attempt,
            policy=self.retry_policy,
            context=context,
        )
        if self.processing_timeout is None:
            return await retry

        try:
            return await asyncio.wait_for(retry, timeout=self.processing_timeout)
        except asyncio.TimeoutError as e:
            logger.error(
                "Webhook processing timed out",
                event_type=event.type,
                event_id=event.id,
                timeout=self.processing_timeout,
                attempts=attempts,
            )
            raise ProcessingTimeoutError(context, self.processing_timeout, attempts=attempts) from e
