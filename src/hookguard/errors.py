"""Exception hierarchy for webhook handling.

Signature and payload errors are permanent for the request that carried
them and are never retried. Processing errors are raised only after the
retry budget (or the overall deadline) is spent.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hookguard.webhooks.retry import RetryContext
    from hookguard.webhooks.verifier import VerificationStatus


class WebhookError(Exception):
    """Base class for all webhook handling errors."""

    status_code: int = 500


class SignatureError(WebhookError):
    """The payload could not be authenticated."""

    status_code = 401

    def __init__(
        self,
        message: str,
        kind: VerificationStatus,
        timestamp: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.timestamp = timestamp


class MalformedSignatureError(SignatureError):
    """Signature header is missing required fields."""

    status_code = 400


class StaleSignatureError(SignatureError):
    """Signature timestamp is outside the tolerance window."""


class SignatureMismatchError(SignatureError):
    """Digest does not match the payload and secret."""


class MalformedPayloadError(WebhookError):
    """Authenticated body could not be parsed into an event."""

    status_code = 400


class TransientProcessingError(WebhookError):
    """Failure of the business callback that is worth retrying.

    Callbacks may raise this explicitly, but any exception they raise is
    treated the same way.
    """


class ExhaustedRetriesError(WebhookError):
    """All processing attempts failed."""

    def __init__(
        self,
        context: RetryContext,
        attempts: int,
        last_error: BaseException | None,
        message: str | None = None,
    ) -> None:
        if message is None:
            detail = f": {last_error}" if last_error is not None else ""
            message = (
                f"{context.operation} failed for {context.event_type} "
                f"event {context.event_id} after {attempts} attempt(s){detail}"
            )
        super().__init__(message)
        self.context = context
        self.attempts = attempts
        self.last_error = last_error


class ProcessingTimeoutError(ExhaustedRetriesError):
    """The overall processing deadline elapsed before any attempt succeeded."""

    def __init__(
        self,
        context: RetryContext,
        timeout: float,
        attempts: int = 0,
        last_error: BaseException | None = None,
    ) -> None:
        super().__init__(
            context,
            attempts=attempts,
            last_error=last_error,
            message=(
                f"{context.operation} for {context.event_type} event "
                f"{context.event_id} timed out after {timeout}s ({attempts} attempt(s))"
            ),
        )
        self.timeout = timeout
