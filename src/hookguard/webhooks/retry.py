"""Exponential backoff for webhook processing.

Re-invokes a failing async operation up to ``max_retries`` more times,
sleeping ``min(base_delay * backoff_multiplier ** attempt, max_delay)``
between attempts. Any exception is treated as retryable; cancellation is
not intercepted.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

from hookguard.errors import ExhaustedRetriesError
from hookguard.observability.metrics import WEBHOOK_RETRIES

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff configuration. Delays are in seconds."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.backoff_multiplier <= 0:
            raise ValueError("backoff_multiplier must be > 0")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


DEFAULT_RETRY_POLICY = RetryPolicy()


@dataclass(frozen=True)
class RetryContext:
    """Identifies the operation in logs and errors."""

    event_type: str = "unknown"
    event_id: str = "unknown"
    operation: str = "unknown"


def compute_backoff_delay(attempt: int, policy: RetryPolicy = DEFAULT_RETRY_POLICY) -> float:
    """Delay in seconds before retrying after failed attempt ``attempt`` (0-based)."""
    try:
        delay = policy.base_delay * policy.backoff_multiplier**attempt
    except OverflowError:
        # growth past float range is far beyond any cap
        return policy.max_delay if policy.base_delay > 0 else 0.0
    return max(0.0, min(delay, policy.max_delay))


class RetryExecutor:
    """Runs async operations with bounded exponential backoff."""

    def __init__(
        self,
        policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.policy = policy
        self._sleep = sleep

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        context: RetryContext | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds or the retry budget is spent.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt.
            policy: Overrides the executor's default policy for this call.
            context: Event identification for logs and the final error.

        Returns:
            The value of the first successful attempt.

        Raises:
            ExhaustedRetriesError: Every attempt failed; chained to the last error.
        """
        policy = policy or self.policy
        context = context or RetryContext()
        last_error: Exception | None = None

        for attempt in range(policy.max_retries + 1):
            try:
                result = await operation()
            except Exception as e:
                last_error = e

                if attempt == policy.max_retries:
                    logger.error(
                        "Webhook operation failed, giving up",
                        event_type=context.event_type,
                        event_id=context.event_id,
                        operation=context.operation,
                        retries=policy.max_retries,
                        total_attempts=attempt + 1,
                        error=str(e),
                    )
                    break

                delay = compute_backoff_delay(attempt, policy)
                WEBHOOK_RETRIES.labels(
                    event_type=context.event_type,
                    operation=context.operation,
                ).inc()
                logger.warning(
                    "Webhook operation failed, retrying",
                    event_type=context.event_type,
                    event_id=context.event_id,
                    operation=context.operation,
                    attempt=attempt + 1,
                    max_retries=policy.max_retries,
                    next_retry_in=delay,
                    error=str(e),
                )
                await self._sleep(delay)
                continue

            if attempt > 0:
                logger.info(
                    "Webhook operation recovered",
                    event_type=context.event_type,
                    event_id=context.event_id,
                    operation=context.operation,
                    retries=attempt,
                )
            return result

        raise ExhaustedRetriesError(
            context, attempts=policy.max_retries + 1, last_error=last_error
        ) from last_error


_default_executor = RetryExecutor()


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    context: RetryContext | None = None,
) -> T:
    """Module-level shortcut using a shared executor with ``asyncio.sleep``."""
    return await _default_executor.execute_with_retry(operation, policy, context)
