"""Event deduplication cache.

Maps provider-assigned event ids to the result of their first successful
processing so that provider retries are answered without repeating side
effects.

Entries expire after a fixed TTL (24 hours by default). Expired entries
are purged when they are looked up, by an opportunistic sweep at most
every ``sweep_interval`` seconds, and by an optional background task.

``check``/``mark_processed`` leave a window in which two concurrent
deliveries of the same event both see "not processed". ``claim_or_get``
closes it within one process: the first caller claims the id, later
callers wait for the claim to resolve.

Example:
    cache: DeduplicationCache[dict] = DeduplicationCache()

    claim = await cache.claim_or_get(event_id)
    if isinstance(claim, Cached):
        return claim.result
    try:
        result = await handle(event)
    except Exception:
        cache.release(event_id)
        raise
    cache.mark_processed(event_id, result)
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

import structlog

from hookguard.observability.metrics import DEDUP_ENTRIES

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class DedupEntry(Generic[T]):
    """Cached outcome of a processed event."""

    result: T
    recorded_at: float


@dataclass(frozen=True)
class Cached(Generic[T]):
    """The event was already processed; ``result`` is the stored outcome."""

    result: T


@dataclass(frozen=True)
class Claimed:
    """The caller owns processing of the event and must mark or release it."""

    event_id: str


Claim = Cached[T] | Claimed


class DeduplicationCache(Generic[T]):
    """In-memory, process-local deduplication cache with TTL expiry."""

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        max_entries: int = 100_000,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            ttl: Seconds after which an entry is expired.
            max_entries: Upper bound on stored entries; oldest are evicted first.
            sweep_interval: Minimum seconds between opportunistic full sweeps.
            clock: Monotonic time source, injectable for tests.
        """
        if ttl <= 0:
            raise ValueError("ttl must be > 0")
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.ttl = ttl
        self.max_entries = max_entries
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: OrderedDict[str, DedupEntry[T]] = OrderedDict()
        self._pending: dict[str, asyncio.Event] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()
        self._task: asyncio.Task | None = None

    def _is_expired(self, entry: DedupEntry[T], now: float) -> bool:
        return now - entry.recorded_at > self.ttl

    def _sweep_locked(self, now: float) -> int:
        expired = [
            event_id
            for event_id, entry in self._entries.items()
            if self._is_expired(entry, now)
        ]
        for event_id in expired:
            del self._entries[event_id]
        self._last_sweep = now
        DEDUP_ENTRIES.set(len(self._entries))
        return len(expired)

    def _lookup_locked(self, event_id: str, now: float) -> DedupEntry[T] | None:
        if now - self._last_sweep >= self.sweep_interval:
            removed = self._sweep_locked(now)
            if removed:
                logger.debug("Dedup cache swept", removed=removed, remaining=len(self._entries))

        entry = self._entries.get(event_id)
        if entry is None:
            return None
        if self._is_expired(entry, now):
            del self._entries[event_id]
            DEDUP_ENTRIES.set(len(self._entries))
            return None
        return entry

    def check(self, event_id: str) -> T | None:
        """Return the cached result for ``event_id``, or None if absent or expired."""
        with self._lock:
            entry = self._lookup_locked(event_id, self._clock())
        return entry.result if entry is not None else None

    def mark_processed(self, event_id: str, result: T) -> None:
        """Store ``result`` for ``event_id`` (last write wins) and resolve any claim."""
        with self._lock:
            self._entries[event_id] = DedupEntry(result=result, recorded_at=self._clock())
            self._entries.move_to_end(event_id)

            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.warning(
                    "Dedup cache full, evicting oldest entry",
                    event_id=evicted,
                    max_entries=self.max_entries,
                )

            DEDUP_ENTRIES.set(len(self._entries))
            waiter = self._pending.pop(event_id, None)

        if waiter is not None:
            waiter.set()

    def release(self, event_id: str) -> None:
        """Drop a pending claim without storing a result."""
        with self._lock:
            waiter = self._pending.pop(event_id, None)
        if waiter is not None:
            waiter.set()

    async def claim_or_get(self, event_id: str) -> Claim[T]:
        """Atomically return the cached result or claim the event for processing.

        If another task already holds the claim, waits until it is marked or
        released and evaluates again.
        """
        while True:
            with self._lock:
                entry = self._lookup_locked(event_id, self._clock())
                if entry is not None:
                    return Cached(entry.result)

                waiter = self._pending.get(event_id)
                if waiter is None:
                    self._pending[event_id] = asyncio.Event()
                    return Claimed(event_id)

            logger.debug("Event already in flight, waiting", event_id=event_id)
            await waiter.wait()

    def is_pending(self, event_id: str) -> bool:
        """Whether ``event_id`` is currently claimed by an in-flight task."""
        with self._lock:
            return event_id in self._pending

    def sweep(self) -> int:
        """Remove all expired entries. Returns the number removed."""
        with self._lock:
            return self._sweep_locked(self._clock())

    def clear(self) -> None:
        """Remove all entries. Pending claims are kept."""
        with self._lock:
            self._entries.clear()
            DEDUP_ENTRIES.set(0)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, event_id: object) -> bool:
        if not isinstance(event_id, str):
            return False
        with self._lock:
            return self._lookup_locked(event_id, self._clock()) is not None

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Stop the background sweep loop."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            removed = self.sweep()
            if removed:
                logger.info("Dedup cache swept", removed=removed, remaining=len(self))
