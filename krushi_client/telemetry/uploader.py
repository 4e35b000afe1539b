"""Batched, at-least-once delivery of activity entries.

Entries wait in an in-memory queue and are posted in batches to
``/activity-logs/batch``:

- when the queue reaches the batch size (eager flush),
- on a recurring timer,
- on ``stop()``.

A batch leaves the queue only once the server acknowledged it. A failed batch
goes back to the *head* of the queue in its original order, so the next
flush re-sends the same entries before anything newer. Each entry gets a
bounded number of delivery attempts; consecutive failures back off
exponentially before the timer or the eager trigger try again.
"""
from __future__ import annotations
import asyncio
import logging
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Set

from ..core.api.client import ApiClient
from ..core.api.exceptions import ApiError
from .activity import ActivityLogEntry

logger = logging.getLogger(__name__)

BATCH_PATH = "/activity-logs/batch"
DEFAULT_BATCH_SIZE = 10
DEFAULT_FLUSH_INTERVAL = 30.0
DEFAULT_MAX_ATTEMPTS = 5


class ActivityEventQueue:
    """Ordered buffer of entries; insertion order is generation order."""

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE, on_full: Optional[Callable[[], None]] = None):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.batch_size = batch_size
        self.on_full = on_full
        self._entries: Deque[ActivityLogEntry] = deque()

    def enqueue(self, entry: ActivityLogEntry) -> None:
        """Append to the tail. Never raises, never waits."""
        self._entries.append(entry)
        if len(self._entries) >= self.batch_size and self.on_full is not None:
            try:
                self.on_full()
            except Exception:
                logger.exception("Queue-full trigger failed")

    def take(self, count: int) -> List[ActivityLogEntry]:
        """Remove and return up to ``count`` entries from the head."""
        batch = []
        while self._entries and len(batch) < count:
            batch.append(self._entries.popleft())
        return batch

    def restore(self, batch: List[ActivityLogEntry]) -> None:
        """Put a batch back at the head, keeping its internal order."""
        self._entries.extendleft(reversed(batch))

    def snapshot(self) -> List[ActivityLogEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class BatchUploader:
    """Drains an ActivityEventQueue to the server.

    Usage:
        uploader = BatchUploader(client, batch_size=10, flush_interval=30)
        uploader.start()              # inside a running event loop
        uploader.enqueue(entry)
        ...
        await uploader.stop()         # final flush attempt
    """

    def __init__(
        self,
        client: ApiClient,
        queue: Optional[ActivityEventQueue] = None,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base: float = 2.0,
        backoff_max: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.queue = queue if queue is not None else ActivityEventQueue(batch_size)
        self.queue.on_full = self._schedule_flush
        self.flush_interval = flush_interval
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._clock = clock

        self._attempts: Dict[str, int] = {}
        self._flushing = False
        self._consecutive_failures = 0
        self._next_attempt_at = 0.0
        self._timer: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

        self.delivered = 0
        self.dropped = 0

    # ── Producer side ─────────────────────────────────────────────────

    def enqueue(self, entry: ActivityLogEntry) -> None:
        self.queue.enqueue(entry)

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; the timer delivers once one is running.
            return
        if self._flushing or self.in_backoff:
            return
        task = loop.create_task(self._flush_if_due())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ── State ─────────────────────────────────────────────────────────

    @property
    def is_flushing(self) -> bool:
        return self._flushing

    @property
    def in_backoff(self) -> bool:
        return self._clock() < self._next_attempt_at

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def attempts_for(self, entry_id: str) -> int:
        return self._attempts.get(entry_id, 0)

    # ── Delivery ──────────────────────────────────────────────────────

    async def flush(self) -> bool:
        """Deliver one batch from the head of the queue.

        Single-flight: returns False immediately if a flush is already
        running or the queue is empty. Ignores the backoff window.

        Returns:
            True if a batch was acknowledged by the server
        """
        if self._flushing or not len(self.queue):
            return False
        self._flushing = True
        try:
            batch = self.queue.take(self.queue.batch_size)
            return await self._deliver(batch)
        finally:
            self._flushing = False

    async def _deliver(self, batch: List[ActivityLogEntry]) -> bool:
        try:
            await self.client.post(BATCH_PATH, json={"activities": [entry.to_payload() for entry in batch]})
        except ApiError as e:
            self._handle_failure(batch, e)
            return False
        except BaseException:
            self.queue.restore(batch)
            raise

        for entry in batch:
            self._attempts.pop(entry.id, None)
        self._consecutive_failures = 0
        self._next_attempt_at = 0.0
        self.delivered += len(batch)
        logger.info("Delivered %d activity entries", len(batch))
        return True

    def _handle_failure(self, batch: List[ActivityLogEntry], error: ApiError) -> None:
        self._consecutive_failures += 1
        delay = min(self.backoff_max, self.backoff_base * 2 ** (self._consecutive_failures - 1))
        self._next_attempt_at = self._clock() + delay

        retained = []
        for entry in batch:
            attempts = self._attempts.get(entry.id, 0) + 1
            if attempts >= self.max_attempts:
                self._attempts.pop(entry.id, None)
                self.dropped += 1
                logger.warning("Dropping activity %s after %d failed deliveries", entry.id, attempts)
            else:
                self._attempts[entry.id] = attempts
                retained.append(entry)
        self.queue.restore(retained)

        logger.warning(
            "Activity batch of %d failed (%s); %d re-queued, next attempt in %.1fs",
            len(batch), error, len(retained), delay,
        )

    async def _flush_if_due(self) -> None:
        """Drain the queue batch by batch unless backing off or a batch fails."""
        while len(self.queue) and not self.in_backoff:
            if not await self.flush():
                break

    # ── Timer ─────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the periodic flush. Must be called from a running event loop."""
        if self._timer is not None and not self._timer.done():
            return
        self._timer = asyncio.get_running_loop().create_task(self._run_timer())

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            try:
                await self._flush_if_due()
            except Exception:
                logger.exception("Scheduled activity flush failed")

    async def stop(self, flush: bool = True) -> None:
        """Stop the timer, wait for eager flushes, optionally try one final drain."""
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if flush:
            while len(self.queue):
                if not await self.flush():
                    break
