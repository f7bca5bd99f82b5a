from __future__ import annotations

"""Durable, priority-ordered outbox for telemetry.

Entries survive process restarts in the `telemetry_queue` table and are
delivered by `flush()` through a caller-supplied publish function.  A failed
entry waits out an exponential backoff window before its next attempt and is
dropped for good once its retry count exceeds `max_retries`.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Tuple, Union
import inspect
import logging
import sqlite3
import time

from .database import Database
from .payloads import WirePayload

logger = logging.getLogger(__name__)

PublishResult = Union[bool, Awaitable[bool]]
PublishFn = Callable[[str, str], PublishResult]


@dataclass
class QueueEntry:
    id: int
    entry_type: str
    payload: str
    destination: str
    created_at: float
    retry_count: int = 0
    priority: int = 0
    last_attempt: Optional[float] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> QueueEntry:
        return cls(
            id=int(row["id"]),
            entry_type=row["type"],
            payload=row["payload"],
            destination=row["destination"],
            created_at=float(row["created_at"]),
            retry_count=int(row["retry_count"]),
            priority=int(row["priority"]),
            last_attempt=row["last_attempt"],
        )


def backoff_delay(retry_count: int, base: float = 1.0, cap: float = 300.0) -> float:
    """Seconds to wait after the `retry_count`-th failure: base, 2*base, 4*base, ... up to cap."""
    if retry_count <= 0:
        return 0.0
    return min(base * (2 ** (retry_count - 1)), cap)


class DeliveryQueue:
    MAX_QUEUE_SIZE = 500
    MAX_RETRIES = 3
    BATCH_SIZE = 100
    BACKOFF_BASE = 1.0
    BACKOFF_CAP = 300.0

    PRIORITY_EXPLORATION_LOG = 10
    PRIORITY_NAVIGATION = 5

    def __init__(
        self,
        db: Database,
        max_size: int = MAX_QUEUE_SIZE,
        max_retries: int = MAX_RETRIES,
        backoff_base: float = BACKOFF_BASE,
        backoff_cap: float = BACKOFF_CAP,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db = db
        self.max_size = max_size
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self._clock = clock

    # ------------------------------------------------------------------
    def enqueue(
        self,
        entry_type: str,
        payload: Union[str, WirePayload],
        destination: str,
        priority: int = 0,
    ) -> Optional[int]:
        """Append an entry, pruning the lowest-priority/oldest tenth when full."""
        body = payload.to_wire() if isinstance(payload, WirePayload) else payload
        try:
            size = self._db.queue_size()
            if size >= self.max_size:
                to_remove = (size - self.max_size) + max(1, self.max_size // 10)
                removed = self._db.prune_queue(to_remove)
                logger.warning("Queue full, pruned %d lowest-priority entries", removed)
            entry_id = self._db.insert_queue_entry(entry_type, body, destination, self._clock(), priority)
        except sqlite3.Error:
            logger.exception("Failed to queue %s telemetry", entry_type)
            return None
        logger.debug("Queued %s telemetry (%d bytes) for %s", entry_type, len(body), destination)
        return entry_id

    def enqueue_exploration_log(self, payload: Union[str, WirePayload], destination: str) -> Optional[int]:
        return self.enqueue("exploration_log", payload, destination, self.PRIORITY_EXPLORATION_LOG)

    def enqueue_navigation(self, payload: Union[str, WirePayload], destination: str) -> Optional[int]:
        return self.enqueue("navigation", payload, destination, self.PRIORITY_NAVIGATION)

    # ------------------------------------------------------------------
    def is_due(self, entry: QueueEntry, now: Optional[float] = None) -> bool:
        """False while the entry sits inside its backoff window."""
        if entry.retry_count == 0 or entry.last_attempt is None:
            return True
        now = self._clock() if now is None else now
        delay = backoff_delay(entry.retry_count, self.backoff_base, self.backoff_cap)
        return now - entry.last_attempt >= delay

    async def flush(self, publish_fn: PublishFn, batch_size: int = BATCH_SIZE) -> int:
        """Deliver due entries, priority first then oldest; returns the delivered count.

        A publish function may return a bool or an awaitable bool; raising
        counts as a failed attempt.
        """
        delivered = 0
        try:
            dropped = self._db.delete_exhausted_entries(self.max_retries)
            if dropped:
                logger.warning("Dropped %d entries past %d retries", dropped, self.max_retries)
            due, scanned = self._due_entries(batch_size)
            if not scanned:
                return 0
            logger.info("Flushing %d/%d pending telemetry entries", len(due), scanned)
            for entry in due:
                if await self._publish(publish_fn, entry):
                    self._db.delete_queue_entry(entry.id)
                    delivered += 1
                    continue
                self._db.mark_queue_attempt(entry.id, self._clock())
                if entry.retry_count + 1 > self.max_retries:
                    self._db.delete_queue_entry(entry.id)
                    logger.warning("Dropping %s entry %d after %d failed attempts", entry.entry_type, entry.id, entry.retry_count + 1)
                else:
                    logger.warning("Failed to deliver entry %d, retry %d", entry.id, entry.retry_count + 1)
            logger.info("Delivered %d/%d telemetry entries", delivered, len(due))
        except sqlite3.Error:
            logger.exception("Error during flush")
        return delivered

    def _due_entries(self, batch_size: int) -> Tuple[List[QueueEntry], int]:
        """Up to `batch_size` due entries in delivery order, plus the number of rows scanned.

        Entries inside their backoff window are passed over so they never
        hold back lower-priority entries behind them.
        """
        now = self._clock()
        due: List[QueueEntry] = []
        offset = 0
        while len(due) < batch_size:
            rows = self._db.queue_batch(batch_size, offset)
            if not rows:
                break
            offset += len(rows)
            for entry in map(QueueEntry.from_row, rows):
                if self.is_due(entry, now):
                    due.append(entry)
                    if len(due) == batch_size:
                        break
        return due, offset

    async def _publish(self, publish_fn: PublishFn, entry: QueueEntry) -> bool:
        try:
            result = publish_fn(entry.destination, entry.payload)
            if inspect.isawaitable(result):
                result = await result
            return bool(result)
        except Exception:
            logger.exception("Exception delivering entry %d", entry.id)
            return False

    # ------------------------------------------------------------------
    def size(self) -> int:
        try:
            return self._db.queue_size()
        except sqlite3.Error:
            logger.exception("Failed to read queue size")
            return 0

    def pending(self, limit: int = BATCH_SIZE) -> List[QueueEntry]:
        return [QueueEntry.from_row(r) for r in self._db.queue_batch(limit)]

    def clear(self) -> None:
        self._db.clear_queue()
        logger.info("Telemetry queue cleared")
