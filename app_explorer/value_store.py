from __future__ import annotations

"""State-action value table with an in-memory cache and a background mirror.

Reads and writes hit the cache only.  Every mutation appends a mirror
operation to a pending deque which `flush_writes()` applies to the database,
either from the background task started with `start()` or explicitly (CLI,
tests, session finalization).  A failed database write stays queued and is
attempted again on the next flush.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Tuple
import logging
import sqlite3
import time

from .database import BackgroundWriter, Database

logger = logging.getLogger(__name__)


@dataclass
class ValueEntry:
    key: str
    value: float
    visit_count: int = 0
    last_updated: float = 0.0
    package: Optional[str] = None

    @property
    def screen_hash(self) -> str:
        return self.key.split("|", 1)[0]

    @property
    def action_key(self) -> str:
        parts = self.key.split("|", 1)
        return parts[1] if len(parts) > 1 else ""


@dataclass
class DangerousPattern:
    pattern: str
    occurrences: int = 1
    first_seen: float = 0.0
    last_seen: float = 0.0


@dataclass
class ValueTableExport:
    q_values: Dict[str, float] = field(default_factory=dict)
    visit_counts: Dict[str, int] = field(default_factory=dict)
    screen_visits: Dict[str, int] = field(default_factory=dict)
    human_feedback: Dict[str, int] = field(default_factory=dict)
    dangerous_patterns: List[str] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return {
            "q_values": dict(self.q_values),
            "visit_counts": dict(self.visit_counts),
            "screen_visits": dict(self.screen_visits),
            "human_feedback": dict(self.human_feedback),
            "dangerous_patterns": list(self.dangerous_patterns),
        }


# mirror operations: ("value", key) ("delete", keys) ("screen", hash)
# ("feedback", key) ("danger", pattern) ("prune",)
MirrorOp = Tuple[Any, ...]


class ValueStore:
    MAX_ENTRIES = 10000
    MIN_VISIT_COUNT = 2
    MIRROR_RETRY_SECONDS = 5.0

    def __init__(
        self,
        db: Database,
        max_entries: int = MAX_ENTRIES,
        min_visit_count: int = MIN_VISIT_COUNT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db = db
        self.max_entries = max_entries
        self.min_visit_count = min_visit_count
        self._clock = clock

        self._values: Dict[str, ValueEntry] = {}
        self._screen_visits: Dict[str, int] = {}
        self._feedback: Dict[str, int] = {}
        self._dangerous: Dict[str, DangerousPattern] = {}

        self._pending: Deque[MirrorOp] = deque()
        self._prune_scheduled = False
        self._writer = BackgroundWriter(self.flush_writes, lambda: bool(self._pending), self.MIRROR_RETRY_SECONDS)

        self._load()

    def _load(self) -> None:
        try:
            for row in self._db.load_q_values():
                self._values[row["key"]] = ValueEntry(
                    key=row["key"],
                    value=float(row["q_value"]),
                    visit_count=int(row["visit_count"]),
                    last_updated=float(row["last_updated"]),
                    package=row["package"],
                )
            for row in self._db.load_screen_visits():
                self._screen_visits[row["screen_hash"]] = int(row["visit_count"])
            for row in self._db.load_feedback():
                self._feedback[row["key"]] = int(row["feedback"])
            for row in self._db.load_dangerous_patterns():
                self._dangerous[row["pattern"]] = DangerousPattern(
                    pattern=row["pattern"],
                    occurrences=int(row["occurrences"]),
                    first_seen=float(row["first_seen"]),
                    last_seen=float(row["last_seen"]),
                )
        except sqlite3.Error:
            logger.exception("Failed to load value table; starting empty")
        logger.info(
            "Value store loaded: %d values, %d dangerous patterns", len(self._values), len(self._dangerous)
        )

    # ------------------------------------------------------------------
    # values ------------------------------------------------------------

    def get_value(self, key: str) -> Optional[float]:
        entry = self._values.get(key)
        return entry.value if entry else None

    def get_entry(self, key: str) -> Optional[ValueEntry]:
        return self._values.get(key)

    def visit_count(self, key: str) -> int:
        entry = self._values.get(key)
        return entry.visit_count if entry else 0

    def all_values(self) -> Dict[str, float]:
        return {k: e.value for k, e in self._values.items()}

    def entries(self) -> List[ValueEntry]:
        return list(self._values.values())

    def __len__(self) -> int:
        return len(self._values)

    def set_value(self, key: str, value: float, package: Optional[str] = None) -> ValueEntry:
        """Upsert `key`; every write counts as one visit.

        Exceeding the capacity schedules a prune as a follow-up mirror
        operation instead of pruning here.
        """
        entry = self._values.get(key)
        if entry is None:
            entry = ValueEntry(key=key, value=value)
            self._values[key] = entry
        entry.value = value
        entry.visit_count += 1
        entry.last_updated = self._clock()
        if package:
            entry.package = package
        self._enqueue(("value", key))
        if len(self._values) > self.max_entries and not self._prune_scheduled:
            self._prune_scheduled = True
            self._enqueue(("prune",))
        return entry

    def prune(self) -> int:
        """Shrink the table back under the capacity ceiling.

        Entries below the minimum visit count go first, then the remaining
        entries ordered by (visit count, last update) ascending.
        """
        self._prune_scheduled = False
        if len(self._values) <= self.max_entries:
            return 0
        logger.info("Pruning value table (%d entries)", len(self._values))
        removed = [k for k, e in self._values.items() if e.visit_count < self.min_visit_count]
        for key in removed:
            del self._values[key]
        low_visit = len(removed)

        excess = len(self._values) - self.max_entries
        if excess > 0:
            lru = sorted(self._values.values(), key=lambda e: (e.visit_count, e.last_updated))
            for entry in lru[:excess]:
                del self._values[entry.key]
                removed.append(entry.key)

        self._enqueue(("delete", removed))
        logger.warning(
            "Pruned %d value entries (%d low-visit, %d LRU), %d remaining",
            len(removed),
            low_visit,
            len(removed) - low_visit,
            len(self._values),
        )
        return len(removed)

    # ------------------------------------------------------------------
    # screen visits -----------------------------------------------------

    def screen_visit_count(self, screen_hash: str) -> int:
        return self._screen_visits.get(screen_hash, 0)

    def increment_screen_visit(self, screen_hash: str) -> int:
        count = self._screen_visits.get(screen_hash, 0) + 1
        self._screen_visits[screen_hash] = count
        self._enqueue(("screen", screen_hash))
        return count

    # ------------------------------------------------------------------
    # human feedback ----------------------------------------------------

    def human_feedback(self, key: str) -> Optional[int]:
        return self._feedback.get(key)

    def all_feedback(self) -> Dict[str, int]:
        return dict(self._feedback)

    def set_human_feedback(self, key: str, value: int) -> None:
        if value == 0:
            self.clear_human_feedback(key)
            return
        self._feedback[key] = value
        self._enqueue(("feedback", key))

    def clear_human_feedback(self, key: str) -> None:
        if self._feedback.pop(key, None) is not None:
            self._enqueue(("feedback", key))

    # ------------------------------------------------------------------
    # danger registry ---------------------------------------------------

    def is_dangerous(self, pattern: str) -> bool:
        return pattern in self._dangerous

    def dangerous_patterns(self) -> Set[str]:
        return set(self._dangerous)

    def add_dangerous_pattern(self, pattern: str) -> int:
        """Register (or re-observe) a dangerous pattern; returns its occurrence count."""
        now = self._clock()
        record = self._dangerous.get(pattern)
        if record is None:
            record = DangerousPattern(pattern=pattern, occurrences=1, first_seen=now, last_seen=now)
            self._dangerous[pattern] = record
            logger.warning("Registered dangerous pattern %s", pattern)
        else:
            record.occurrences += 1
            record.last_seen = now
        self._enqueue(("danger", pattern))
        return record.occurrences

    # ------------------------------------------------------------------
    # durable mirror ----------------------------------------------------

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    def _enqueue(self, op: MirrorOp) -> None:
        self._pending.append(op)
        self._writer.notify()

    def flush_writes(self) -> int:
        """Apply queued mirror operations; stops at the first storage error."""
        applied = 0
        while self._pending:
            op = self._pending.popleft()
            try:
                self._apply(op)
            except sqlite3.Error:
                logger.exception("Durable write failed for %s; will retry", op[0])
                self._pending.appendleft(op)
                break
            applied += 1
        return applied

    def _apply(self, op: MirrorOp) -> None:
        kind = op[0]
        if kind == "value":
            entry = self._values.get(op[1])
            if entry is None:
                return
            self._db.upsert_q_value(
                entry.key,
                entry.screen_hash,
                entry.action_key,
                entry.value,
                entry.visit_count,
                entry.last_updated,
                entry.package,
            )
        elif kind == "delete":
            self._db.delete_q_values(op[1])
        elif kind == "prune":
            self.prune()
        elif kind == "screen":
            self._db.upsert_screen_visit(op[1], self._screen_visits.get(op[1], 0), self._clock())
        elif kind == "feedback":
            value = self._feedback.get(op[1])
            if value is None:
                self._db.delete_feedback(op[1])
            else:
                self._db.upsert_feedback(op[1], value, self._clock())
        elif kind == "danger":
            record = self._dangerous.get(op[1])
            if record is not None:
                self._db.upsert_dangerous_pattern(
                    record.pattern, record.occurrences, record.first_seen, record.last_seen
                )
        else:
            raise ValueError(f"Unknown mirror operation {kind!r}")

    @property
    def running(self) -> bool:
        return self._writer.running

    async def start(self) -> None:
        """Start the background mirror task on the running loop."""
        await self._writer.start()

    async def stop(self) -> None:
        """Cancel the mirror task and flush whatever is still pending."""
        await self._writer.stop()

    # ------------------------------------------------------------------
    def export(self) -> ValueTableExport:
        return ValueTableExport(
            q_values=self.all_values(),
            visit_counts={k: e.visit_count for k, e in self._values.items()},
            screen_visits=dict(self._screen_visits),
            human_feedback=dict(self._feedback),
            dangerous_patterns=sorted(self._dangerous),
        )

    def clear_all(self) -> None:
        self._values.clear()
        self._screen_visits.clear()
        self._feedback.clear()
        self._dangerous.clear()
        self._pending.clear()
        self._prune_scheduled = False
        try:
            self._db.clear_learning()
        except sqlite3.Error:
            logger.exception("Failed to clear value table")
        logger.info("All value-table data cleared")
