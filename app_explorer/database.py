from __future__ import annotations

"""SQLite storage shared by the map store, the value store and the delivery queue.

One `Database` is created per process and handed to every store; nothing in
the package opens its own connection.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional
import asyncio
import json
import logging
import sqlite3

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS app_maps (
    package TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    last_updated REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_app_maps_updated ON app_maps(last_updated);

CREATE TABLE IF NOT EXISTS q_table (
    key TEXT PRIMARY KEY,
    screen_hash TEXT NOT NULL,
    action_key TEXT NOT NULL,
    q_value REAL NOT NULL DEFAULT 0.0,
    visit_count INTEGER NOT NULL DEFAULT 0,
    last_updated REAL NOT NULL,
    package TEXT
);

CREATE INDEX IF NOT EXISTS idx_q_table_lru ON q_table(visit_count, last_updated);
CREATE INDEX IF NOT EXISTS idx_q_table_package ON q_table(package);

CREATE TABLE IF NOT EXISTS screen_visits (
    screen_hash TEXT PRIMARY KEY,
    visit_count INTEGER NOT NULL DEFAULT 0,
    last_visited REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS human_feedback (
    key TEXT PRIMARY KEY,
    feedback INTEGER NOT NULL,
    updated_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS dangerous_patterns (
    pattern TEXT PRIMARY KEY,
    occurrences INTEGER NOT NULL DEFAULT 1,
    first_seen REAL NOT NULL,
    last_seen REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS telemetry_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL,
    payload TEXT NOT NULL,
    destination TEXT NOT NULL,
    created_at REAL NOT NULL,
    retry_count INTEGER NOT NULL DEFAULT 0,
    priority INTEGER NOT NULL DEFAULT 0,
    last_attempt REAL
);

CREATE INDEX IF NOT EXISTS idx_telemetry_order ON telemetry_queue(priority DESC, created_at ASC);
"""


class Database:
    """SQLite database for learned maps, values and pending telemetry."""

    def __init__(self, path: str | Path = ":memory:") -> None:
        db_path = str(path)
        self.path = db_path
        self.conn = sqlite3.connect(db_path)
        self.conn.row_factory = sqlite3.Row
        logger.debug("Opened database connection: %s", db_path)
        if db_path != ":memory:":
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute("PRAGMA busy_timeout=5000")
            logger.debug("WAL mode activated for %s", db_path)
        self.conn.executescript(SCHEMA_SQL)

    def close(self) -> None:
        logger.debug("Closing database connection")
        self.conn.close()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Commits on success, rolls back on exception."""
        try:
            yield self.conn
        except Exception:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()

    # ------------------------------------------------------------------
    # app maps ----------------------------------------------------------

    def save_map(self, package: str, data: Dict[str, Any], last_updated: float) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO app_maps (package, data, last_updated) VALUES (?, ?, ?)",
                (package, json.dumps(data), last_updated),
            )

    def load_map(self, package: str) -> Optional[Dict[str, Any]]:
        row = self.conn.execute("SELECT data FROM app_maps WHERE package = ?", (package,)).fetchone()
        return json.loads(row["data"]) if row else None

    def load_maps(self) -> List[Dict[str, Any]]:
        rows = self.conn.execute("SELECT data FROM app_maps ORDER BY last_updated DESC").fetchall()
        return [json.loads(r["data"]) for r in rows]

    def delete_map(self, package: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM app_maps WHERE package = ?", (package,))

    def delete_all_maps(self) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM app_maps")

    # ------------------------------------------------------------------
    # value table -------------------------------------------------------

    def upsert_q_value(
        self,
        key: str,
        screen_hash: str,
        action_key: str,
        q_value: float,
        visit_count: int,
        last_updated: float,
        package: Optional[str],
    ) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO q_table (key, screen_hash, action_key, q_value, visit_count, last_updated, package)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    q_value = excluded.q_value,
                    visit_count = excluded.visit_count,
                    last_updated = excluded.last_updated,
                    package = COALESCE(excluded.package, q_table.package)
                """,
                (key, screen_hash, action_key, q_value, visit_count, last_updated, package),
            )

    def load_q_values(self) -> List[sqlite3.Row]:
        return self.conn.execute("SELECT * FROM q_table").fetchall()

    def delete_q_values(self, keys: Iterable[str]) -> None:
        with self.transaction() as conn:
            conn.executemany("DELETE FROM q_table WHERE key = ?", [(k,) for k in keys])

    def count_q_values(self) -> int:
        return int(self.conn.execute("SELECT COUNT(*) FROM q_table").fetchone()[0])

    def upsert_screen_visit(self, screen_hash: str, visit_count: int, last_visited: float) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO screen_visits (screen_hash, visit_count, last_visited) VALUES (?, ?, ?)",
                (screen_hash, visit_count, last_visited),
            )

    def load_screen_visits(self) -> List[sqlite3.Row]:
        return self.conn.execute("SELECT * FROM screen_visits").fetchall()

    def upsert_feedback(self, key: str, feedback: int, updated_at: float) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO human_feedback (key, feedback, updated_at) VALUES (?, ?, ?)",
                (key, feedback, updated_at),
            )

    def delete_feedback(self, key: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM human_feedback WHERE key = ?", (key,))

    def load_feedback(self) -> List[sqlite3.Row]:
        return self.conn.execute("SELECT * FROM human_feedback").fetchall()

    def upsert_dangerous_pattern(self, pattern: str, occurrences: int, first_seen: float, last_seen: float) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO dangerous_patterns (pattern, occurrences, first_seen, last_seen)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(pattern) DO UPDATE SET
                    occurrences = excluded.occurrences,
                    last_seen = excluded.last_seen
                """,
                (pattern, occurrences, first_seen, last_seen),
            )

    def load_dangerous_patterns(self) -> List[sqlite3.Row]:
        return self.conn.execute("SELECT * FROM dangerous_patterns").fetchall()

    def clear_learning(self) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM q_table")
            conn.execute("DELETE FROM screen_visits")
            conn.execute("DELETE FROM human_feedback")
            conn.execute("DELETE FROM dangerous_patterns")

    # ------------------------------------------------------------------
    # telemetry queue ---------------------------------------------------

    def insert_queue_entry(
        self,
        entry_type: str,
        payload: str,
        destination: str,
        created_at: float,
        priority: int,
    ) -> int:
        with self.transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO telemetry_queue (type, payload, destination, created_at, retry_count, priority)
                VALUES (?, ?, ?, ?, 0, ?)
                """,
                (entry_type, payload, destination, created_at, priority),
            )
            return int(cur.lastrowid)

    def queue_batch(self, limit: int, offset: int = 0) -> List[sqlite3.Row]:
        return self.conn.execute(
            "SELECT * FROM telemetry_queue ORDER BY priority DESC, created_at ASC, id ASC LIMIT ? OFFSET ?",
            (limit, offset),
        ).fetchall()

    def queue_size(self) -> int:
        return int(self.conn.execute("SELECT COUNT(*) FROM telemetry_queue").fetchone()[0])

    def delete_queue_entry(self, entry_id: int) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM telemetry_queue WHERE id = ?", (entry_id,))

    def mark_queue_attempt(self, entry_id: int, attempted_at: float) -> None:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE telemetry_queue SET retry_count = retry_count + 1, last_attempt = ? WHERE id = ?",
                (attempted_at, entry_id),
            )

    def prune_queue(self, count: int) -> int:
        """Delete the `count` lowest-priority, oldest entries."""
        with self.transaction() as conn:
            cur = conn.execute(
                """
                DELETE FROM telemetry_queue WHERE id IN (
                    SELECT id FROM telemetry_queue ORDER BY priority ASC, created_at ASC, id ASC LIMIT ?
                )
                """,
                (count,),
            )
            return cur.rowcount

    def delete_exhausted_entries(self, max_retries: int) -> int:
        with self.transaction() as conn:
            cur = conn.execute("DELETE FROM telemetry_queue WHERE retry_count > ?", (max_retries,))
            return cur.rowcount

    def clear_queue(self) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM telemetry_queue")


class BackgroundWriter:
    """Runs a store's `flush` from a task on the running event loop.

    `notify()` wakes the task after a mutation; bursts of notifications
    coalesce into one flush.  When a flush leaves work behind (a storage
    error stopped it) the task sleeps `retry_delay` seconds and tries again.
    """

    def __init__(
        self,
        flush: Callable[[], int],
        has_pending: Callable[[], bool],
        retry_delay: float = 5.0,
    ) -> None:
        self._flush = flush
        self._has_pending = has_pending
        self.retry_delay = retry_delay
        self._wakeup: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None

    def notify(self) -> None:
        if self._wakeup is not None:
            self._wakeup.set()

    async def start(self) -> None:
        if self._task is not None:
            return
        self._wakeup = asyncio.Event()
        if self._has_pending():
            self._wakeup.set()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Cancel the task and flush whatever is still pending."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._wakeup = None
        self._flush()

    async def _run(self) -> None:
        assert self._wakeup is not None
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            self._flush()
            if self._has_pending():
                await asyncio.sleep(self.retry_delay)
                self._wakeup.set()
            else:
                await asyncio.sleep(0)
