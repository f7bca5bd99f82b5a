"""Tests for the value table cache, its durable mirror and pruning."""

import asyncio
import sqlite3

import pytest

from app_explorer.value_store import ValueStore


def fill(store: ValueStore, keys, visits: int, clock=None) -> None:
    for key in keys:
        for _ in range(visits):
            store.set_value(key, 0.5)
            if clock is not None:
                clock.advance(1)


class TestValues:
    """Tests for reads and writes through the cache."""

    def test_write_counts_a_visit(self, db):
        """Test every write increments the visit count."""
        store = ValueStore(db)
        store.set_value("s|a", 0.1, "com.example")
        entry = store.set_value("s|a", 0.3)
        assert store.get_value("s|a") == pytest.approx(0.3)
        assert store.visit_count("s|a") == 2
        assert entry.package == "com.example"
        assert entry.screen_hash == "s"
        assert entry.action_key == "a"

    def test_unknown_key(self, db):
        """Test missing keys read as None with zero visits."""
        store = ValueStore(db)
        assert store.get_value("nope") is None
        assert store.visit_count("nope") == 0

    def test_reads_before_flush(self, db):
        """Test the cache answers immediately while writes are still pending."""
        store = ValueStore(db)
        store.set_value("s|a", 1.0)
        assert store.pending_writes == 1
        assert db.count_q_values() == 0
        assert store.get_value("s|a") == 1.0

    def test_flush_persists_and_reloads(self, db):
        """Test flushed values survive a new store instance."""
        store = ValueStore(db)
        store.set_value("s|a", 0.25, "com.example")
        store.increment_screen_visit("s")
        store.set_human_feedback("s|a", -2)
        store.add_dangerous_pattern("Button|delete|bottom")
        assert store.flush_writes() == 4

        reloaded = ValueStore(db)
        assert reloaded.get_value("s|a") == pytest.approx(0.25)
        assert reloaded.screen_visit_count("s") == 1
        assert reloaded.human_feedback("s|a") == -2
        assert reloaded.is_dangerous("Button|delete|bottom")


class TestPruning:
    """Tests for capacity pruning."""

    def test_prune_is_deferred(self, db):
        """Test exceeding capacity schedules pruning instead of running it."""
        store = ValueStore(db, max_entries=3)
        fill(store, ["a", "b", "c", "d"], visits=1)
        assert len(store) == 4
        store.flush_writes()
        assert len(store) <= 3

    def test_low_visit_entries_go_first(self, db):
        """Test entries below the minimum visit count are removed first."""
        store = ValueStore(db, max_entries=10, min_visit_count=2)
        fill(store, [f"often{i}" for i in range(8)], visits=2)
        fill(store, [f"once{i}" for i in range(5)], visits=1)
        assert len(store) == 13

        store.flush_writes()
        assert len(store) == 8
        assert all(e.visit_count >= 2 for e in store.entries())
        assert db.count_q_values() == 8

    def test_lru_after_low_visit(self, db, clock):
        """Test remaining excess is removed by (visit count, last update) ascending."""
        store = ValueStore(db, max_entries=3, min_visit_count=1, clock=clock)
        fill(store, ["k0"], visits=2, clock=clock)
        fill(store, ["k1", "k2", "k3", "k4"], visits=1, clock=clock)

        removed = store.prune()
        assert removed == 2
        assert sorted(store.all_values()) == ["k0", "k3", "k4"]

    def test_prune_under_capacity_is_noop(self, db):
        """Test pruning does nothing under the ceiling."""
        store = ValueStore(db, max_entries=5)
        fill(store, ["a"], visits=1)
        assert store.prune() == 0

    def test_prune_scheduled_once(self, db):
        """Test repeated overflowing writes schedule a single prune."""
        store = ValueStore(db, max_entries=1)
        fill(store, ["a", "b", "c"], visits=1)
        # three value writes plus one prune
        assert store.pending_writes == 4


class TestFeedbackAndDanger:
    """Tests for human feedback and the danger registry."""

    def test_zero_feedback_clears(self, db):
        """Test setting feedback to zero removes it."""
        store = ValueStore(db)
        store.set_human_feedback("s|a", 1)
        store.set_human_feedback("s|a", 0)
        assert store.human_feedback("s|a") is None
        store.flush_writes()
        assert db.load_feedback() == []

    def test_dangerous_occurrences(self, db):
        """Test re-registering a pattern counts occurrences."""
        store = ValueStore(db)
        assert store.add_dangerous_pattern("p") == 1
        assert store.add_dangerous_pattern("p") == 2
        assert store.dangerous_patterns() == {"p"}

    def test_export_and_clear(self, db):
        """Test export snapshot and full clear."""
        store = ValueStore(db)
        store.set_value("s|a", 0.4)
        store.increment_screen_visit("s")
        store.flush_writes()
        exported = store.export().to_json()
        assert exported["q_values"] == {"s|a": pytest.approx(0.4)}
        assert exported["screen_visits"] == {"s": 1}

        store.clear_all()
        assert len(store) == 0
        assert db.count_q_values() == 0


class TestMirror:
    """Tests for the durable mirror."""

    def test_failed_write_is_retried(self, db, monkeypatch):
        """Test a storage error keeps the operation queued."""
        store = ValueStore(db)
        store.set_value("s|a", 0.1)
        original = db.upsert_q_value
        calls = []

        def flaky(*args):
            calls.append(args)
            if len(calls) == 1:
                raise sqlite3.OperationalError("database is locked")
            return original(*args)

        monkeypatch.setattr(db, "upsert_q_value", flaky)
        assert store.flush_writes() == 0
        assert store.pending_writes == 1
        assert store.get_value("s|a") == pytest.approx(0.1)
        assert store.flush_writes() == 1
        assert db.count_q_values() == 1

    def test_background_task(self, db):
        """Test the background task mirrors writes without explicit flushes."""

        async def scenario():
            store = ValueStore(db)
            await store.start()
            store.set_value("s|a", 0.7)
            for _ in range(10):
                await asyncio.sleep(0)
            persisted = db.count_q_values()
            store.set_value("s|b", 0.2)
            await store.stop()
            return persisted, store.pending_writes

        persisted, pending = asyncio.run(scenario())
        assert persisted == 1
        assert pending == 0
        assert db.count_q_values() == 2
