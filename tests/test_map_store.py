"""Tests for the persistent learned-map store."""

import asyncio
import sqlite3

import networkx as nx
import pytest

from app_explorer.database import Database
from app_explorer.knowledge import ElementBounds, Transition
from app_explorer.map_store import AppMapStore

PKG = "com.example.app"


class TestRecordScreen:
    """Tests for screen learning."""

    def test_creates_and_merges(self, db, clock):
        """Test revisits merge into the existing screen."""
        store = AppMapStore(db, clock=clock)
        store.record_screen(PKG, "s1", ".Main", "Home", False, ["Settings", "Search"])
        screen = store.record_screen(PKG, "s1", None, None, True, ["Search", "Profile"])

        assert screen.activity == ".Main"
        assert screen.title == "Home"
        assert screen.has_scrollable_content
        assert screen.key_elements == ["Settings", "Search", "Profile"]
        assert screen.visit_count == 2

    def test_key_elements_capped(self, db):
        """Test key elements are capped at twenty."""
        store = AppMapStore(db)
        screen = store.record_screen(PKG, "s1", ".Main", None, False, [f"item{i}" for i in range(30)])
        assert len(screen.key_elements) == 20

    def test_persisted_across_instances(self, db):
        """Test a new store loads what the previous one saved."""
        store = AppMapStore(db)
        store.record_screen(PKG, "s1", ".Main", "Home", False, [])
        store.record_transition(PKG, "s1", "s2", "next_next_button", "Next", True, resource_id="com.app:id/next")
        store.flush_writes()

        reloaded = AppMapStore(db)
        learned = reloaded.get_map(PKG)
        assert learned is not None
        assert "s1" in learned.screens
        assert learned.get_transition("s1", "s2").success_count == 1
        assert learned.get_transition("s1", "s2").step.resource_id == "com.app:id/next"


class TestRecordTransition:
    """Tests for reliability learning on edges."""

    def test_new_edge_only_on_success(self, db):
        """Test a failed, unknown transition creates no edge."""
        store = AppMapStore(db)
        assert store.record_transition(PKG, "a", "b", "btn", None, False) is None
        edge = store.record_transition(PKG, "a", "b", "btn", "Go", True, bounds=ElementBounds(10, 20, 100, 50))
        assert edge.reliability == pytest.approx(Transition.SEED_RELIABILITY)
        assert edge.success_count == 1
        assert edge.step.bounds == ElementBounds(10, 20, 100, 50)

    def test_ema_update(self, db):
        """Test reliability follows the EMA with alpha 0.2."""
        store = AppMapStore(db)
        store.record_transition(PKG, "a", "b", "btn", None, True)
        edge = store.record_transition(PKG, "a", "b", "btn", None, False)
        assert edge.reliability == pytest.approx(0.8 * 0.7)
        edge = store.record_transition(PKG, "a", "b", "btn", None, True)
        assert edge.reliability == pytest.approx(0.8 * 0.56 + 0.2)
        assert edge.failure_count == 1

    def test_reliability_stays_in_unit_interval(self, db):
        """Test any sequence of updates keeps reliability in [0, 1]."""
        store = AppMapStore(db)
        store.record_transition(PKG, "a", "b", "btn", None, True)
        for i in range(200):
            edge = store.record_transition(PKG, "a", "b", "btn", None, i % 3 != 0)
            assert 0.0 <= edge.reliability <= 1.0

    def test_success_adds_child(self, db):
        """Test successful transitions record the target as a child screen."""
        store = AppMapStore(db)
        store.record_screen(PKG, "a", ".Main", None, False, [])
        store.record_transition(PKG, "a", "b", "btn", None, True)
        assert store.get_map(PKG).screens["a"].child_screens == ["b"]

    def test_self_healing_edge(self, db):
        """Test an edge below the search floor comes back after successes."""
        store = AppMapStore(db)
        store.record_transition(PKG, "a", "b", "btn", None, True)
        for _ in range(15):
            store.record_transition(PKG, "a", "b", "btn", None, False)
        assert store.get_map(PKG).get_transition("a", "b").reliability < 0.1
        assert store.find_best_path(PKG, "a", "b") is None
        for _ in range(5):
            store.record_transition(PKG, "a", "b", "btn", None, True)
        assert store.find_best_path(PKG, "a", "b") is not None


class TestMapQueries:
    """Tests for entry points, blockers, menus and exploration flags."""

    def test_entry_points_deduplicated(self, db):
        """Test entry points are recorded once."""
        store = AppMapStore(db)
        store.record_entry_point(PKG, "home")
        store.record_entry_point(PKG, "home")
        assert store.entry_points(PKG) == ["home"]
        assert store.entry_points("unknown") == []

    def test_blocker_screens(self, db):
        """Test blocker screens are remembered with their kind."""
        store = AppMapStore(db)
        store.mark_blocker_screen(PKG, "login", "login")
        assert store.is_blocker_screen(PKG, "login")
        assert not store.is_blocker_screen(PKG, "home")
        assert store.get_map(PKG).blocker_screens == {"login": "login"}

    def test_menu_patterns_merge_by_trigger(self, db):
        """Test menu items merge into the pattern of the same trigger."""
        store = AppMapStore(db)
        store.record_menu_pattern(PKG, "drawer", "menu_btn", ["Home", "Settings"])
        store.record_menu_pattern(PKG, "drawer", "menu_btn", ["Settings", "About"])
        patterns = store.get_map(PKG).menu_patterns
        assert len(patterns) == 1
        assert patterns[0].menu_items == ["Home", "Settings", "About"]

    def test_unexplored_screens_by_visits(self, db):
        """Test unexplored screens are sorted by visit count, explored ones excluded."""
        store = AppMapStore(db)
        store.record_screen(PKG, "a", None, None, False, [])
        for _ in range(3):
            store.record_screen(PKG, "b", None, None, False, [])
        store.record_screen(PKG, "c", None, None, False, [])
        store.mark_fully_explored(PKG, "c")
        assert store.unexplored_screens(PKG) == ["b", "a"]

    def test_stats(self, db):
        """Test aggregated statistics."""
        store = AppMapStore(db)
        store.record_screen(PKG, "a", None, None, False, [])
        store.record_transition(PKG, "a", "b", "btn", None, True)
        store.record_screen("com.other", "x", None, None, False, [])
        stats = store.stats()
        assert stats.total_apps == 2
        assert stats.total_screens == 2
        assert stats.total_paths == 1


class TestCapacity:
    """Tests for eviction and clearing."""

    def test_oldest_map_evicted(self, db, clock):
        """Test the least recently updated map is evicted past the cap."""
        store = AppMapStore(db, max_apps=2, clock=clock)
        for pkg in ("one", "two", "three"):
            store.record_screen(pkg, "s", None, None, False, [])
            clock.advance(10)
        store.flush_writes()
        assert sorted(store.packages()) == ["three", "two"]
        assert db.load_map("one") is None

    def test_clear_map_and_all(self, db):
        """Test clearing removes maps from memory and the database."""
        store = AppMapStore(db)
        store.record_screen("one", "s", None, None, False, [])
        store.record_screen("two", "s", None, None, False, [])
        store.clear_map("one")
        assert not store.has_map("one")
        assert db.load_map("one") is None
        store.clear_all()
        assert store.packages() == []
        assert db.load_maps() == []


class TestExport:
    """Tests for GraphML export."""

    def test_graphml_round_trip(self, db, tmp_path):
        """Test the exported graph contains every screen and edge."""
        store = AppMapStore(db)
        store.record_screen(PKG, "a", ".Main", "Home", False, [])
        store.record_screen(PKG, "b", ".Detail", None, False, [])
        store.record_transition(PKG, "a", "b", "btn", "Open", True)
        path = tmp_path / "map.graphml"

        assert store.export_graphml(PKG, str(path))
        g = nx.read_graphml(str(path))
        assert set(g.nodes) == {"a", "b"}
        assert g.has_edge("a", "b")
        assert float(g.edges["a", "b"]["reliability"]) == pytest.approx(0.7)

    def test_export_unknown_package(self, db, tmp_path):
        """Test exporting an unknown package reports failure."""
        assert not AppMapStore(db).export_graphml("missing", str(tmp_path / "x.graphml"))


class TestStorageFailure:
    """Tests for durable-write failures."""

    def test_cache_stays_authoritative(self):
        """Test a closed database does not lose the in-memory map."""
        database = Database(":memory:")
        store = AppMapStore(database)
        database.close()
        screen = store.record_screen(PKG, "a", ".Main", None, False, [])
        assert store.get_map(PKG).screens["a"] is screen

    def test_failed_write_stays_dirty(self, db, monkeypatch):
        """Test a failed save is kept and written by the next flush."""
        store = AppMapStore(db)
        store.record_screen(PKG, "a", ".Main", None, False, [])
        original = db.save_map
        calls = []

        def flaky(*args):
            calls.append(args)
            if len(calls) == 1:
                raise sqlite3.OperationalError("database is locked")
            return original(*args)

        monkeypatch.setattr(db, "save_map", flaky)
        assert store.flush_writes() == 0
        assert store.pending_writes == 1
        assert store.flush_writes() == 1
        assert db.load_map(PKG)["screens"]["a"]["activity"] == ".Main"


class TestDeferredWrites:
    """Tests for writing maps outside the caller."""

    def test_mutations_only_mark_dirty(self, db):
        """Test recording does not touch the database until a flush."""
        store = AppMapStore(db)
        for i in range(5):
            store.record_screen(PKG, f"s{i}", None, None, False, [])
        store.record_transition(PKG, "s0", "s1", "btn", None, True)
        assert db.load_map(PKG) is None
        assert store.pending_writes == 1
        assert store.flush_writes() == 1
        assert len(db.load_map(PKG)["screens"]) == 5

    def test_background_writer(self, db):
        """Test the background task saves dirty maps without explicit flushes."""

        async def scenario():
            store = AppMapStore(db)
            await store.start()
            store.record_screen(PKG, "a", ".Main", None, False, [])
            for _ in range(10):
                await asyncio.sleep(0)
            saved = db.load_map(PKG) is not None
            store.record_screen(PKG, "b", ".Detail", None, False, [])
            await store.stop()
            return saved, store.running, store.pending_writes

        saved, running, pending = asyncio.run(scenario())
        assert saved
        assert not running
        assert pending == 0
        assert set(db.load_map(PKG)["screens"]) == {"a", "b"}
