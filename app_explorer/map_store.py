from __future__ import annotations

"""Persistent store of learned app maps.

Every mutation updates the in-memory map, which stays authoritative, and
marks the package dirty.  Dirty maps are written by `flush_writes()`, either
from the background task started with `start()` or explicitly; a failed
write leaves the package dirty for the next flush.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
import logging
import sqlite3
import time

import networkx as nx

from .database import BackgroundWriter, Database
from .knowledge import ElementBounds, LearnedMap, LearnedScreen, MenuPattern, NavigationStep, Transition
from .path_finder import NavigationRoute, PathFinder

logger = logging.getLogger(__name__)

_SAVE = "save"
_DELETE = "delete"


@dataclass
class AppMapStats:
    total_apps: int
    total_screens: int
    total_paths: int


class AppMapStore:
    MAX_APPS = 50
    WRITE_RETRY_SECONDS = 5.0

    def __init__(
        self,
        db: Database,
        max_apps: int = MAX_APPS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db = db
        self.max_apps = max_apps
        self._clock = clock
        self._maps: Dict[str, LearnedMap] = {}
        # package -> pending durable operation
        self._pending: Dict[str, str] = {}
        self._writer = BackgroundWriter(self.flush_writes, lambda: bool(self._pending), self.WRITE_RETRY_SECONDS)
        self._path_finder = PathFinder()
        self._load()

    def _load(self) -> None:
        try:
            for data in self._db.load_maps():
                learned = LearnedMap.from_json(data)
                self._maps[learned.package] = learned
        except sqlite3.Error:
            logger.exception("Failed to load learned maps")
        logger.debug("Loaded %d learned maps", len(self._maps))

    # ------------------------------------------------------------------
    # map access --------------------------------------------------------

    def get_map(self, package: str) -> Optional[LearnedMap]:
        return self._maps.get(package)

    def has_map(self, package: str) -> bool:
        return package in self._maps

    def packages(self) -> List[str]:
        return list(self._maps)

    def save_map(self, learned: LearnedMap) -> None:
        learned.last_updated = self._clock()
        self._maps[learned.package] = learned
        self._schedule(learned.package, _SAVE)
        self._evict_old_maps()

    def _get_or_create(self, package: str) -> LearnedMap:
        learned = self._maps.get(package)
        if learned is None:
            learned = LearnedMap(package=package, last_updated=self._clock())
        return learned

    def _evict_old_maps(self) -> None:
        if len(self._maps) <= self.max_apps:
            return
        by_age = sorted(self._maps.values(), key=lambda m: m.last_updated)
        for stale in by_age[: len(self._maps) - self.max_apps]:
            del self._maps[stale.package]
            self._schedule(stale.package, _DELETE)
            logger.debug("Evicted old map for %s", stale.package)

    # ------------------------------------------------------------------
    # durable writes ----------------------------------------------------

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    @property
    def running(self) -> bool:
        return self._writer.running

    def _schedule(self, package: str, op: str) -> None:
        self._pending[package] = op
        self._writer.notify()

    def flush_writes(self) -> int:
        """Write dirty maps and evictions; stops at the first storage error."""
        written = 0
        for package, op in list(self._pending.items()):
            try:
                if op == _DELETE:
                    self._db.delete_map(package)
                else:
                    learned = self._maps.get(package)
                    if learned is not None:
                        self._db.save_map(package, learned.to_json(), learned.last_updated)
            except sqlite3.Error:
                logger.exception("Failed to persist map for %s; will retry", package)
                break
            del self._pending[package]
            written += 1
        return written

    async def start(self) -> None:
        """Start the background writer on the running loop."""
        await self._writer.start()

    async def stop(self) -> None:
        """Cancel the background writer and flush whatever is still dirty."""
        await self._writer.stop()

    # ------------------------------------------------------------------
    # learning ----------------------------------------------------------

    def record_screen(
        self,
        package: str,
        screen_id: str,
        activity: Optional[str],
        title: Optional[str],
        has_scrollable_content: bool,
        key_elements: List[str],
    ) -> LearnedScreen:
        learned = self._get_or_create(package)
        screen = learned.screens.get(screen_id)
        if screen is None:
            screen = LearnedScreen(screen_id=screen_id)
            learned.screens[screen_id] = screen
        screen.merge(activity, title, has_scrollable_content, key_elements, self._clock())
        self.save_map(learned)
        return screen

    def record_transition(
        self,
        package: str,
        from_screen: str,
        to_screen: str,
        element_id: Optional[str],
        element_text: Optional[str],
        success: bool,
        bounds: Optional[ElementBounds] = None,
        resource_id: Optional[str] = None,
    ) -> Optional[Transition]:
        """Update the edge reliability; unknown edges are only created on success."""
        learned = self._get_or_create(package)
        now = self._clock()
        edge = learned.get_transition(from_screen, to_screen)
        if edge is not None:
            edge.record(success, now)
        elif success:
            edge = Transition(
                from_screen=from_screen,
                to_screen=to_screen,
                step=NavigationStep(
                    element_id=element_id, element_text=element_text, resource_id=resource_id, bounds=bounds
                ),
                reliability=Transition.SEED_RELIABILITY,
                success_count=1,
                last_used=now,
            )
            learned.transitions[edge.key] = edge

        source = learned.screens.get(from_screen)
        if source is not None and success:
            source.add_child(to_screen)

        self.save_map(learned)
        return edge

    def record_menu_pattern(
        self, package: str, menu_type: str, trigger_element: str, menu_items: List[str]
    ) -> None:
        learned = self._get_or_create(package)
        for pattern in learned.menu_patterns:
            if pattern.trigger_element == trigger_element:
                for item in menu_items:
                    if item not in pattern.menu_items:
                        pattern.menu_items.append(item)
                break
        else:
            learned.menu_patterns.append(MenuPattern(menu_type, trigger_element, list(menu_items)))
        self.save_map(learned)

    def mark_blocker_screen(self, package: str, screen_id: str, blocker_type: str) -> None:
        learned = self._get_or_create(package)
        learned.blocker_screens[screen_id] = blocker_type
        self.save_map(learned)
        logger.debug("Marked %s as blocker (%s) for %s", screen_id, blocker_type, package)

    def is_blocker_screen(self, package: str, screen_id: str) -> bool:
        learned = self._maps.get(package)
        return learned is not None and screen_id in learned.blocker_screens

    def unexplored_screens(self, package: str) -> List[str]:
        """Known screens not yet fully explored, most visited first."""
        learned = self._maps.get(package)
        if learned is None:
            return []
        pending = [s for s in learned.screens.values() if not s.fully_explored]
        pending.sort(key=lambda s: s.visit_count, reverse=True)
        return [s.screen_id for s in pending]

    def mark_fully_explored(self, package: str, screen_id: str) -> None:
        learned = self._maps.get(package)
        if learned is None or screen_id not in learned.screens:
            return
        learned.screens[screen_id].fully_explored = True
        self.save_map(learned)

    def entry_points(self, package: str) -> List[str]:
        learned = self._maps.get(package)
        return list(learned.entry_points) if learned else []

    def record_entry_point(self, package: str, screen_id: str) -> None:
        learned = self._get_or_create(package)
        if screen_id in learned.entry_points:
            return
        learned.entry_points.append(screen_id)
        self.save_map(learned)

    # ------------------------------------------------------------------
    # queries -----------------------------------------------------------

    def find_best_path(self, package: str, from_screen: str, to_screen: str) -> Optional[NavigationRoute]:
        learned = self._maps.get(package)
        if learned is None:
            return None
        return self._path_finder.find_path(learned, from_screen, to_screen)

    def stats(self) -> AppMapStats:
        return AppMapStats(
            total_apps=len(self._maps),
            total_screens=sum(len(m.screens) for m in self._maps.values()),
            total_paths=sum(len(m.transitions) for m in self._maps.values()),
        )

    def export_graphml(self, package: str, path: str) -> bool:
        """Write the navigation graph of `package` as GraphML."""
        learned = self._maps.get(package)
        if learned is None:
            return False
        g = nx.DiGraph()
        for screen in learned.screens.values():
            g.add_node(
                screen.screen_id,
                activity=screen.activity or "",
                title=screen.title or "",
                visit_count=screen.visit_count,
                fully_explored=screen.fully_explored,
                blocker=learned.blocker_screens.get(screen.screen_id, ""),
            )
        # full edge set, including edges below the search floor
        for edge in learned.transitions.values():
            g.add_edge(
                edge.from_screen,
                edge.to_screen,
                reliability=edge.reliability,
                success_count=edge.success_count,
                failure_count=edge.failure_count,
                element_id=edge.step.element_id or "",
            )
        nx.write_graphml(g, path)
        return True

    # ------------------------------------------------------------------
    def clear_map(self, package: str) -> None:
        self._maps.pop(package, None)
        self._pending.pop(package, None)
        try:
            self._db.delete_map(package)
        except sqlite3.Error:
            logger.exception("Failed to delete map for %s", package)
            self._schedule(package, _DELETE)
        logger.debug("Cleared app map for %s", package)

    def clear_all(self) -> None:
        self._maps.clear()
        self._pending.clear()
        try:
            self._db.delete_all_maps()
        except sqlite3.Error:
            logger.exception("Failed to delete learned maps")
        logger.debug("Cleared all app maps")
