from __future__ import annotations

"""Exploration coverage metrics and the exploration frontier."""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Set
import logging
import time

from .session import ExplorationGoal, ExploredScreen

logger = logging.getLogger(__name__)


@dataclass
class CoverageMetrics:
    """Derived snapshot; recomputed on every update, never a source of truth."""

    total_screens: int = 0
    screens_fully_explored: int = 0
    screen_coverage: float = 0.0
    total_elements: int = 0
    elements_visited: int = 0
    element_coverage: float = 0.0
    total_containers: int = 0
    containers_scrolled: int = 0
    scroll_coverage: float = 0.0
    unexplored_branches: int = 0
    frontier: List[str] = field(default_factory=list)
    overall_coverage: float = 0.0

    def is_complete(self, target: float) -> bool:
        return self.overall_coverage >= target

    def summary(self) -> str:
        return (
            f"overall {self.overall_coverage * 100:.0f}% | "
            f"elements {self.elements_visited}/{self.total_elements} | "
            f"screens {self.screens_fully_explored}/{self.total_screens} | "
            f"scroll {self.containers_scrolled}/{self.total_containers} | "
            f"frontier {len(self.frontier)}"
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "overall_coverage": self.overall_coverage,
            "element_coverage": self.element_coverage,
            "screen_coverage": self.screen_coverage,
            "scroll_coverage": self.scroll_coverage,
            "total_screens": self.total_screens,
            "screens_fully_explored": self.screens_fully_explored,
            "total_elements": self.total_elements,
            "elements_visited": self.elements_visited,
            "total_containers": self.total_containers,
            "containers_scrolled": self.containers_scrolled,
            "unexplored_branches": self.unexplored_branches,
            "frontier": list(self.frontier),
        }


@dataclass(order=True)
class FrontierItem:
    priority: int
    screen_id: str = field(compare=False)
    unvisited_count: int = field(default=0, compare=False)
    last_visited: float = field(default=0.0, compare=False)


@dataclass
class ScreenElementStats:
    """Per-screen counters for progress display only."""

    screen_id: str
    total_clickable: int = 0
    visited_clickable: int = 0
    total_scrollable: int = 0
    scrolled_scrollable: int = 0
    total_text_elements: int = 0


class CoverageTracker:
    WEIGHT_ELEMENTS = 0.5
    WEIGHT_SCREENS = 0.3
    WEIGHT_SCROLL = 0.2
    FRONTIER_REPORT_SIZE = 5

    def __init__(self) -> None:
        self.metrics = CoverageMetrics()
        self.screen_stats: Dict[str, ScreenElementStats] = {}
        self._frontier: List[FrontierItem] = []

    def reset(self) -> None:
        self.metrics = CoverageMetrics()
        self.screen_stats.clear()
        self._frontier.clear()

    # ------------------------------------------------------------------
    def update(self, screens: Mapping[str, ExploredScreen], visited: Set[str]) -> CoverageMetrics:
        """Recompute every metric from the current screens and visited keys.

        Only composite keys matching an element that is *currently* present
        count, so a screen re-captured with a different element set cannot
        inflate element coverage.
        """
        total_elements = 0
        visited_count = 0
        total_containers = 0
        scrolled = 0
        fully_explored = 0
        now = time.time()
        frontier: List[FrontierItem] = []

        for screen_id, screen in screens.items():
            unvisited = 0
            for element in screen.clickable_elements:
                total_elements += 1
                if f"{screen_id}:{element.element_id}" in visited:
                    visited_count += 1
                else:
                    unvisited += 1
            unscrolled = 0
            for container in screen.scrollable_containers:
                total_containers += 1
                if container.fully_scrolled:
                    scrolled += 1
                else:
                    unscrolled += 1

            if unvisited == 0 and unscrolled == 0:
                fully_explored += 1
            else:
                frontier.append(
                    FrontierItem(
                        priority=unvisited + unscrolled,
                        screen_id=screen_id,
                        unvisited_count=unvisited + unscrolled,
                        last_visited=now,
                    )
                )

        # stable sort keeps discovery order among equal priorities
        frontier.sort(key=lambda item: item.priority, reverse=True)
        self._frontier = frontier

        total_screens = len(screens)
        element_cov = visited_count / total_elements if total_elements else 0.0
        screen_cov = fully_explored / total_screens if total_screens else 0.0
        # no containers means nothing scrolled, not everything
        scroll_cov = scrolled / total_containers if total_containers else 0.0
        overall = (
            self.WEIGHT_ELEMENTS * element_cov
            + self.WEIGHT_SCREENS * screen_cov
            + self.WEIGHT_SCROLL * scroll_cov
        )

        previous = self.metrics.overall_coverage
        self.metrics = CoverageMetrics(
            total_screens=total_screens,
            screens_fully_explored=fully_explored,
            screen_coverage=screen_cov,
            total_elements=total_elements,
            elements_visited=visited_count,
            element_coverage=element_cov,
            total_containers=total_containers,
            containers_scrolled=scrolled,
            scroll_coverage=scroll_cov,
            unexplored_branches=len(frontier),
            frontier=[item.screen_id for item in frontier[: self.FRONTIER_REPORT_SIZE]],
            overall_coverage=overall,
        )
        if int(overall * 10) != int(previous * 10):
            logger.info("Coverage: %s", self.metrics.summary())
        else:
            logger.debug("Coverage: %s", self.metrics.summary())
        return self.metrics

    # ------------------------------------------------------------------
    def update_screen_stats(self, screen: ExploredScreen) -> None:
        if screen.screen_id in self.screen_stats:
            return
        self.screen_stats[screen.screen_id] = ScreenElementStats(
            screen_id=screen.screen_id,
            total_clickable=len(screen.clickable_elements),
            total_scrollable=len(screen.scrollable_containers),
            total_text_elements=len(screen.text_elements),
        )
        logger.debug(
            "Screen stats added: %s - %d clickable, %d scrollable",
            screen.screen_id,
            len(screen.clickable_elements),
            len(screen.scrollable_containers),
        )

    def mark_element_visited(self, screen_id: str) -> None:
        stats = self.screen_stats.get(screen_id)
        if stats and stats.visited_clickable < stats.total_clickable:
            stats.visited_clickable += 1

    def mark_container_scrolled(self, screen_id: str) -> None:
        stats = self.screen_stats.get(screen_id)
        if stats and stats.scrolled_scrollable < stats.total_scrollable:
            stats.scrolled_scrollable += 1

    def has_reached_target(self, goal: ExplorationGoal, target: float) -> bool:
        """Coverage is advisory unless the goal asks for complete coverage."""
        if goal != ExplorationGoal.COMPLETE_COVERAGE:
            return False
        return self.metrics.is_complete(target)

    def frontier(self, limit: int = FRONTIER_REPORT_SIZE) -> List[str]:
        return [item.screen_id for item in self._frontier[:limit]]
