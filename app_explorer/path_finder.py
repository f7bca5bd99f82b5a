from __future__ import annotations

"""Reliability-weighted navigation path finder."""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional
import logging
import math

import networkx as nx

from .knowledge import LearnedMap, NavigationStep, Transition

logger = logging.getLogger(__name__)


@dataclass
class NavigationRoute:
    """Ordered hops from `from_screen` to `to_screen`.

    `reliability` is the product of the hop reliabilities: every hop is
    treated as an independent chance of failure.
    """

    from_screen: str
    to_screen: str
    hops: List[Transition] = field(default_factory=list)

    @property
    def reliability(self) -> float:
        return math.prod(hop.reliability for hop in self.hops) if self.hops else 0.0

    @property
    def steps(self) -> List[NavigationStep]:
        return [hop.step for hop in self.hops]

    @property
    def screens(self) -> List[str]:
        return [self.from_screen] + [hop.to_screen for hop in self.hops]

    def __len__(self) -> int:
        return len(self.hops)

    def to_json(self) -> Dict[str, object]:
        return {
            "from": self.from_screen,
            "to": self.to_screen,
            "reliability": self.reliability,
            "hops": [hop.to_json() for hop in self.hops],
        }


class NavigationGraph:
    """Directed view of a learned map suitable for path search.

    Edges below `SEARCH_FLOOR` are left out of the graph but stay in the map,
    so a later success can bring them back.  Edges leaving a screen in
    `avoid` are left out too: such a screen can end a route but never be
    passed through.
    """

    SEARCH_FLOOR = 0.1

    def __init__(self, learned: LearnedMap, floor: float = SEARCH_FLOOR, avoid: Iterable[str] = ()) -> None:
        avoided = set(avoid)
        self._g = nx.DiGraph()
        for screen_id in learned.screens:
            self._g.add_node(screen_id)
        for edge in learned.transitions.values():
            if edge.reliability < floor or edge.from_screen in avoided:
                continue
            self._g.add_edge(edge.from_screen, edge.to_screen, cost=1.0 - edge.reliability, obj=edge)

    def to_networkx(self) -> nx.DiGraph:
        return self._g

    def shortest_screens(self, start: str, target: str) -> List[str]:
        """Cheapest screen sequence, ties resolved in discovery order."""
        try:
            return nx.dijkstra_path(self._g, start, target, weight="cost")
        except (nx.NetworkXNoPath, nx.NodeNotFound):
            return []

    def edge(self, u: str, v: str) -> Transition:
        return self._g.edges[u, v]["obj"]


class PathFinder:
    DIRECT_THRESHOLD = 0.3

    def find_path(self, learned: LearnedMap, start: str, target: str) -> Optional[NavigationRoute]:
        """Return the best route or ``None`` when no path exists.

        A direct edge above `DIRECT_THRESHOLD` short-circuits the search;
        otherwise a cost of ``1 - reliability`` per hop is minimised.  Blocker
        screens other than `start` are never passed through.  Partial routes
        are never returned.
        """
        if start == target:
            return None

        direct = learned.get_transition(start, target)
        if direct is not None and direct.reliability > self.DIRECT_THRESHOLD:
            return NavigationRoute(start, target, [direct])

        graph = NavigationGraph(learned, avoid=set(learned.blocker_screens) - {start})
        nodes = graph.shortest_screens(start, target)
        if len(nodes) < 2:
            logger.debug("No path from %s to %s", start, target)
            return None
        hops = [graph.edge(nodes[i], nodes[i + 1]) for i in range(len(nodes) - 1)]
        route = NavigationRoute(start, target, hops)
        logger.debug("Path %s -> %s: %d hops, reliability %.3f", start, target, len(route), route.reliability)
        return route
