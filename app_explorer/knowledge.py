from __future__ import annotations

"""Data structures that form the *knowledge* backbone of the explorer.

Two families live here:

* the live UI model handed over by the snapshot provider (`UIElement`,
  `ElementBounds`), and
* the persisted, learned model of an app (`LearnedScreen`, `Transition`,
  `LearnedMap`) that survives between exploration sessions.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import time


class ActionType(str, Enum):
    """Interaction primitives understood by the action executor."""

    CLICK = "click"
    LONG_CLICK = "long_click"
    SCROLL = "scroll"
    BACK = "back"
    MENU = "menu"


@dataclass(frozen=True)
class ElementBounds:
    """Screen rectangle in device coordinates."""

    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    @property
    def center_x(self) -> int:
        return self.x + self.width // 2

    @property
    def center_y(self) -> int:
        return self.y + self.height // 2

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def contains(self, px: int, py: int) -> bool:
        return self.x <= px < self.right and self.y <= py < self.bottom

    def overlaps(self, other: ElementBounds, tolerance: int = 50) -> bool:
        """True when every coordinate is within `tolerance` pixels of `other`."""
        return (
            abs(self.x - other.x) <= tolerance
            and abs(self.y - other.y) <= tolerance
            and abs(self.width - other.width) <= tolerance
            and abs(self.height - other.height) <= tolerance
        )

    def distance_to(self, other: ElementBounds) -> int:
        """Manhattan distance over (x, y, width, height)."""
        return (
            abs(self.x - other.x)
            + abs(self.y - other.y)
            + abs(self.width - other.width)
            + abs(self.height - other.height)
        )

    def to_json(self) -> Dict[str, int]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_json(cls, data: Dict[str, Any] | None) -> Optional[ElementBounds]:
        if not data:
            return None
        return cls(
            x=int(data.get("x", 0)),
            y=int(data.get("y", 0)),
            width=int(data.get("width", 0)),
            height=int(data.get("height", 0)),
        )


@dataclass
class UIElement:
    """A concrete on-screen element as reported by the snapshot provider.

    Providers may hand over a tree (via `children`) or an already flat list;
    everything downstream flattens depth-first before searching.
    """

    text: Optional[str] = None
    content_description: Optional[str] = None
    class_name: Optional[str] = None
    resource_id: Optional[str] = None
    bounds: Optional[ElementBounds] = None
    clickable: bool = False
    scrollable: bool = False
    enabled: bool = True
    password: bool = False
    sensitive: bool = False
    children: List["UIElement"] = field(default_factory=list, repr=False)

    @property
    def display_text(self) -> Optional[str]:
        return self.text or self.content_description

    def matches_resource_id(self, resource_id: str) -> bool:
        """Full (`com.app:id/button`) or short (`button`) identifier equality."""
        if not self.resource_id:
            return False
        return self.resource_id == resource_id or self.resource_id.endswith(f":id/{resource_id}")

    def contains_text(self, search: str) -> bool:
        shown = self.display_text
        if shown is None:
            return False
        return search.lower() in shown.lower()

    def matches_class(self, class_name: str) -> bool:
        if not self.class_name:
            return False
        return class_name.lower() in self.class_name.lower()


def flatten_elements(elements: List[UIElement]) -> List[UIElement]:
    """Depth-first flattening, parent before children."""
    flat: List[UIElement] = []
    for element in elements:
        flat.append(element)
        if element.children:
            flat.extend(flatten_elements(element.children))
    return flat


# ----------------------------------------------------------------------
# Learned (persisted) model ---------------------------------------------


@dataclass
class NavigationStep:
    """Representative step that moves from one screen to another."""

    action_type: str = ActionType.CLICK.value
    element_id: Optional[str] = None
    element_text: Optional[str] = None
    resource_id: Optional[str] = None
    bounds: Optional[ElementBounds] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "action_type": self.action_type,
            "element_id": self.element_id,
            "element_text": self.element_text,
            "resource_id": self.resource_id,
            "bounds": self.bounds.to_json() if self.bounds else None,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> NavigationStep:
        return cls(
            action_type=data.get("action_type", ActionType.CLICK.value),
            element_id=data.get("element_id"),
            element_text=data.get("element_text"),
            resource_id=data.get("resource_id"),
            bounds=ElementBounds.from_json(data.get("bounds")),
        )


@dataclass
class Transition:
    """Directed, weighted edge between two learned screens.

    `reliability` is an exponentially-weighted moving average of the success
    signal and always stays within [0, 1].
    """

    ALPHA = 0.2
    SEED_RELIABILITY = 0.7

    from_screen: str
    to_screen: str
    step: NavigationStep = field(default_factory=NavigationStep)
    reliability: float = SEED_RELIABILITY
    success_count: int = 0
    failure_count: int = 0
    last_used: float = 0.0

    @property
    def key(self) -> Tuple[str, str]:
        return (self.from_screen, self.to_screen)

    @property
    def total_attempts(self) -> int:
        return self.success_count + self.failure_count

    def record(self, success: bool, now: float | None = None) -> None:
        target = 1.0 if success else 0.0
        updated = (1 - self.ALPHA) * self.reliability + self.ALPHA * target
        self.reliability = min(1.0, max(0.0, updated))
        if success:
            self.success_count += 1
        else:
            self.failure_count += 1
        self.last_used = now if now is not None else time.time()

    def to_json(self) -> Dict[str, Any]:
        return {
            "from": self.from_screen,
            "to": self.to_screen,
            "step": self.step.to_json(),
            "reliability": self.reliability,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "last_used": self.last_used,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> Transition:
        return cls(
            from_screen=data["from"],
            to_screen=data["to"],
            step=NavigationStep.from_json(data.get("step", {})),
            reliability=float(data.get("reliability", cls.SEED_RELIABILITY)),
            success_count=int(data.get("success_count", 0)),
            failure_count=int(data.get("failure_count", 0)),
            last_used=float(data.get("last_used", 0.0)),
        )


@dataclass
class LearnedScreen:
    """A screen remembered across sessions, keyed by its structural hash."""

    MAX_KEY_ELEMENTS = 20

    screen_id: str
    activity: Optional[str] = None
    title: Optional[str] = None
    key_elements: List[str] = field(default_factory=list)
    has_scrollable_content: bool = False
    child_screens: List[str] = field(default_factory=list)
    visit_count: int = 0
    last_visited: float = 0.0
    fully_explored: bool = False

    def merge(
        self,
        activity: Optional[str],
        title: Optional[str],
        has_scrollable_content: bool,
        key_elements: List[str],
        now: float,
    ) -> None:
        """Fold a new observation into this screen (merge, never replace)."""
        self.activity = activity or self.activity
        self.title = title or self.title
        self.has_scrollable_content = has_scrollable_content
        merged: List[str] = []
        for item in self.key_elements + list(key_elements):
            if item not in merged:
                merged.append(item)
        self.key_elements = merged[: self.MAX_KEY_ELEMENTS]
        self.visit_count += 1
        self.last_visited = now

    def add_child(self, screen_id: str) -> None:
        if screen_id not in self.child_screens:
            self.child_screens.append(screen_id)

    def to_json(self) -> Dict[str, Any]:
        return {
            "screen_id": self.screen_id,
            "activity": self.activity,
            "title": self.title,
            "key_elements": list(self.key_elements),
            "has_scrollable_content": self.has_scrollable_content,
            "child_screens": list(self.child_screens),
            "visit_count": self.visit_count,
            "last_visited": self.last_visited,
            "fully_explored": self.fully_explored,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> LearnedScreen:
        return cls(
            screen_id=data["screen_id"],
            activity=data.get("activity"),
            title=data.get("title"),
            key_elements=list(data.get("key_elements", [])),
            has_scrollable_content=bool(data.get("has_scrollable_content", False)),
            child_screens=list(data.get("child_screens", [])),
            visit_count=int(data.get("visit_count", 0)),
            last_visited=float(data.get("last_visited", 0.0)),
            fully_explored=bool(data.get("fully_explored", False)),
        )


@dataclass
class MenuPattern:
    menu_type: str  # hamburger, bottom_nav, tab_bar, drawer
    trigger_element: str
    menu_items: List[str] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return {"type": self.menu_type, "trigger": self.trigger_element, "items": list(self.menu_items)}

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> MenuPattern:
        return cls(
            menu_type=data.get("type", ""),
            trigger_element=data["trigger"],
            menu_items=list(data.get("items", [])),
        )


@dataclass
class LearnedMap:
    """Container that holds the entire navigation knowledge for one app."""

    package: str
    last_updated: float = 0.0
    screens: Dict[str, LearnedScreen] = field(default_factory=dict)
    transitions: Dict[Tuple[str, str], Transition] = field(default_factory=dict)
    entry_points: List[str] = field(default_factory=list)
    menu_patterns: List[MenuPattern] = field(default_factory=list)
    # screen_id -> blocker kind (login, password, setup, ...)
    blocker_screens: Dict[str, str] = field(default_factory=dict)

    def get_transition(self, from_screen: str, to_screen: str) -> Optional[Transition]:
        return self.transitions.get((from_screen, to_screen))

    def outgoing(self, screen_id: str) -> List[Transition]:
        return [t for t in self.transitions.values() if t.from_screen == screen_id]

    # ------------------------------------------------------------------
    # persistence -------------------------------------------------------

    def to_json(self) -> Dict[str, Any]:
        """Serialize the map into a JSON-serialisable structure."""
        return {
            "package": self.package,
            "last_updated": self.last_updated,
            "screens": {sid: s.to_json() for sid, s in self.screens.items()},
            "transitions": [t.to_json() for t in self.transitions.values()],
            "entry_points": list(self.entry_points),
            "menu_patterns": [m.to_json() for m in self.menu_patterns],
            "blocker_screens": dict(self.blocker_screens),
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> LearnedMap:
        learned = cls(package=data["package"], last_updated=float(data.get("last_updated", 0.0)))
        for sid, meta in data.get("screens", {}).items():
            learned.screens[sid] = LearnedScreen.from_json(meta)
        for meta in data.get("transitions", []):
            edge = Transition.from_json(meta)
            learned.transitions[edge.key] = edge
        learned.entry_points = list(data.get("entry_points", []))
        learned.menu_patterns = [MenuPattern.from_json(m) for m in data.get("menu_patterns", [])]
        learned.blocker_screens = dict(data.get("blocker_screens", {}))
        return learned
