from __future__ import annotations

"""Per-session exploration model.

An `ExplorationState` exists for exactly one exploration session and is
replaced wholesale between sessions; the learned, cross-session knowledge lives
in `knowledge.LearnedMap` instead.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import time

from .knowledge import ElementBounds


class ExplorationGoal(str, Enum):
    """Determines stopping conditions of a session."""

    QUICK_SCAN = "quick_scan"
    DEEP_MAP = "deep_map"
    COMPLETE_COVERAGE = "complete_coverage"


class IssueType(str, Enum):
    ELEMENT_STUCK = "element_stuck"
    BACK_FAILED = "back_failed"
    APP_LEFT = "app_left"
    SCROLL_FAILED = "scroll_failed"
    DANGEROUS_ELEMENT = "dangerous_element"
    RECOVERY_FAILED = "recovery_failed"
    BLOCKER_SCREEN = "blocker_screen"
    NO_PATH = "no_path"
    ELEMENT_NOT_FOUND = "element_not_found"


class TapResult(str, Enum):
    """Observed outcome of acting on an element."""

    NEW_SCREEN = "new_screen"
    NEW_ELEMENTS = "new_elements"
    NAVIGATE_BACK = "navigate_back"
    NO_CHANGE = "no_change"
    CLOSED_APP = "closed_app"
    CRASH = "crash"


@dataclass
class ClickableElement:
    element_id: str
    class_name: str
    bounds: ElementBounds
    resource_id: Optional[str] = None
    text: Optional[str] = None
    content_description: Optional[str] = None
    leads_to_screen: Optional[str] = None

    @property
    def center_x(self) -> int:
        return self.bounds.center_x

    @property
    def center_y(self) -> int:
        return self.bounds.center_y

    @property
    def label(self) -> str:
        return self.text or self.content_description or self.resource_id or self.element_id


@dataclass
class ScrollableContainer:
    element_id: str
    class_name: str
    bounds: ElementBounds
    resource_id: Optional[str] = None
    fully_scrolled: bool = False


@dataclass
class TextElement:
    element_id: str
    text: str
    class_name: str
    bounds: ElementBounds
    resource_id: Optional[str] = None


@dataclass
class ExploredScreen:
    """A screen as captured during the current session."""

    screen_id: str
    activity: str
    package: str
    clickable_elements: List[ClickableElement] = field(default_factory=list)
    scrollable_containers: List[ScrollableContainer] = field(default_factory=list)
    text_elements: List[TextElement] = field(default_factory=list)
    visit_count: int = 1
    timestamp: float = field(default_factory=time.time)

    @property
    def title(self) -> Optional[str]:
        for element in self.text_elements:
            if element.text.strip():
                return element.text.strip()
        return None

    def key_elements(self, limit: int = 20) -> List[str]:
        seen: List[str] = []
        for element in self.clickable_elements:
            if element.label not in seen:
                seen.append(element.label)
            if len(seen) >= limit:
                break
        return seen

    def element_ids(self) -> set[str]:
        return {e.element_id for e in self.clickable_elements}

    def find_element(self, element_id: str) -> Optional[ClickableElement]:
        for element in self.clickable_elements:
            if element.element_id == element_id:
                return element
        return None


@dataclass
class ExplorationIssue:
    screen_id: str
    issue_type: IssueType
    description: str
    element_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def to_json(self) -> Dict[str, Any]:
        return {
            "screen_id": self.screen_id,
            "element_id": self.element_id,
            "type": self.issue_type.value,
            "description": self.description,
            "timestamp": self.timestamp,
        }


@dataclass
class ScreenTransition:
    from_screen: str
    to_screen: str
    element_id: Optional[str]
    timestamp: float = field(default_factory=time.time)


@dataclass
class GeneratedSensor:
    """Text element worth capturing as a sensor."""

    name: str
    screen_id: str
    element_id: str
    resource_id: Optional[str] = None
    sample_value: Optional[str] = None


@dataclass
class GeneratedAction:
    """Clickable element worth exposing as an action."""

    name: str
    screen_id: str
    element_id: str
    resource_id: Optional[str] = None
    leads_to_screen: Optional[str] = None


@dataclass
class ExplorationState:
    """Everything a single exploration session knows about its target."""

    package: str
    screens: Dict[str, ExploredScreen] = field(default_factory=dict)
    # composite keys `screen_id:element_id`
    visited_elements: set[str] = field(default_factory=set)
    issues: List[ExplorationIssue] = field(default_factory=list)
    transitions: List[ScreenTransition] = field(default_factory=list)
    pass_number: int = 1
    # pass number -> overall coverage at the end of that pass
    pass_coverage: Dict[int, float] = field(default_factory=dict)
    cumulative_sensors: List[GeneratedSensor] = field(default_factory=list)
    cumulative_actions: List[GeneratedAction] = field(default_factory=list)
    # screen_id -> blocker kind for screens the explorer will not act on
    blocker_screens: Dict[str, str] = field(default_factory=dict)
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    @staticmethod
    def visit_key(screen_id: str, element_id: str) -> str:
        return f"{screen_id}:{element_id}"

    def mark_visited(self, screen_id: str, element_id: str) -> None:
        self.visited_elements.add(self.visit_key(screen_id, element_id))

    def is_visited(self, screen_id: str, element_id: str) -> bool:
        return self.visit_key(screen_id, element_id) in self.visited_elements

    def unvisited_elements(self, screen_id: str) -> List[ClickableElement]:
        screen = self.screens.get(screen_id)
        if screen is None:
            return []
        return [e for e in screen.clickable_elements if not self.is_visited(screen_id, e.element_id)]

    def add_issue(
        self,
        screen_id: str,
        issue_type: IssueType,
        description: str,
        element_id: Optional[str] = None,
    ) -> None:
        self.issues.append(ExplorationIssue(screen_id, issue_type, description, element_id))


@dataclass
class ExplorationResult:
    """Returned once the state machine reaches COMPLETED."""

    package: str
    screens: List[ExploredScreen]
    transitions: List[ScreenTransition]
    sensors: List[GeneratedSensor]
    actions: List[GeneratedAction]
    issues: List[ExplorationIssue]
    pass_number: int
    coverage: Dict[str, Any]
    value_insights: Dict[str, Any] = field(default_factory=dict)
    aborted: bool = False
    state: Optional[ExplorationState] = field(default=None, repr=False)
