from __future__ import annotations

"""Multi-strategy element resolution with confidence scoring.

A stored element description rarely matches a fresh capture exactly: ids get
regenerated, texts change with locale, layouts shift by a few pixels.  The
resolver walks a fixed confidence ladder and stops at the first strategy that
produces a match.

| strategy      | confidence |
|---------------|------------|
| resource_id   | 1.0        |
| text_class    | 0.9        |
| text_only     | 0.7        |
| class_bounds  | 0.5        |
| stored_bounds | 0.3        |
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple
import logging

from .knowledge import ElementBounds, UIElement, flatten_elements

logger = logging.getLogger(__name__)


@dataclass
class ElementDescriptor:
    """Symbolic description of an element remembered from an earlier capture."""

    resource_id: Optional[str] = None
    text: Optional[str] = None
    class_name: Optional[str] = None
    bounds: Optional[ElementBounds] = None

    def is_empty(self) -> bool:
        return not (self.resource_id or self.text or self.class_name or self.bounds)


@dataclass
class ResolutionResult:
    found: bool
    element: Optional[UIElement] = None
    bounds: Optional[ElementBounds] = None
    confidence: float = 0.0
    method: Optional[str] = None
    attempted: List[str] = field(default_factory=list)
    message: Optional[str] = None

    @property
    def center(self) -> Optional[Tuple[int, int]]:
        if self.bounds is None:
            return None
        return (self.bounds.center_x, self.bounds.center_y)


class ElementResolver:
    BOUNDS_TOLERANCE = 50

    RESOURCE_ID = "resource_id"
    TEXT_CLASS = "text_class"
    TEXT_ONLY = "text_only"
    CLASS_BOUNDS = "class_bounds"
    STORED_BOUNDS = "stored_bounds"

    CONFIDENCE = {
        RESOURCE_ID: 1.0,
        TEXT_CLASS: 0.9,
        TEXT_ONLY: 0.7,
        CLASS_BOUNDS: 0.5,
        STORED_BOUNDS: 0.3,
    }

    def __init__(self, tolerance: int = BOUNDS_TOLERANCE) -> None:
        self.tolerance = tolerance

    # ------------------------------------------------------------------
    def resolve(self, descriptor: ElementDescriptor, elements: List[UIElement]) -> ResolutionResult:
        """Find the live element best matching `descriptor`.

        A miss is reported through `ResolutionResult(found=False)` whose
        message lists the strategies tried and why each failed.
        """
        flat = flatten_elements(elements)
        attempted: List[str] = []
        reasons: List[str] = []

        ladder: List[Tuple[str, bool, str, Callable[[], Optional[UIElement]]]] = [
            (
                self.RESOURCE_ID,
                bool(descriptor.resource_id),
                "no element with that id",
                lambda: self._by_resource_id(flat, descriptor.resource_id or ""),
            ),
            (
                self.TEXT_CLASS,
                bool(descriptor.text and descriptor.class_name),
                "no element with matching text and class",
                lambda: self._by_text_and_class(flat, descriptor.text or "", descriptor.class_name or ""),
            ),
            (
                self.TEXT_ONLY,
                bool(descriptor.text),
                "no element with matching text",
                lambda: self._by_text(flat, descriptor.text or ""),
            ),
            (
                self.CLASS_BOUNDS,
                bool(descriptor.class_name and descriptor.bounds),
                f"no {descriptor.class_name} within {self.tolerance}px",
                lambda: self._by_class_and_bounds(flat, descriptor.class_name or "", descriptor.bounds),
            ),
            (
                self.STORED_BOUNDS,
                descriptor.bounds is not None,
                f"nothing within {self.tolerance * 2}px of stored bounds",
                lambda: self._by_bounds(flat, descriptor.bounds),
            ),
        ]

        for method, applicable, miss_reason, strategy in ladder:
            if not applicable:
                continue
            attempted.append(method)
            match = strategy()
            if match is not None:
                logger.debug("Resolved element via %s", method)
                return ResolutionResult(
                    found=True,
                    element=match,
                    bounds=match.bounds,
                    confidence=self.CONFIDENCE[method],
                    method=method,
                    attempted=attempted,
                )
            reasons.append(f"{method}: {miss_reason}")

        if not attempted:
            message = "Element not found: descriptor is empty"
        else:
            message = "Element not found. Tried: " + "; ".join(reasons)
        logger.debug(message)
        return ResolutionResult(found=False, attempted=attempted, message=message)

    # ------------------------------------------------------------------
    # individual strategies ---------------------------------------------

    def _by_resource_id(self, flat: List[UIElement], resource_id: str) -> Optional[UIElement]:
        return next((e for e in flat if e.matches_resource_id(resource_id)), None)

    def _by_text_and_class(self, flat: List[UIElement], text: str, class_name: str) -> Optional[UIElement]:
        return next((e for e in flat if e.contains_text(text) and e.matches_class(class_name)), None)

    def _by_text(self, flat: List[UIElement], text: str) -> Optional[UIElement]:
        wanted = text.lower()
        exact = next(
            (e for e in flat if e.display_text is not None and e.display_text.lower() == wanted),
            None,
        )
        if exact is not None:
            return exact
        return next((e for e in flat if e.contains_text(text)), None)

    def _by_class_and_bounds(
        self, flat: List[UIElement], class_name: str, bounds: Optional[ElementBounds]
    ) -> Optional[UIElement]:
        if bounds is None:
            return None
        for element in flat:
            if element.bounds is None or not element.matches_class(class_name):
                continue
            if element.bounds.overlaps(bounds, self.tolerance):
                return element
        return None

    def _by_bounds(self, flat: List[UIElement], bounds: Optional[ElementBounds]) -> Optional[UIElement]:
        if bounds is None:
            return None
        candidates = [e for e in flat if e.bounds is not None]
        if not candidates:
            return None
        nearest = min(candidates, key=lambda e: e.bounds.distance_to(bounds))  # type: ignore[union-attr]
        if nearest.bounds.overlaps(bounds, self.tolerance * 2):  # type: ignore[union-attr]
            return nearest
        return None

    # ------------------------------------------------------------------
    # helpers used by recovery and the learner --------------------------

    def find_all_by_text(self, elements: List[UIElement], text: str) -> List[UIElement]:
        return [e for e in flatten_elements(elements) if e.contains_text(text)]

    def find_all_by_class(self, elements: List[UIElement], class_name: str) -> List[UIElement]:
        return [e for e in flatten_elements(elements) if e.matches_class(class_name)]

    def find_element_at(self, elements: List[UIElement], x: int, y: int) -> Optional[UIElement]:
        """Smallest element whose bounds contain the point."""
        hits = [e for e in flatten_elements(elements) if e.bounds is not None and e.bounds.contains(x, y)]
        if not hits:
            return None
        return min(hits, key=lambda e: e.bounds.width * e.bounds.height)  # type: ignore[union-attr]
