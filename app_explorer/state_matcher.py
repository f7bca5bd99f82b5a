from __future__ import annotations

"""Utilities for identifying screens and elements across re-captures."""

from typing import Iterable, List
import hashlib
import re

from .knowledge import UIElement, flatten_elements
from .session import ClickableElement, ExploredScreen, ScrollableContainer, TextElement

_DIGITS = re.compile(r"\d+")
_NOT_ID_CHAR = re.compile(r"[^a-zA-Z0-9_]")


class StateMatcher:
    """Rule-based screen identity.

    The signature deliberately ignores dynamic text content: two captures of
    the same screen with different list contents or clock values hash to the
    same id as long as their structural skeleton (class + resource id of every
    element) and originating activity agree.
    """

    SIGNATURE_LENGTH = 16
    SKELETON_LIMIT = 256
    ID_TEXT_LIMIT = 30
    ID_TEXT_KEEP = 20

    def __init__(self, screen_height: int = 2400) -> None:
        self.screen_height = screen_height

    # ------------------------------------------------------------------
    def signature(self, activity: str, elements: Iterable[UIElement]) -> str:
        """Return a *stable* signature string for a concrete snapshot."""
        canon = self._canonicalize(elements)
        combined = f"{activity}|{canon}"
        return self._sha256(combined)[: self.SIGNATURE_LENGTH]

    def element_id(self, element: UIElement) -> str:
        """Identifier used in `screen_id:element_id` composite keys.

        Joins the resource id name, short text (under 30 characters, first 20
        kept) and short class name, so list rows sharing a resource id stay
        apart.  Anonymous elements (no resource id, no text) also get their
        rounded centre and size.
        """
        parts: list[str] = []
        if element.resource_id:
            parts.append(element.resource_id.rsplit("/", 1)[-1])
        if element.text and not element.password and len(element.text) < self.ID_TEXT_LIMIT:
            parts.append(element.text[: self.ID_TEXT_KEEP])
        parts.append((element.class_name or "View").rsplit(".", 1)[-1])
        if not element.resource_id and not element.text and element.bounds is not None:
            b = element.bounds
            parts.append(f"{b.center_x // 10 * 10}_{b.center_y // 10 * 10}_{b.width // 20 * 20}x{b.height // 20 * 20}")
        return _NOT_ID_CHAR.sub("", "_".join(parts)).lower()

    def action_key(self, element: ClickableElement, screen_height: int | None = None) -> str:
        """Pattern "ElementType|resourceIdPattern|position" shared by similar elements."""
        height = screen_height or self.screen_height
        short_class = element.class_name.rsplit(".", 1)[-1] if element.class_name else "View"
        pattern = "none"
        if element.resource_id:
            pattern = _DIGITS.sub("*", element.resource_id.rsplit("/", 1)[-1])
        if element.center_y < height / 3:
            position = "top"
        elif element.center_y > height * 2 / 3:
            position = "bottom"
        else:
            position = "center"
        return f"{short_class}|{pattern}|{position}"

    def screen_hash(self, screen: ExploredScreen) -> str:
        """State representation for the value store: activity + sorted element ids."""
        ids = sorted(e.element_id for e in screen.clickable_elements)
        return self._sha256(f"{screen.activity}|{','.join(ids)}")[: self.SIGNATURE_LENGTH]

    # ------------------------------------------------------------------
    def build_screen(self, package: str, activity: str, elements: List[UIElement]) -> ExploredScreen:
        """Turn a raw snapshot into an `ExploredScreen` with stable ids."""
        flat = flatten_elements(elements)
        screen = ExploredScreen(
            screen_id=self.signature(activity, flat),
            activity=activity,
            package=package,
        )
        seen: set[str] = set()
        for element in flat:
            if not element.enabled or element.bounds is None:
                continue
            eid = self.element_id(element)
            if eid in seen:
                continue
            seen.add(eid)
            if element.scrollable:
                screen.scrollable_containers.append(
                    ScrollableContainer(
                        element_id=eid,
                        class_name=element.class_name or "",
                        bounds=element.bounds,
                        resource_id=element.resource_id,
                    )
                )
            elif element.clickable:
                screen.clickable_elements.append(
                    ClickableElement(
                        element_id=eid,
                        class_name=element.class_name or "",
                        bounds=element.bounds,
                        resource_id=element.resource_id,
                        text=element.text,
                        content_description=element.content_description,
                    )
                )
            elif element.text and not element.password:
                screen.text_elements.append(
                    TextElement(
                        element_id=eid,
                        text=element.text,
                        class_name=element.class_name or "",
                        bounds=element.bounds,
                        resource_id=element.resource_id,
                    )
                )
        return screen

    # ------------------------------------------------------------------
    def _canonicalize(self, elements: Iterable[UIElement]) -> str:
        """Extract a canonical skeleton string, stripping dynamic attributes."""
        parts: list[str] = []
        for element in elements:
            if len(parts) >= self.SKELETON_LIMIT:
                break
            parts.append(f"{element.class_name or ''}#{element.resource_id or ''}")
        return ",".join(parts)

    @staticmethod
    def _sha256(value: str) -> str:
        return hashlib.sha256(value.encode("utf-8")).hexdigest()
