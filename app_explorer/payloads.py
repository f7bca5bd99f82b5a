from __future__ import annotations

"""Typed wire payloads handed to the delivery queue.

Every payload serializes through an explicit `to_wire()` step so the wire
format stays stable while the internal dataclasses evolve.
"""

from typing import Any, Dict, Optional, Union
import time

from pydantic import BaseModel, Field

from .knowledge import UIElement


class WirePayload(BaseModel):
    """Base class with the explicit serialization step."""

    def to_wire(self) -> str:
        return self.model_dump_json(exclude_none=True)

    @classmethod
    def from_wire(cls, raw: Union[str, bytes, Dict[str, Any]]):
        if isinstance(raw, dict):
            return cls.model_validate(raw)
        return cls.model_validate_json(raw)


class UIElementSummary(BaseModel):
    """Non-sensitive summary of an on-screen element."""

    text: Optional[str] = None
    content_desc: Optional[str] = None
    class_name: Optional[str] = None
    resource_id: Optional[str] = None
    bounds: Optional[Dict[str, int]] = None
    clickable: bool = False

    @classmethod
    def from_element(cls, element: UIElement) -> UIElementSummary:
        return cls(
            text=element.text,
            content_desc=element.content_description,
            class_name=element.class_name,
            resource_id=element.resource_id,
            bounds=element.bounds.to_json() if element.bounds else None,
            clickable=element.clickable,
        )


class TransitionAction(WirePayload):
    """Action that may have caused a screen transition."""

    action_type: str = Field(description="tap, swipe, go_back, go_home, keyevent or text")
    x: Optional[int] = None
    y: Optional[int] = None
    element_resource_id: Optional[str] = None
    element_text: Optional[str] = None
    element_class: Optional[str] = None
    element_content_desc: Optional[str] = None
    start_x: Optional[int] = None
    start_y: Optional[int] = None
    end_x: Optional[int] = None
    end_y: Optional[int] = None
    swipe_direction: Optional[str] = None
    keycode: Optional[str] = None
    text: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def tap(cls, x: int, y: int, resource_id: Optional[str] = None, text: Optional[str] = None) -> TransitionAction:
        return cls(action_type="tap", x=x, y=y, element_resource_id=resource_id, element_text=text)

    @classmethod
    def swipe(cls, start_x: int, start_y: int, end_x: int, end_y: int, direction: Optional[str] = None) -> TransitionAction:
        return cls(
            action_type="swipe",
            start_x=start_x,
            start_y=start_y,
            end_x=end_x,
            end_y=end_y,
            swipe_direction=direction,
        )

    @classmethod
    def back(cls) -> TransitionAction:
        return cls(action_type="go_back")


class TransitionPayload(WirePayload):
    """Intra-app screen transition observed by the navigation learner."""

    before_package: str
    before_activity: str
    before_ui_elements: list[UIElementSummary] = Field(default_factory=list)
    after_package: str
    after_activity: str
    after_ui_elements: list[UIElementSummary] = Field(default_factory=list)
    action: Optional[TransitionAction] = None
    transition_time_ms: int = 0
    timestamp: float = Field(default_factory=time.time)


class ExplorationLogEntry(BaseModel):
    state: str
    action: str
    reward: float
    next_state: Optional[str] = None
    timestamp: float = Field(default_factory=time.time)


class ExplorationLogPayload(WirePayload):
    """Batch of (state, action, reward, next state) experiences."""

    package: Optional[str] = None
    entries: list[ExplorationLogEntry] = Field(default_factory=list)
    timestamp: float = Field(default_factory=time.time)


class ValueTablePayload(WirePayload):
    """Snapshot of the value table for backup or remote merge."""

    package: Optional[str] = None
    q_values: Dict[str, float] = Field(default_factory=dict)
    visit_counts: Dict[str, int] = Field(default_factory=dict)
    human_feedback: Dict[str, int] = Field(default_factory=dict)
    dangerous_patterns: list[str] = Field(default_factory=list)
    exported_at: float = Field(default_factory=time.time)
