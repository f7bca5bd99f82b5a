"""Tests for wire payload serialization."""

import json

from app_explorer.knowledge import ElementBounds, UIElement
from app_explorer.payloads import (
    ExplorationLogEntry,
    ExplorationLogPayload,
    TransitionAction,
    TransitionPayload,
    UIElementSummary,
)


class TestTransitionAction:
    """Tests for action constructors."""

    def test_tap_omits_unset_fields(self):
        """Test unset optional fields stay off the wire."""
        wire = json.loads(TransitionAction.tap(10, 20, resource_id="com.app:id/ok").to_wire())
        assert wire == {"action_type": "tap", "x": 10, "y": 20, "element_resource_id": "com.app:id/ok"}

    def test_swipe_and_back(self):
        """Test the swipe and back shortcuts."""
        swipe = TransitionAction.swipe(1, 2, 3, 4, direction="up")
        assert (swipe.start_x, swipe.end_y, swipe.swipe_direction) == (1, 4, "up")
        assert TransitionAction.back().action_type == "go_back"


class TestParsing:
    """Tests for reading payloads back."""

    def test_from_wire_accepts_str_and_dict(self):
        """Test both JSON text and decoded dicts are accepted."""
        payload = TransitionPayload(
            before_package="com.app",
            before_activity=".A",
            after_package="com.app",
            after_activity=".B",
            action=TransitionAction.back(),
            timestamp=5.0,
        )
        wire = payload.to_wire()
        assert TransitionPayload.from_wire(wire) == payload
        assert TransitionPayload.from_wire(json.loads(wire)) == payload

    def test_log_entries(self):
        """Test nested log entries survive the wire."""
        payload = ExplorationLogPayload(
            package="com.app",
            entries=[ExplorationLogEntry(state="s", action="a", reward=0.5, timestamp=1.0)],
            timestamp=2.0,
        )
        parsed = ExplorationLogPayload.from_wire(payload.to_wire())
        assert parsed.entries[0].next_state is None
        assert parsed.entries[0].reward == 0.5


class TestSummaries:
    """Tests for element summaries."""

    def test_from_element(self):
        """Test a summary copies the public attributes."""
        element = UIElement(
            text="Ok",
            content_description="Confirm",
            class_name="android.widget.Button",
            resource_id="com.app:id/ok",
            bounds=ElementBounds(1, 2, 3, 4),
            clickable=True,
        )
        summary = UIElementSummary.from_element(element)
        assert summary.content_desc == "Confirm"
        assert summary.bounds == {"x": 1, "y": 2, "width": 3, "height": 4}
        assert summary.clickable

    def test_without_bounds(self):
        """Test elements without bounds summarize to no bounds."""
        assert UIElementSummary.from_element(UIElement(text="x")).bounds is None
