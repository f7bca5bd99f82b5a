from __future__ import annotations

"""Passive learning of intra-app transitions from observed screen changes."""

from dataclasses import dataclass
from typing import Callable, List, Optional
import logging
import time

from .delivery_queue import DeliveryQueue
from .knowledge import UIElement, flatten_elements
from .payloads import TransitionAction, TransitionPayload, UIElementSummary

logger = logging.getLogger(__name__)


@dataclass
class LearningStats:
    transitions_learned: int
    transitions_skipped: int
    enabled: bool


class NavigationLearner:
    """Turns (action, activity change) pairs into queued `TransitionPayload`s.

    Only activity changes inside the same package are learned, at most one
    per debounce window, and only for packages the learning gate allows.
    """

    DEBOUNCE_SECONDS = 0.5
    ACTION_EXPIRY_SECONDS = 3.0
    MAX_UI_ELEMENTS = 50

    def __init__(
        self,
        queue: DeliveryQueue,
        destination: str,
        is_learning_allowed: Callable[[str], bool] = lambda package: True,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._queue = queue
        self.destination = destination
        self._allowed = is_learning_allowed
        self.enabled = enabled
        self._clock = clock

        self._previous_package: Optional[str] = None
        self._previous_activity: Optional[str] = None
        self._previous_elements: List[UIElement] = []
        self._last_transition = 0.0
        self._pending_action: Optional[TransitionAction] = None
        self._pending_at = 0.0

        self.transitions_learned = 0
        self.transitions_skipped = 0

    # ------------------------------------------------------------------
    def on_action_performed(self, action: TransitionAction) -> None:
        if not self.enabled:
            return
        self._pending_action = action
        self._pending_at = self._clock()
        logger.debug("Captured pending action: %s", action.action_type)

    def on_screen_changed(
        self, package: str, activity: str, elements: List[UIElement]
    ) -> Optional[TransitionPayload]:
        """Feed a new foreground screen; returns the payload when a transition was queued."""
        now = self._clock()
        payload: Optional[TransitionPayload] = None
        if self._should_learn(package, now):
            activity_changed = self._previous_activity is not None and self._previous_activity != activity
            if activity_changed and self._previous_package == package:
                payload = self._learn(package, activity, elements, now)
        self._remember(package, activity, elements)
        return payload

    def _should_learn(self, package: str, now: float) -> bool:
        if not self.enabled:
            return False
        if not self._allowed(package):
            logger.debug("Skipping %s: learning not allowed", package)
            return False
        if now - self._last_transition < self.DEBOUNCE_SECONDS:
            logger.debug("Debouncing rapid transition")
            return False
        return True

    def _learn(self, package: str, activity: str, elements: List[UIElement], now: float) -> Optional[TransitionPayload]:
        action = None
        if self._pending_action is not None and now - self._pending_at < self.ACTION_EXPIRY_SECONDS:
            action = self._pending_action
        started = self._pending_at if self._pending_at > 0 else now
        payload = TransitionPayload(
            before_package=package,
            before_activity=self._previous_activity or "",
            before_ui_elements=self._summaries(self._previous_elements),
            after_package=package,
            after_activity=activity,
            after_ui_elements=self._summaries(elements),
            action=action,
            transition_time_ms=int((now - started) * 1000),
            timestamp=now,
        )
        self._last_transition = now
        self._pending_action = None
        self._pending_at = 0.0

        if self._queue.enqueue_navigation(payload, self.destination) is None:
            self.transitions_skipped += 1
            return None
        self.transitions_learned += 1
        logger.info(
            "Queued transition %s -> %s (action: %s)",
            payload.before_activity,
            activity,
            action.action_type if action else "unknown",
        )
        return payload

    def _summaries(self, elements: List[UIElement]) -> List[UIElementSummary]:
        safe = [e for e in flatten_elements(elements) if not e.password and not e.sensitive]
        return [UIElementSummary.from_element(e) for e in safe[: self.MAX_UI_ELEMENTS]]

    def _remember(self, package: str, activity: str, elements: List[UIElement]) -> None:
        self._previous_package = package
        self._previous_activity = activity
        self._previous_elements = list(elements[: self.MAX_UI_ELEMENTS])

    # ------------------------------------------------------------------
    def reset(self) -> None:
        self._previous_package = None
        self._previous_activity = None
        self._previous_elements = []
        self._pending_action = None
        self._pending_at = 0.0
        logger.debug("Learning state reset")

    def statistics(self) -> LearningStats:
        return LearningStats(
            transitions_learned=self.transitions_learned,
            transitions_skipped=self.transitions_skipped,
            enabled=self.enabled,
        )
