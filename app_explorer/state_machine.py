from __future__ import annotations

"""Explicit lifecycle state machine for one exploration session."""

from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Dict, List
import logging

logger = logging.getLogger(__name__)


class State(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    EXPLORING = "exploring"
    PAUSED = "paused"
    STUCK = "stuck"
    COMPLETING = "completing"
    COMPLETED = "completed"


class Event(str, Enum):
    # lifecycle
    START_REQUESTED = "start_requested"
    INITIALIZATION_COMPLETE = "initialization_complete"
    STOP_REQUESTED = "stop_requested"
    # progress
    ELEMENT_TAPPED = "element_tapped"
    NEW_SCREEN_DISCOVERED = "new_screen_discovered"
    NEW_ELEMENTS_FOUND = "new_elements_found"
    NO_PROGRESS_DETECTED = "no_progress_detected"
    # stuck / recovery
    RECOVERY_SUCCEEDED = "recovery_succeeded"
    RECOVERY_FAILED = "recovery_failed"
    # user interaction
    PAUSE_REQUESTED = "pause_requested"
    RESUME_REQUESTED = "resume_requested"
    USER_HELPED = "user_helped"
    # completion
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    COVERAGE_THRESHOLD_REACHED = "coverage_threshold_reached"
    QUEUE_EXHAUSTED = "queue_exhausted"
    FINALIZED = "finalized"


Listener = Callable[[State, State, Event], None]

_FINISHING_EVENTS = {
    Event.STOP_REQUESTED,
    Event.MAX_ITERATIONS_REACHED,
    Event.COVERAGE_THRESHOLD_REACHED,
    Event.QUEUE_EXHAUSTED,
}


@dataclass
class Statistics:
    current_state: State
    consecutive_no_progress: int
    recovery_attempts: int
    total_elements_tapped: int
    total_screens_discovered: int


class ExplorationStateMachine:
    """Single source of truth for the session phase.

    Events are applied one at a time in arrival order; an event raised from
    inside a listener is queued and applied after the current one, so
    listeners always observe a total order of transitions.
    """

    STUCK_THRESHOLD = 5
    RECOVERY_THRESHOLD = 3

    def __init__(self) -> None:
        self._state = State.IDLE
        self._listeners: List[Listener] = []
        self._inbox: Deque[Event] = deque()
        self._dispatching = False
        self._reset_counters()
        self._handlers: Dict[State, Callable[[Event], State]] = {
            State.IDLE: self._on_idle,
            State.INITIALIZING: self._on_initializing,
            State.EXPLORING: self._on_exploring,
            State.PAUSED: self._on_paused,
            State.STUCK: self._on_stuck,
            State.COMPLETING: self._on_completing,
            State.COMPLETED: self._on_completed,
        }

    @property
    def state(self) -> State:
        return self._state

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    def process(self, event: Event) -> State:
        """Apply `event` and return the state after it (and any queued events)."""
        self._inbox.append(event)
        if self._dispatching:
            return self._state
        self._dispatching = True
        try:
            while self._inbox:
                self._apply(self._inbox.popleft())
        finally:
            self._dispatching = False
        return self._state

    def _apply(self, event: Event) -> None:
        old = self._state
        new = self._handlers[old](event)
        if new == old:
            return
        logger.info("State transition: %s -> %s (event: %s)", old.value, new.value, event.value)
        self._state = new
        for listener in list(self._listeners):
            listener(old, new, event)

    # ------------------------------------------------------------------
    # handlers ----------------------------------------------------------

    def _on_idle(self, event: Event) -> State:
        if event == Event.START_REQUESTED:
            self._reset_counters()
            return State.INITIALIZING
        return State.IDLE

    def _on_initializing(self, event: Event) -> State:
        if event == Event.INITIALIZATION_COMPLETE:
            return State.EXPLORING
        if event == Event.STOP_REQUESTED:
            return State.IDLE
        return State.INITIALIZING

    def _on_exploring(self, event: Event) -> State:
        if event == Event.NEW_SCREEN_DISCOVERED:
            self._no_progress = 0
            self._screens_discovered += 1
        elif event == Event.NEW_ELEMENTS_FOUND:
            self._no_progress = 0
        elif event == Event.ELEMENT_TAPPED:
            self._elements_tapped += 1
        elif event == Event.NO_PROGRESS_DETECTED:
            self._no_progress += 1
            logger.debug("No progress: %d / %d", self._no_progress, self.STUCK_THRESHOLD)
            if self._no_progress >= self.STUCK_THRESHOLD:
                self._recovery_attempts = 0
                return State.STUCK
        elif event == Event.PAUSE_REQUESTED:
            return State.PAUSED
        elif event in _FINISHING_EVENTS:
            return State.COMPLETING
        return State.EXPLORING

    def _on_paused(self, event: Event) -> State:
        if event == Event.RESUME_REQUESTED:
            return State.EXPLORING
        if event == Event.STOP_REQUESTED:
            return State.COMPLETING
        return State.PAUSED

    def _on_stuck(self, event: Event) -> State:
        if event in (Event.RECOVERY_SUCCEEDED, Event.USER_HELPED):
            logger.info("Left stuck state after %d failed recoveries (%s)", self._recovery_attempts, event.value)
            self._no_progress = 0
            return State.EXPLORING
        if event == Event.NEW_SCREEN_DISCOVERED:
            self._no_progress = 0
            self._screens_discovered += 1
            return State.EXPLORING
        if event == Event.RECOVERY_FAILED:
            self._recovery_attempts += 1
            logger.warning("Recovery failed: %d / %d", self._recovery_attempts, self.RECOVERY_THRESHOLD)
            if self._recovery_attempts >= self.RECOVERY_THRESHOLD:
                return State.COMPLETING
            return State.STUCK
        if event == Event.STOP_REQUESTED:
            return State.COMPLETING
        return State.STUCK

    def _on_completing(self, event: Event) -> State:
        return State.COMPLETED

    def _on_completed(self, event: Event) -> State:
        if event == Event.START_REQUESTED:
            self._reset_counters()
            return State.INITIALIZING
        return State.COMPLETED

    # ------------------------------------------------------------------
    def _reset_counters(self) -> None:
        self._no_progress = 0
        self._recovery_attempts = 0
        self._elements_tapped = 0
        self._screens_discovered = 0

    def reset(self) -> None:
        logger.info("Resetting state machine to IDLE")
        self._reset_counters()
        self._inbox.clear()
        self._state = State.IDLE

    def is_active(self) -> bool:
        return self._state in (State.INITIALIZING, State.EXPLORING, State.STUCK)

    def can_start(self) -> bool:
        return self._state in (State.IDLE, State.COMPLETED)

    def statistics(self) -> Statistics:
        return Statistics(
            current_state=self._state,
            consecutive_no_progress=self._no_progress,
            recovery_attempts=self._recovery_attempts,
            total_elements_tapped=self._elements_tapped,
            total_screens_discovered=self._screens_discovered,
        )
