from __future__ import annotations

"""The main exploration driver.

`ExplorationAgent.explore()` runs one session against a `UIDriver`: it picks
the next element through the Q-learning policy, acts, classifies the outcome,
feeds the learned map, the value table and the coverage tracker, and reports
progress to the state machine which alone decides when the session is stuck,
paused or finished.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union
import asyncio
import inspect
import logging
import re
import time

from .actions import Action, Back, RestartApp, Snapshot, Swipe, Tap, UIDriver
from .blockers import detect_blocker
from .config import ExplorerConfig
from .coverage_tracker import CoverageTracker
from .delivery_queue import DeliveryQueue
from .element_resolver import ElementDescriptor, ElementResolver
from .knowledge import Transition
from .map_store import AppMapStore
from .path_finder import NavigationRoute
from .q_learning import ExplorationQLearning
from .recovery import Strategy, StuckRecoveryStrategy
from .session import (
    ClickableElement,
    ExplorationResult,
    ExplorationState,
    ExploredScreen,
    GeneratedAction,
    GeneratedSensor,
    IssueType,
    ScreenTransition,
    ScrollableContainer,
    TapResult,
)
from .state_machine import Event, ExplorationStateMachine, State
from .state_matcher import StateMatcher

logger = logging.getLogger(__name__)

VetoCallback = Callable[[ExploredScreen, ClickableElement], Union[bool, Awaitable[bool]]]

_ACTIVE = (State.EXPLORING, State.PAUSED, State.STUCK)
_SLUG = re.compile(r"[^a-z0-9]+")


class ExplorationInProgressError(RuntimeError):
    """Raised when a session is started while another one is running."""


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _slug(text: str) -> str:
    return _SLUG.sub("_", text.lower()).strip("_") or "element"


class ExplorationAgent:
    """High-level orchestrator implementing the exploration loop."""

    def __init__(
        self,
        driver: UIDriver,
        map_store: AppMapStore,
        q_learning: ExplorationQLearning,
        queue: Optional[DeliveryQueue] = None,
        config: Optional[ExplorerConfig] = None,
        is_learning_allowed: Callable[[str], bool] = lambda package: True,
        veto_callback: Optional[VetoCallback] = None,
    ) -> None:
        self._driver = driver
        self._map_store = map_store
        self._q = q_learning
        self._queue = queue
        self.config = config or ExplorerConfig()
        self._learning_allowed = is_learning_allowed
        self._veto_callback = veto_callback

        self._matcher = StateMatcher(screen_height=self.config.screen_height)
        self._q.matcher = self._matcher
        self._resolver = ElementResolver()
        self.machine = ExplorationStateMachine()
        self.coverage = CoverageTracker()
        self.recovery = StuckRecoveryStrategy(self.config.screen_width, self.config.screen_height)

        self.state: Optional[ExplorationState] = None
        self._current: Optional[ExploredScreen] = None
        # back-tracking support
        self._screen_stack: List[str] = []
        self._iterations = 0
        self._stop_requested = False
        self._running = asyncio.Event()
        self._running.set()
        self._in_session = False

    # ------------------------------------------------------------------
    # control from other tasks ------------------------------------------

    def pause(self) -> None:
        if self.machine.process(Event.PAUSE_REQUESTED) == State.PAUSED:
            self._running.clear()

    def resume(self) -> None:
        self.machine.process(Event.RESUME_REQUESTED)
        self._running.set()

    def stop(self) -> None:
        self._stop_requested = True
        self.machine.process(Event.STOP_REQUESTED)
        self._running.set()

    def user_helped(self) -> None:
        self.machine.process(Event.USER_HELPED)

    # ------------------------------------------------------------------
    async def explore(self, package: str, previous: Optional[ExplorationResult] = None) -> ExplorationResult:
        """Entry-point of the algorithm; returns once the session is COMPLETED."""
        if self._in_session or not self.machine.can_start():
            raise ExplorationInProgressError(f"exploration already running ({self.machine.state.value})")

        self._in_session = True
        try:
            return await self._session(package, previous)
        finally:
            self._in_session = False

    async def _session(self, package: str, previous: Optional[ExplorationResult]) -> ExplorationResult:
        self._stop_requested = False
        self._running.set()
        self._iterations = 0
        self._screen_stack = []
        self._current = None
        self.coverage.reset()
        self.recovery.reset()
        self.state = self._new_state(package, previous)
        self.machine.process(Event.START_REQUESTED)
        logger.info("Starting exploration of %s (pass %d)", package, self.state.pass_number)

        # stores already mirrored by the caller are left running
        writers = [store for store in (self._q.store, self._map_store) if not store.running]
        for store in writers:
            await store.start()
        started = False
        try:
            started = await self._initialize(package)
            if started:
                await self._loop()
        finally:
            for store in writers:
                await store.stop()

        if not started:
            # INITIALIZING + stop -> IDLE
            self.machine.process(Event.STOP_REQUESTED)
            return self._build_result(aborted=True)
        aborted = self._stop_requested or self._recovery_exhausted()
        self.machine.process(Event.FINALIZED)
        return self._finalize(aborted)

    async def _initialize(self, package: str) -> bool:
        assert self.state is not None
        snapshot = await self._ensure_in_app(package)
        if self._stop_requested or snapshot is None:
            if snapshot is None:
                self.state.add_issue("", IssueType.APP_LEFT, f"could not bring {package} to the foreground")
            return False

        self._current, _ = self._observe(snapshot)
        if self._can_learn():
            self._map_store.record_entry_point(package, self._current.screen_id)
        self._screen_stack.append(self._current.screen_id)
        self.coverage.update(self.state.screens, self.state.visited_elements)
        self.machine.process(Event.INITIALIZATION_COMPLETE)
        return True

    async def _loop(self) -> None:
        while self.machine.state in _ACTIVE:
            if self.machine.state == State.PAUSED:
                await self._running.wait()
                continue
            if self.machine.state == State.STUCK:
                await self._recover()
                continue
            if self._iterations >= self.config.max_iterations:
                self.machine.process(Event.MAX_ITERATIONS_REACHED)
                break
            if self.coverage.has_reached_target(self.config.goal, self.config.target_coverage):
                self.machine.process(Event.COVERAGE_THRESHOLD_REACHED)
                break
            await self._step()

    def _halted(self) -> bool:
        """True once a stop landed while an action was in flight."""
        return self.machine.state not in _ACTIVE

    # ------------------------------------------------------------------
    # one iteration -----------------------------------------------------

    async def _step(self) -> None:
        assert self.state is not None and self._current is not None
        screen = self._current
        if self._is_blocker(screen.screen_id):
            # nothing on a blocker is tapped
            self._update_coverage()
            await self._leave_finished_screen(screen)
            return

        container = next((c for c in screen.scrollable_containers if not c.fully_scrolled), None)
        if container is not None:
            await self._scroll(screen, container)
            return

        candidates = []
        for e in self.state.unvisited_elements(screen.screen_id):
            if self._q.should_skip(screen, e):
                # confirmed dead end, counts as done
                self.state.mark_visited(screen.screen_id, e.element_id)
            else:
                candidates.append(e)
        if not candidates:
            self._update_coverage()
            await self._leave_finished_screen(screen)
            return

        element = self._q.select_element(screen, candidates)
        if element is None:
            # every remaining candidate is dangerous or vetoed
            for e in candidates:
                self.state.mark_visited(screen.screen_id, e.element_id)
                self.state.add_issue(
                    screen.screen_id, IssueType.DANGEROUS_ELEMENT, f"skipped {e.label}", e.element_id
                )
            self._update_coverage()
            return

        if await self._vetoed(screen, element):
            self.state.mark_visited(screen.screen_id, element.element_id)
            self._update_coverage()
            return
        if self._halted():
            return

        await self._tap(screen, element)

    async def _tap(self, screen: ExploredScreen, element: ClickableElement) -> None:
        assert self.state is not None
        package = self.state.package
        screen_hash = self._q.screen_hash(screen)
        action_key = self._q.action_key(element)
        first_visit = self._q.is_first_visit(screen_hash, action_key)

        performed = await self._perform(Tap(element.center_x, element.center_y))
        self._iterations += 1
        self.state.mark_visited(screen.screen_id, element.element_id)
        self.coverage.mark_element_visited(screen.screen_id)
        if self._halted():
            return
        self.machine.process(Event.ELEMENT_TAPPED)
        if not performed:
            self.state.add_issue(screen.screen_id, IssueType.ELEMENT_STUCK, f"tap on {element.label} failed", element.element_id)

        await asyncio.sleep(self.config.settle_delay)
        snapshot = await self._snapshot()
        if self._halted():
            return
        result, new_screen = self._classify(screen, snapshot)
        next_hash = self._q.screen_hash(new_screen) if new_screen else None

        if self._can_learn():
            reward = self._q.calculate_reward(result, next_hash, first_visit)
            self._q.update(screen_hash, action_key, reward, next_hash, package)
            if result in (TapResult.CLOSED_APP, TapResult.CRASH):
                self._q.mark_dangerous(element)

        if new_screen is not None and new_screen.screen_id != screen.screen_id:
            self._record_move(screen, new_screen, element)
        elif element.leads_to_screen and self._can_learn():
            # a known edge did not fire
            self._map_store.record_transition(
                package, screen.screen_id, element.leads_to_screen, element.element_id, element.label, False
            )

        if result == TapResult.NEW_SCREEN:
            self.machine.process(Event.NEW_SCREEN_DISCOVERED)
        elif result == TapResult.NEW_ELEMENTS:
            self.machine.process(Event.NEW_ELEMENTS_FOUND)
        elif result in (TapResult.NO_CHANGE, TapResult.CLOSED_APP, TapResult.CRASH):
            self.machine.process(Event.NO_PROGRESS_DETECTED)

        if result == TapResult.CLOSED_APP:
            self.state.add_issue(screen.screen_id, IssueType.APP_LEFT, f"{element.label} left the app", element.element_id)
            snapshot = await self._ensure_in_app(package)
            if self._halted():
                return
            if snapshot is not None:
                new_screen, _ = self._observe(snapshot)
        if new_screen is not None:
            self._move_to(new_screen)
        self._update_coverage()

    async def _scroll(self, screen: ExploredScreen, container: ScrollableContainer) -> None:
        """One upward swipe inside `container`; an unchanged screen means its end was reached."""
        assert self.state is not None
        b = container.bounds
        swipe = Swipe(b.center_x, b.y + b.height * 3 // 4, b.center_x, b.y + b.height // 4)
        performed = await self._perform(swipe)
        self._iterations += 1
        container.fully_scrolled = True
        self.coverage.mark_container_scrolled(screen.screen_id)
        if not performed:
            self.state.add_issue(screen.screen_id, IssueType.SCROLL_FAILED, "scroll failed", container.element_id)
            self._update_coverage()
            return

        await asyncio.sleep(self.config.settle_delay)
        snapshot = await self._snapshot()
        if self._halted():
            return
        if snapshot is not None and snapshot.package == self.state.package:
            after, is_new = self._observe(snapshot)
            if is_new:
                self.machine.process(Event.NEW_ELEMENTS_FOUND)
            if self._screen_stack and after.screen_id not in self._screen_stack:
                # scrolled content stays on the same depth
                self._screen_stack[-1] = after.screen_id
            self._move_to(after)
        self._update_coverage()

    def _classify(
        self, before: ExploredScreen, snapshot: Optional[Snapshot]
    ) -> Tuple[TapResult, Optional[ExploredScreen]]:
        assert self.state is not None
        if snapshot is None:
            return TapResult.CRASH, None
        if snapshot.package != self.state.package:
            return TapResult.CLOSED_APP, None
        after, is_new = self._observe(snapshot)
        if after.screen_id == before.screen_id:
            return TapResult.NO_CHANGE, after
        if is_new:
            if after.activity == before.activity and before.element_ids() <= after.element_ids():
                return TapResult.NEW_ELEMENTS, after
            return TapResult.NEW_SCREEN, after
        return TapResult.NAVIGATE_BACK, after

    def _record_move(self, source: ExploredScreen, target: ExploredScreen, element: ClickableElement) -> None:
        assert self.state is not None
        element.leads_to_screen = target.screen_id
        self.state.transitions.append(ScreenTransition(source.screen_id, target.screen_id, element.element_id))
        if self._can_learn():
            self._map_store.record_transition(
                self.state.package,
                source.screen_id,
                target.screen_id,
                element.element_id,
                element.label,
                True,
                bounds=element.bounds,
                resource_id=element.resource_id,
            )

    def _move_to(self, screen: ExploredScreen) -> None:
        if screen.screen_id in self._screen_stack:
            del self._screen_stack[self._screen_stack.index(screen.screen_id) + 1 :]
        else:
            self._screen_stack.append(screen.screen_id)
        self._current = screen
        self._q.current_depth = len(self._screen_stack) - 1

    # ------------------------------------------------------------------
    # navigation between screens ----------------------------------------

    async def _leave_finished_screen(self, screen: ExploredScreen) -> None:
        """Current screen has no work left: head for the frontier or report exhaustion."""
        assert self.state is not None
        package = self.state.package
        if self._can_learn() and not self._is_blocker(screen.screen_id):
            self._map_store.mark_fully_explored(package, screen.screen_id)

        frontier = [
            sid for sid in self.coverage.frontier() if sid != screen.screen_id and not self._is_blocker(sid)
        ]
        if not frontier:
            logger.info("Frontier exhausted.")
            self.machine.process(Event.QUEUE_EXHAUSTED)
            return

        for target in frontier:
            route = self._map_store.find_best_path(package, screen.screen_id, target)
            if route is None:
                continue
            if await self._follow(route):
                return
            break
        else:
            self.state.add_issue(screen.screen_id, IssueType.NO_PATH, f"no learned path to {frontier[0]}")
        if self._halted():
            return

        # fall back to the back stack, then to a known entry point
        before = screen.screen_id
        await self._go_back()
        if self._halted():
            return
        if self._current is not None and self._current.screen_id == before:
            entry_points = [sid for sid in self._map_store.entry_points(package) if sid != before]
            if entry_points:
                await self._perform(RestartApp(package))
                await asyncio.sleep(self.config.settle_delay)
                snapshot = await self._snapshot()
                if self._halted():
                    return
                if snapshot is not None and snapshot.package == package:
                    restarted, _ = self._observe(snapshot)
                    self._screen_stack = []
                    self._move_to(restarted)
        if self._current is not None and self._current.screen_id == before:
            self.machine.process(Event.NO_PROGRESS_DETECTED)
        self._iterations += 1

    async def _follow(self, route: NavigationRoute) -> bool:
        """Replay a learned route hop by hop; returns True when the target is reached."""
        assert self.state is not None
        package = self.state.package
        logger.debug("Following %d-hop route to %s (reliability %.2f)", len(route), route.to_screen, route.reliability)
        for hop in route.hops:
            snapshot = await self._snapshot()
            if self._halted() or snapshot is None or self._current is None:
                return False
            match = self._resolver.resolve(self._descriptor(hop), snapshot.elements)
            if not match.found or match.center is None:
                self.state.add_issue(
                    hop.from_screen, IssueType.ELEMENT_NOT_FOUND, match.message or "element not found", hop.step.element_id
                )
                if self._can_learn():
                    self._map_store.record_transition(package, hop.from_screen, hop.to_screen, None, None, False)
                return False
            await self._perform(Tap(*match.center))
            self._iterations += 1
            await asyncio.sleep(self.config.settle_delay)
            after = await self._snapshot()
            if self._halted() or after is None or after.package != package:
                return False
            screen, _ = self._observe(after)
            reached = screen.screen_id == hop.to_screen
            if self._can_learn():
                self._map_store.record_transition(
                    package, hop.from_screen, hop.to_screen, hop.step.element_id, hop.step.element_text, reached
                )
            self._move_to(screen)
            if not reached:
                logger.debug("Route diverged at %s (landed on %s)", hop.to_screen, screen.screen_id)
                return False
        return True

    @staticmethod
    def _descriptor(hop: Transition) -> ElementDescriptor:
        step = hop.step
        return ElementDescriptor(resource_id=step.resource_id, text=step.element_text, bounds=step.bounds)

    async def _go_back(self) -> None:
        assert self.state is not None
        before = self._current
        if not await self._perform(Back()):
            if before is not None:
                self.state.add_issue(before.screen_id, IssueType.BACK_FAILED, "back action failed")
            return
        await asyncio.sleep(self.config.settle_delay)
        snapshot = await self._snapshot()
        if self._halted() or snapshot is None:
            return
        if snapshot.package != self.state.package:
            if before is not None:
                self.state.add_issue(before.screen_id, IssueType.APP_LEFT, "back left the app")
            snapshot = await self._ensure_in_app(self.state.package)
            if self._halted() or snapshot is None:
                return
        screen, _ = self._observe(snapshot)
        self._move_to(screen)

    # ------------------------------------------------------------------
    # stuck handling ----------------------------------------------------

    async def _recover(self) -> None:
        assert self.state is not None and self._current is not None
        package = self.state.package
        stuck_on = self._current.screen_id
        attempt = self.recovery.next_action(package)
        logger.info("Recovery: %s", attempt.message)
        await self._perform(attempt.action)
        await asyncio.sleep(self.config.settle_delay)
        snapshot = await self._snapshot()
        if snapshot is not None and snapshot.package != package:
            snapshot = await self._ensure_in_app(package)
        if self._halted():
            return

        if snapshot is not None:
            screen, is_new = self._observe(snapshot)
            if screen.screen_id != stuck_on:
                self.recovery.report_result(True)
                self._move_to(screen)
                self._update_coverage()
                if is_new:
                    self.machine.process(Event.NEW_SCREEN_DISCOVERED)
                elif attempt.strategy == Strategy.REQUEST_USER_HELP:
                    self.machine.process(Event.USER_HELPED)
                else:
                    self.machine.process(Event.RECOVERY_SUCCEEDED)
                return

        self.recovery.report_result(False)
        if self.machine.process(Event.RECOVERY_FAILED) == State.COMPLETING:
            self.state.add_issue(stuck_on, IssueType.RECOVERY_FAILED, "recovery attempts exhausted")
            if self._can_learn():
                self._q.mark_screen_dead_end(self._q.screen_hash(self._current), package)

    def _recovery_exhausted(self) -> bool:
        assert self.state is not None
        return any(i.issue_type == IssueType.RECOVERY_FAILED for i in self.state.issues)

    # ------------------------------------------------------------------
    # driver helpers ----------------------------------------------------

    async def _snapshot(self) -> Optional[Snapshot]:
        try:
            return await _resolve(self._driver.snapshot())
        except Exception:
            logger.exception("Snapshot failed")
            return None

    async def _perform(self, action: Action) -> bool:
        try:
            return bool(await _resolve(self._driver.perform(action)))
        except Exception:
            logger.exception("Action %s failed", type(action).__name__)
            return False

    async def _ensure_in_app(self, package: str) -> Optional[Snapshot]:
        snapshot = await self._snapshot()
        if snapshot is not None and snapshot.package == package:
            return snapshot
        logger.info("Target app not in foreground, restarting %s", package)
        await self._perform(RestartApp(package))
        await asyncio.sleep(self.config.settle_delay)
        snapshot = await self._snapshot()
        if snapshot is not None and snapshot.package == package:
            return snapshot
        return None

    async def _vetoed(self, screen: ExploredScreen, element: ClickableElement) -> bool:
        """Give the user a chance to veto the pending tap."""
        if self._veto_callback is None or self.config.veto_window <= 0:
            return False
        try:
            vetoed = await asyncio.wait_for(
                _resolve(self._veto_callback(screen, element)), timeout=self.config.veto_window
            )
        except asyncio.TimeoutError:
            return False
        if vetoed:
            logger.info("Tap on %s vetoed by user", element.label)
            if self._can_learn():
                self._q.record_human_feedback(self._q.screen_hash(screen), self._q.action_key(element), -1)
        return bool(vetoed)

    # ------------------------------------------------------------------
    # state bookkeeping -------------------------------------------------

    def _can_learn(self) -> bool:
        return self.state is not None and bool(self._learning_allowed(self.state.package))

    def _observe(self, snapshot: Snapshot) -> Tuple[ExploredScreen, bool]:
        """Register the snapshot as a screen; returns (screen, first time seen)."""
        assert self.state is not None
        built = self._matcher.build_screen(self.state.package, snapshot.activity, snapshot.elements)
        existing = self.state.screens.get(built.screen_id)
        if existing is not None:
            existing.visit_count += 1
            screen, is_new = existing, False
        else:
            self.state.screens[built.screen_id] = built
            self.coverage.update_screen_stats(built)
            screen, is_new = built, True
            kind = detect_blocker(snapshot.activity, snapshot.elements)
            if kind is not None:
                logger.info("Screen %s is a %s blocker", built.screen_id, kind.value)
                self.state.blocker_screens[built.screen_id] = kind.value
                self.state.add_issue(built.screen_id, IssueType.BLOCKER_SCREEN, f"{kind.value} blocker")
        if self._can_learn():
            self._map_store.record_screen(
                self.state.package,
                screen.screen_id,
                screen.activity,
                screen.title,
                bool(screen.scrollable_containers),
                screen.key_elements(),
            )
            if is_new and screen.screen_id in self.state.blocker_screens:
                self._map_store.mark_blocker_screen(
                    self.state.package, screen.screen_id, self.state.blocker_screens[screen.screen_id]
                )
        return screen, is_new

    def _is_blocker(self, screen_id: str) -> bool:
        assert self.state is not None
        if screen_id in self.state.blocker_screens:
            return True
        return self._map_store.is_blocker_screen(self.state.package, screen_id)

    def _update_coverage(self) -> None:
        assert self.state is not None
        self.coverage.update(self.state.screens, self.state.visited_elements)

    @staticmethod
    def _new_state(package: str, previous: Optional[ExplorationResult]) -> ExplorationState:
        state = ExplorationState(package=package)
        if previous is not None:
            state.pass_number = previous.pass_number + 1
            state.cumulative_sensors = list(previous.sensors)
            state.cumulative_actions = list(previous.actions)
            if previous.state is not None:
                state.pass_coverage = dict(previous.state.pass_coverage)
        return state

    # ------------------------------------------------------------------
    # finalization ------------------------------------------------------

    def _finalize(self, aborted: bool) -> ExplorationResult:
        assert self.state is not None
        self._update_coverage()
        package = self.state.package
        self._generate(self.state)
        self.state.pass_coverage[self.state.pass_number] = self.coverage.metrics.overall_coverage

        if self._queue is not None and self._can_learn():
            payload = self._q.drain_log(package)
            if payload is not None:
                self._queue.enqueue_exploration_log(payload, self.config.exploration_log_destination)
        logger.info(
            "Exploration of %s finished: %d screens, %s", package, len(self.state.screens), self.coverage.metrics.summary()
        )
        return self._build_result(aborted)

    def _generate(self, state: ExplorationState) -> None:
        """Add sensors/actions of this pass to the cumulative, deduplicated lists.

        Sensors are keyed by screen and resource id since their text, and with it
        the element id, changes between captures.
        """
        sensor_keys = {(s.screen_id, s.resource_id) for s in state.cumulative_sensors}
        action_ids = {a.element_id for a in state.cumulative_actions}
        for screen in state.screens.values():
            for text in screen.text_elements:
                key = (screen.screen_id, text.resource_id)
                if not text.resource_id or key in sensor_keys:
                    continue
                sensor_keys.add(key)
                state.cumulative_sensors.append(
                    GeneratedSensor(
                        name=_slug(text.resource_id.rsplit("/", 1)[-1]),
                        screen_id=screen.screen_id,
                        element_id=text.element_id,
                        resource_id=text.resource_id,
                        sample_value=text.text,
                    )
                )
            for element in screen.clickable_elements:
                if element.element_id in action_ids:
                    continue
                if not state.is_visited(screen.screen_id, element.element_id):
                    continue
                action_ids.add(element.element_id)
                state.cumulative_actions.append(
                    GeneratedAction(
                        name=_slug(element.label),
                        screen_id=screen.screen_id,
                        element_id=element.element_id,
                        resource_id=element.resource_id,
                        leads_to_screen=element.leads_to_screen,
                    )
                )

    def _build_result(self, aborted: bool) -> ExplorationResult:
        assert self.state is not None
        self.state.end_time = self.state.end_time or time.time()
        return ExplorationResult(
            package=self.state.package,
            screens=list(self.state.screens.values()),
            transitions=list(self.state.transitions),
            sensors=list(self.state.cumulative_sensors),
            actions=list(self.state.cumulative_actions),
            issues=list(self.state.issues),
            pass_number=self.state.pass_number,
            coverage=self.coverage.metrics.to_dict(),
            value_insights=self._q.insights(),
            aborted=aborted,
            state=self.state,
        )

    def progress(self) -> Dict[str, Any]:
        """Coverage snapshot for progress display."""
        return {
            "state": self.machine.state.value,
            "iterations": self._iterations,
            **self.coverage.metrics.to_dict(),
        }
