from __future__ import annotations

"""Q-learning policy on top of the value store.

Keys have the form ``"<screen_hash>|<action_key>"`` where the action key is
the element pattern produced by `StateMatcher.action_key`.  The update rule
adds a human-feedback term to the usual temporal-difference target::

    Q <- Q + alpha * (r + gamma * max Q(s') + beta * H(s, a) - Q)
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Union
import json
import logging
import math
import random

from .payloads import ExplorationLogEntry, ExplorationLogPayload, ValueTablePayload
from .session import ClickableElement, ExploredScreen, TapResult
from .state_matcher import StateMatcher
from .value_store import ValueStore

logger = logging.getLogger(__name__)


@dataclass
class QLearningStatistics:
    table_size: int
    total_visits: int
    dangerous_patterns: int
    average_q: float
    max_q: float
    min_q: float
    epsilon: float
    total_actions: int
    screens_known: int


class ExplorationQLearning:
    ALPHA = 0.15
    GAMMA = 0.9
    BETA = 0.25

    EPSILON_START = 0.30
    EPSILON_MIN = 0.05
    EPSILON_DECAY = 0.995

    REWARDS = {
        TapResult.NEW_SCREEN: 1.0,
        TapResult.NEW_ELEMENTS: 0.5,
        TapResult.NAVIGATE_BACK: 0.2,
        TapResult.NO_CHANGE: -0.1,
        TapResult.CLOSED_APP: -1.5,
        TapResult.CRASH: -2.0,
    }

    DEPTH_BONUS_PER_LEVEL = 0.15
    MAX_DEPTH_BONUS = 0.6
    NOVELTY_BONUS = 0.3
    REVISIT_PENALTY = -0.05
    REVISIT_PENALTY_CAP = 5

    UCB_COEFFICIENT = 1.5
    FEEDBACK_LIMIT = 3

    DEAD_END_Q = -0.05
    DEAD_END_VISITS = 3
    SKIP_Q = -0.08
    SKIP_VISITS = 5
    DEAD_SCREEN_Q = -0.5

    REMOTE_WEIGHT = 0.7

    def __init__(
        self,
        store: ValueStore,
        matcher: Optional[StateMatcher] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.matcher = matcher or StateMatcher()
        self._rng = rng or random.Random()
        self.total_actions = 0
        self.current_depth = 0
        self._log: List[ExplorationLogEntry] = []
        self._dead_end_screens: Set[str] = set()

    # ------------------------------------------------------------------
    @staticmethod
    def key(screen_hash: str, action_key: str) -> str:
        return f"{screen_hash}|{action_key}"

    def screen_hash(self, screen: ExploredScreen) -> str:
        return self.matcher.screen_hash(screen)

    def action_key(self, element: ClickableElement) -> str:
        return self.matcher.action_key(element)

    def q_value(self, screen_hash: str, action_key: str) -> float:
        return self.store.get_value(self.key(screen_hash, action_key)) or 0.0

    def max_q_for_screen(self, screen_hash: str) -> float:
        prefix = f"{screen_hash}|"
        values = [v for k, v in self.store.all_values().items() if k.startswith(prefix)]
        return max(values) if values else 0.0

    def current_epsilon(self) -> float:
        return max(self.EPSILON_MIN, self.EPSILON_START * self.EPSILON_DECAY ** self.total_actions)

    # ------------------------------------------------------------------
    def update(
        self,
        screen_hash: str,
        action_key: str,
        reward: float,
        next_screen_hash: Optional[str] = None,
        package: Optional[str] = None,
    ) -> float:
        """Apply one Q-update and return the new value.

        Pending human feedback is folded in once and then cleared.
        """
        key = self.key(screen_hash, action_key)
        current = self.store.get_value(key) or 0.0
        next_max = self.max_q_for_screen(next_screen_hash) if next_screen_hash else 0.0
        human = self.store.human_feedback(key) or 0
        target = reward + self.GAMMA * next_max + self.BETA * human
        new_q = current + self.ALPHA * (target - current)
        self.store.set_value(key, new_q, package)
        if human:
            self.store.clear_human_feedback(key)
            logger.debug("Applied human feedback H=%d for %s", human, action_key)
        logger.debug("Q-update %s | reward=%.3f old=%.3f new=%.3f", key, reward, current, new_q)
        self._log.append(
            ExplorationLogEntry(state=screen_hash, action=action_key, reward=reward, next_state=next_screen_hash)
        )
        return new_q

    # ------------------------------------------------------------------
    # human feedback ----------------------------------------------------

    def record_human_feedback(self, screen_hash: str, action_key: str, signal: int) -> int:
        """Accumulate a +1/-1 signal; repeated vetoes strengthen the signal."""
        key = self.key(screen_hash, action_key)
        step = max(-1, min(1, signal))
        value = max(-self.FEEDBACK_LIMIT, min(self.FEEDBACK_LIMIT, (self.store.human_feedback(key) or 0) + step))
        self.store.set_human_feedback(key, value)
        logger.info("Human feedback recorded: %s -> H=%d", action_key, value)
        return value

    def human_feedback(self, screen_hash: str, action_key: str) -> int:
        return self.store.human_feedback(self.key(screen_hash, action_key)) or 0

    def is_vetoed(self, screen_hash: str, action_key: str) -> bool:
        return self.human_feedback(screen_hash, action_key) < 0

    # ------------------------------------------------------------------
    # selection ---------------------------------------------------------

    def select_element(
        self,
        screen: ExploredScreen,
        candidates: Optional[Iterable[ClickableElement]] = None,
    ) -> Optional[ClickableElement]:
        """Pick the next element to act on.

        Dangerous patterns and vetoed actions are never returned; an approved
        action wins outright; otherwise epsilon-greedy over a UCB score.
        """
        pool = list(candidates) if candidates is not None else list(screen.clickable_elements)
        screen_hash = self.screen_hash(screen)
        allowed: List[ClickableElement] = []
        approved: List[ClickableElement] = []
        for element in pool:
            pattern = self.action_key(element)
            if self.store.is_dangerous(pattern):
                continue
            feedback = self.human_feedback(screen_hash, pattern)
            if feedback < 0:
                continue
            allowed.append(element)
            if feedback > 0:
                approved.append(element)
        if not allowed:
            return None

        self.total_actions += 1
        if approved:
            return max(
                approved,
                key=lambda e: (self.human_feedback(screen_hash, self.action_key(e)), self.q_value(screen_hash, self.action_key(e))),
            )

        epsilon = self.current_epsilon()
        if self._rng.random() < epsilon:
            logger.debug("epsilon-greedy (%.3f): random exploration", epsilon)
            return self._rng.choice(allowed)
        return self._select_ucb(screen_hash, allowed)

    def _select_ucb(self, screen_hash: str, candidates: List[ClickableElement]) -> ClickableElement:
        screen_visits = max(1, self.store.screen_visit_count(screen_hash))

        def score(element: ClickableElement) -> float:
            key = self.key(screen_hash, self.action_key(element))
            visits = self.store.visit_count(key)
            if visits > 0:
                bonus = self.UCB_COEFFICIENT * math.sqrt(math.log(screen_visits + 1) / visits)
            else:
                bonus = self.UCB_COEFFICIENT * 2.0
            return (self.store.get_value(key) or 0.0) + bonus

        best = max(candidates, key=score)
        logger.debug("UCB selected %s", best.element_id)
        return best

    # ------------------------------------------------------------------
    # dead ends and danger ----------------------------------------------

    def is_dead_end(self, screen_hash: str, action_key: str) -> bool:
        key = self.key(screen_hash, action_key)
        value = self.store.get_value(key)
        if value is None:
            return False
        return value < self.DEAD_END_Q and self.store.visit_count(key) >= self.DEAD_END_VISITS

    def should_skip(self, screen: ExploredScreen, element: ClickableElement) -> bool:
        screen_hash = self.screen_hash(screen)
        pattern = self.action_key(element)
        key = self.key(screen_hash, pattern)
        value = self.store.get_value(key)
        if value is None:
            return False
        skip = value < self.SKIP_Q and self.store.visit_count(key) >= self.SKIP_VISITS
        if skip:
            logger.debug("Skipping confirmed dead end %s (Q=%.3f)", pattern, value)
        return skip

    def is_dangerous(self, element: ClickableElement) -> bool:
        return self.store.is_dangerous(self.action_key(element))

    def mark_dangerous(self, element: ClickableElement) -> None:
        self.store.add_dangerous_pattern(self.action_key(element))

    def mark_screen_dead_end(self, screen_hash: str, package: Optional[str] = None) -> int:
        """Force every known action from `screen_hash` to at most `DEAD_SCREEN_Q`."""
        prefix = f"{screen_hash}|"
        penalized = 0
        for key, value in self.store.all_values().items():
            if key.startswith(prefix):
                self.store.set_value(key, min(value, self.DEAD_SCREEN_Q), package)
                penalized += 1
        self._dead_end_screens.add(screen_hash)
        logger.warning("Dead end: penalized %d actions on screen %s", penalized, screen_hash)
        return penalized

    def is_dead_end_screen(self, screen_hash: str) -> bool:
        return screen_hash in self._dead_end_screens

    # ------------------------------------------------------------------
    # rewards -----------------------------------------------------------

    def calculate_reward(
        self,
        result: TapResult,
        screen_hash: Optional[str] = None,
        first_visit: bool = False,
    ) -> float:
        reward = self.REWARDS[result]
        if result == TapResult.NEW_SCREEN:
            reward += min(self.current_depth * self.DEPTH_BONUS_PER_LEVEL, self.MAX_DEPTH_BONUS)
        if first_visit and result not in (TapResult.CLOSED_APP, TapResult.CRASH):
            reward += self.NOVELTY_BONUS
        if result == TapResult.NEW_SCREEN and screen_hash is not None:
            previous = self.store.screen_visit_count(screen_hash)
            if previous > 0:
                reward += self.REVISIT_PENALTY * min(previous, self.REVISIT_PENALTY_CAP)
            self.store.increment_screen_visit(screen_hash)
        return reward

    def is_first_visit(self, screen_hash: str, action_key: str) -> bool:
        return self.store.visit_count(self.key(screen_hash, action_key)) == 0

    # ------------------------------------------------------------------
    # exploration log and exchange --------------------------------------

    def exploration_log(self) -> List[ExplorationLogEntry]:
        return list(self._log)

    def drain_log(self, package: Optional[str] = None) -> Optional[ExplorationLogPayload]:
        """Hand the accumulated experiences over and start a fresh log."""
        if not self._log:
            return None
        payload = ExplorationLogPayload(package=package, entries=list(self._log))
        self._log.clear()
        return payload

    def merge_remote_table(
        self,
        remote: Union[str, Dict[str, Any], ValueTablePayload],
        package: Optional[str] = None,
    ) -> int:
        """Blend remote values into the local table, trusting the remote side more."""
        if isinstance(remote, ValueTablePayload):
            values = remote.q_values
        else:
            data = json.loads(remote) if isinstance(remote, str) else remote
            values = data.get("q_values", data.get("q_table", data))
        merged = 0
        for key, raw in values.items():
            remote_value = float(raw)
            local = self.store.get_value(key)
            if local is None:
                blended = remote_value
            else:
                blended = self.REMOTE_WEIGHT * remote_value + (1 - self.REMOTE_WEIGHT) * local
            self.store.set_value(key, blended, package)
            merged += 1
        logger.info("Merged %d remote values (table size %d)", merged, len(self.store))
        return merged

    def export_table(self, package: Optional[str] = None) -> ValueTablePayload:
        entries = self.store.entries()
        if package is not None:
            entries = [e for e in entries if e.package == package]
        keys = {e.key for e in entries}
        return ValueTablePayload(
            package=package,
            q_values={e.key: e.value for e in entries},
            visit_counts={e.key: e.visit_count for e in entries},
            human_feedback={k: v for k, v in self.store.all_feedback().items() if package is None or k in keys},
            dangerous_patterns=sorted(self.store.dangerous_patterns()),
        )

    def insights(self, limit: int = 5) -> Dict[str, Any]:
        """Summary attached to session results."""
        entries = self.store.entries()
        ranked = sorted(entries, key=lambda e: e.value, reverse=True)
        return {
            "statistics": self.statistics().__dict__,
            "best_actions": [(e.key, round(e.value, 3)) for e in ranked[:limit]],
            "worst_actions": [(e.key, round(e.value, 3)) for e in ranked[-limit:][::-1]] if ranked else [],
            "dead_end_screens": sorted(self._dead_end_screens),
        }

    def statistics(self) -> QLearningStatistics:
        values = self.store.all_values()
        return QLearningStatistics(
            table_size=len(values),
            total_visits=sum(self.store.visit_count(k) for k in values),
            dangerous_patterns=len(self.store.dangerous_patterns()),
            average_q=sum(values.values()) / len(values) if values else 0.0,
            max_q=max(values.values()) if values else 0.0,
            min_q=min(values.values()) if values else 0.0,
            epsilon=self.current_epsilon(),
            total_actions=self.total_actions,
            screens_known=len({k.split("|", 1)[0] for k in values}),
        )

    def reset(self) -> None:
        self.store.clear_all()
        self._log.clear()
        self._dead_end_screens.clear()
        self.total_actions = 0
        logger.info("Q-learning state reset")
