from __future__ import annotations

"""Escalating recovery strategies for a stuck exploration."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional
import logging
import random

from .actions import Action, Back, RequestUserHelp, RestartApp, Swipe, Tap

logger = logging.getLogger(__name__)


class Strategy(str, Enum):
    RANDOM_SCROLL = "random_scroll"
    PRESS_BACK = "press_back"
    RANDOM_TAP = "random_tap"
    SCROLL_TO_EDGE = "scroll_to_edge"
    RESTART_APP = "restart_app"
    REQUEST_USER_HELP = "request_user_help"


_ORDER: List[Strategy] = list(Strategy)


@dataclass
class RecoveryAttempt:
    strategy: Strategy
    action: Action
    needs_user_help: bool = False
    message: Optional[str] = None


@dataclass
class StrategyStats:
    strategy: Strategy
    attempts: int = 0
    successes: int = 0

    @property
    def success_rate(self) -> float:
        return self.successes / self.attempts if self.attempts else 0.0


@dataclass
class RecoveryStatistics:
    total_attempts: int
    total_successes: int
    current_strategy: Strategy
    current_attempt: int
    strategy_stats: List[StrategyStats] = field(default_factory=list)

    @property
    def overall_success_rate(self) -> float:
        return self.total_successes / self.total_attempts if self.total_attempts else 0.0


class StuckRecoveryStrategy:
    """Walks the strategy ladder, two attempts per rung before escalating."""

    ATTEMPTS_PER_STRATEGY = 2
    MIN_SAMPLES_FOR_RECOMMENDATION = 3

    def __init__(self, screen_width: int = 1080, screen_height: int = 2400, rng: Optional[random.Random] = None) -> None:
        self.screen_width = screen_width
        self.screen_height = screen_height
        self._rng = rng or random.Random()
        self._index = 0
        self._current_attempts = 0
        self._total_attempts = 0
        self._attempts: Dict[Strategy, int] = {}
        self._successes: Dict[Strategy, int] = {}

    @property
    def current_strategy(self) -> Strategy:
        return _ORDER[self._index]

    # ------------------------------------------------------------------
    def next_action(self, package: str) -> RecoveryAttempt:
        strategy = self.current_strategy
        self._current_attempts += 1
        self._total_attempts += 1
        self._attempts[strategy] = self._attempts.get(strategy, 0) + 1
        logger.debug(
            "Recovery attempt #%d - strategy %s (attempt %d)",
            self._total_attempts,
            strategy.value,
            self._current_attempts,
        )
        if strategy == Strategy.RANDOM_SCROLL:
            action: Action = self._random_scroll()
        elif strategy == Strategy.PRESS_BACK:
            action = Back()
        elif strategy == Strategy.RANDOM_TAP:
            action = self._random_tap()
        elif strategy == Strategy.SCROLL_TO_EDGE:
            action = self._edge_scroll()
        elif strategy == Strategy.RESTART_APP:
            action = RestartApp(package)
        else:
            action = RequestUserHelp(
                "Exploration is stuck. Please navigate to a new screen or tap an unexplored element."
            )
        return RecoveryAttempt(
            strategy=strategy,
            action=action,
            needs_user_help=strategy == Strategy.REQUEST_USER_HELP,
            message=f"Trying {strategy.value.replace('_', ' ')}",
        )

    def report_result(self, success: bool) -> None:
        strategy = self.current_strategy
        if success:
            logger.info("Recovery succeeded with strategy %s", strategy.value)
            self._successes[strategy] = self._successes.get(strategy, 0) + 1
            self.reset()
            return
        logger.debug("Recovery failed with strategy %s", strategy.value)
        if self._current_attempts >= self.ATTEMPTS_PER_STRATEGY:
            self._escalate()

    def _escalate(self) -> None:
        if self._index < len(_ORDER) - 1:
            self._current_attempts = 0
            self._index += 1
            logger.info("Escalating to strategy %s", self.current_strategy.value)
        else:
            logger.warning("All recovery strategies exhausted")

    def is_exhausted(self) -> bool:
        return self._index >= len(_ORDER) - 1 and self._current_attempts >= self.ATTEMPTS_PER_STRATEGY

    def reset(self) -> None:
        self._index = 0
        self._current_attempts = 0
        self._total_attempts = 0

    # ------------------------------------------------------------------
    def _random_scroll(self) -> Swipe:
        w, h = self.screen_width, self.screen_height
        direction = self._rng.choice(["up", "down", "left", "right"])
        if direction == "up":
            return Swipe(w // 2, h * 3 // 4, w // 2, h // 4)
        if direction == "down":
            return Swipe(w // 2, h // 4, w // 2, h * 3 // 4)
        if direction == "left":
            return Swipe(w * 3 // 4, h // 2, w // 4, h // 2)
        return Swipe(w // 4, h // 2, w * 3 // 4, h // 2)

    def _edge_scroll(self) -> Swipe:
        w, h = self.screen_width, self.screen_height
        if self._rng.random() < 0.5:
            return Swipe(w // 2, h // 4, w // 2, h - 100, duration_ms=500)
        return Swipe(w // 2, h * 3 // 4, w // 2, 100, duration_ms=500)

    def _random_tap(self) -> Tap:
        # centre half of the screen, away from system bars
        mx, my = self.screen_width // 4, self.screen_height // 4
        return Tap(
            self._rng.randrange(mx, self.screen_width - mx),
            self._rng.randrange(my, self.screen_height - my),
        )

    # ------------------------------------------------------------------
    def statistics(self) -> RecoveryStatistics:
        stats = [
            StrategyStats(s, self._attempts.get(s, 0), self._successes.get(s, 0)) for s in _ORDER
        ]
        return RecoveryStatistics(
            total_attempts=sum(s.attempts for s in stats),
            total_successes=sum(s.successes for s in stats),
            current_strategy=self.current_strategy,
            current_attempt=self._current_attempts,
            strategy_stats=stats,
        )

    def recommended_strategy(self) -> Optional[Strategy]:
        """Best success rate among strategies tried at least three times."""
        sampled = [s for s, n in self._attempts.items() if n >= self.MIN_SAMPLES_FOR_RECOMMENDATION]
        if not sampled:
            return None
        return max(sampled, key=lambda s: self._successes.get(s, 0) / self._attempts[s])
