from __future__ import annotations

"""Runtime configuration, optionally read from the environment / a `.env` file."""

from dataclasses import dataclass, fields
from typing import Optional
import os

from dotenv import load_dotenv

from .session import ExplorationGoal

ENV_PREFIX = "APP_EXPLORER_"


@dataclass
class ExplorerConfig:
    db_path: str = "app_explorer.db"
    max_iterations: int = 200
    target_coverage: float = 0.9
    goal: ExplorationGoal = ExplorationGoal.DEEP_MAP
    # seconds the user gets to veto a pending tap; 0 disables the window
    veto_window: float = 0.0
    settle_delay: float = 0.5
    screen_width: int = 1080
    screen_height: int = 2400
    queue_max_size: int = 500
    queue_max_retries: int = 3
    value_table_max_entries: int = 10000
    max_apps: int = 50
    exploration_log_destination: str = "app_explorer/exploration_log"

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> ExplorerConfig:
        """Build a config from `APP_EXPLORER_*` variables; unset ones keep their defaults."""
        load_dotenv(dotenv_path)
        config = cls()
        for f in fields(cls):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            current = getattr(config, f.name)
            if isinstance(current, ExplorationGoal):
                value: object = ExplorationGoal(raw.lower())
            elif isinstance(current, bool):
                value = raw.lower() in ("1", "true", "yes", "on")
            elif isinstance(current, int):
                value = int(raw)
            elif isinstance(current, float):
                value = float(raw)
            else:
                value = raw
            setattr(config, f.name, value)
        return config
