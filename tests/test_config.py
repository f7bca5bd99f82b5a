"""Tests for environment-driven configuration."""

import pytest

from app_explorer.config import ExplorerConfig
from app_explorer.session import ExplorationGoal


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("MAX_ITERATIONS", "GOAL", "TARGET_COVERAGE", "DB_PATH", "VETO_WINDOW"):
        monkeypatch.delenv(f"APP_EXPLORER_{name}", raising=False)


def test_defaults(tmp_path):
    """Test an empty environment keeps the defaults."""
    empty = tmp_path / ".env"
    empty.write_text("")
    config = ExplorerConfig.from_env(str(empty))
    assert config.max_iterations == 200
    assert config.goal == ExplorationGoal.DEEP_MAP
    assert config.veto_window == 0.0


def test_environment_overrides(monkeypatch, tmp_path):
    """Test prefixed variables are coerced to the field types."""
    monkeypatch.setenv("APP_EXPLORER_MAX_ITERATIONS", "25")
    monkeypatch.setenv("APP_EXPLORER_GOAL", "QUICK_SCAN")
    monkeypatch.setenv("APP_EXPLORER_TARGET_COVERAGE", "0.5")
    empty = tmp_path / ".env"
    empty.write_text("")
    config = ExplorerConfig.from_env(str(empty))
    assert config.max_iterations == 25
    assert config.goal == ExplorationGoal.QUICK_SCAN
    assert config.target_coverage == 0.5


def test_dotenv_file(tmp_path):
    """Test values are read from a .env file."""
    env = tmp_path / ".env"
    env.write_text("APP_EXPLORER_DB_PATH=/tmp/maps.db\nAPP_EXPLORER_VETO_WINDOW=2.5\n")
    config = ExplorerConfig.from_env(str(env))
    assert config.db_path == "/tmp/maps.db"
    assert config.veto_window == 2.5


def test_invalid_goal(monkeypatch, tmp_path):
    """Test an unknown goal is rejected."""
    monkeypatch.setenv("APP_EXPLORER_GOAL", "everything")
    empty = tmp_path / ".env"
    empty.write_text("")
    with pytest.raises(ValueError):
        ExplorerConfig.from_env(str(empty))
