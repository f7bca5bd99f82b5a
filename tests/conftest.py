"""Shared fixtures: an in-memory database and a controllable clock."""

import pytest

from app_explorer.database import Database


class FakeClock:
    """Manually advanced clock for time-dependent behaviour."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def db():
    database = Database(":memory:")
    yield database
    database.close()


@pytest.fixture
def clock():
    return FakeClock()
