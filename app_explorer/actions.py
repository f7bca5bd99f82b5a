from __future__ import annotations

"""Actions handed to the UI driver and the driver interface itself."""

from dataclasses import dataclass, field
from typing import Awaitable, List, Protocol, Union

from .knowledge import UIElement


@dataclass(frozen=True)
class Tap:
    x: int
    y: int


@dataclass(frozen=True)
class Swipe:
    start_x: int
    start_y: int
    end_x: int
    end_y: int
    duration_ms: int = 300


@dataclass(frozen=True)
class Back:
    pass


@dataclass(frozen=True)
class Home:
    pass


@dataclass(frozen=True)
class RestartApp:
    package: str


@dataclass(frozen=True)
class RequestUserHelp:
    message: str


Action = Union[Tap, Swipe, Back, Home, RestartApp, RequestUserHelp]


@dataclass
class Snapshot:
    """What the driver currently shows: foreground package, activity and elements."""

    package: str
    activity: str
    elements: List[UIElement] = field(default_factory=list)


class UIDriver(Protocol):
    """Snapshot provider plus action executor."""

    def snapshot(self) -> Union[Snapshot, Awaitable[Snapshot]]:
        ...

    def perform(self, action: Action) -> Union[bool, Awaitable[bool]]:
        ...
