"""Events folded by the controller and the effects it asks the engine to run.

Every event reaching the controller is one of `EVENT_TYPES`; background tasks
only ever construct the result events below and put them on the engine queue.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Union

from .models import ActionKind, CancellationToken, HostStats, Service


# ---- events ----

@dataclass(frozen=True, slots=True)
class KeyPressed:
    key: str
    character: str | None = None


@dataclass(frozen=True, slots=True)
class Resize:
    width: int
    height: int


@dataclass(frozen=True, slots=True)
class Tick:
    now: float  # monotonic seconds


@dataclass(frozen=True, slots=True)
class ServicesLoaded:
    services: tuple[Service, ...]


@dataclass(frozen=True, slots=True)
class LogLine:
    token: CancellationToken
    line: str


@dataclass(frozen=True, slots=True)
class LogStreamEnded:
    token: CancellationToken
    error: str | None = None


@dataclass(frozen=True, slots=True)
class SubscriptionFailed:
    token: CancellationToken
    error: str


@dataclass(frozen=True, slots=True)
class ConfigLoaded:
    name: str
    text: str


@dataclass(frozen=True, slots=True)
class HostStatsLoaded:
    stats: HostStats


@dataclass(frozen=True, slots=True)
class ActionCompleted:
    kind: ActionKind
    name: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


FetchKind = Literal["services", "config", "host"]


@dataclass(frozen=True, slots=True)
class FetchFailed:
    what: FetchKind
    error: str
    name: str | None = None


Event = Union[
    KeyPressed,
    Resize,
    Tick,
    ServicesLoaded,
    LogLine,
    LogStreamEnded,
    SubscriptionFailed,
    ConfigLoaded,
    HostStatsLoaded,
    ActionCompleted,
    FetchFailed,
]

EVENT_TYPES: tuple[type, ...] = Event.__args__  # type: ignore[attr-defined]


# ---- effects ----

@dataclass(frozen=True, slots=True)
class FetchServices:
    pass


@dataclass(frozen=True, slots=True)
class FetchConfig:
    name: str


@dataclass(frozen=True, slots=True)
class FetchHostStats:
    pass


@dataclass(frozen=True, slots=True)
class PerformAction:
    kind: ActionKind
    name: str


@dataclass(frozen=True, slots=True)
class StartLogStream:
    """Replace the active subscription with one bound to `token`."""

    token: CancellationToken


@dataclass(frozen=True, slots=True)
class AwaitLogLine:
    token: CancellationToken


@dataclass(frozen=True, slots=True)
class CancelLogStream:
    token: CancellationToken


@dataclass(frozen=True, slots=True)
class Exit:
    pass


Effect = Union[
    FetchServices,
    FetchConfig,
    FetchHostStats,
    PerformAction,
    StartLogStream,
    AwaitLogLine,
    CancelLogStream,
    Exit,
]
