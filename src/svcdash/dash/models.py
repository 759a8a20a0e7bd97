from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Iterator, Literal

from .components import ServiceList, Viewport


Pane = Literal["list", "content"]
ViewMode = Literal["dashboard", "list", "logs", "config"]
ActionKind = Literal["start", "stop", "restart", "enable", "disable"]

ACTION_PAST_TENSE: dict[str, str] = {
    "start": "Started",
    "stop": "Stopped",
    "restart": "Restarted",
    "enable": "Enabled",
    "disable": "Disabled",
}

READY = "Ready"


@dataclass(frozen=True, slots=True)
class Service:
    name: str
    load_state: str = ""
    active_state: str = ""
    sub_state: str = ""
    description: str = ""


@dataclass(frozen=True, slots=True)
class HostStats:
    hostname: str = ""
    platform_name: str = ""
    uptime_seconds: int = 0
    kernel_version: str = ""


@dataclass(eq=False, slots=True)
class CancellationToken:
    """Identity of one log subscription; compared with `is`, never by value."""

    target: str
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass(slots=True)
class ActiveSubscription:
    target: str
    token: CancellationToken


class LogBuffer:
    """Bounded FIFO of log lines; the oldest line is dropped on overflow."""

    def __init__(self, capacity: int = 1000) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self._lines: deque[str] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._lines.maxlen or 0

    def append(self, line: str) -> None:
        self._lines.append(line)

    def clear(self) -> None:
        self._lines.clear()

    def lines(self) -> list[str]:
        return list(self._lines)

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[str]:
        return iter(self._lines)


@dataclass(slots=True)
class AppState:
    # Domain
    services: tuple[Service, ...] = ()
    host: HostStats = field(default_factory=HostStats)
    log_buffer: LogBuffer = field(default_factory=LogBuffer)
    subscription: ActiveSubscription | None = None
    config_text: str = ""
    config_name: str | None = None

    # UI
    active_pane: Pane = "list"
    view_mode: ViewMode = "dashboard"
    dev_filter_on: bool = True
    width: int = 0
    height: int = 0
    listing: ServiceList = field(default_factory=ServiceList)
    viewport: Viewport = field(default_factory=Viewport)
    status_message: str = READY
    status_transient: bool = False
    status_deadline: float | None = None
    spinner_frame: int = 0
    last_refresh: float | None = None
    running: bool = True

    @property
    def visible(self) -> tuple[Service, ...]:
        return self.listing.items

    @property
    def selected_index(self) -> int:
        return self.listing.cursor

    def selected_service(self) -> Service | None:
        return self.listing.selected()

    @property
    def streaming_target(self) -> str | None:
        return self.subscription.target if self.subscription else None

    def content_lines(self) -> list[str]:
        if self.view_mode == "logs":
            return self.log_buffer.lines()
        if self.view_mode == "config":
            return self.config_text.splitlines()
        return []
