from __future__ import annotations

import asyncio
from typing import Callable, Iterable

import pytest

from svcdash.config import Settings
from svcdash.dash.controller import Controller
from svcdash.dash.engine import Engine
from svcdash.dash.messages import KeyPressed, ServicesLoaded
from svcdash.dash.models import HostStats, Service
from svcdash.directory import DirectoryError, LogStreamError


def svc(name: str, active: str = "active", description: str = "") -> Service:
    return Service(
        name=name,
        load_state="loaded",
        active_state=active,
        sub_state="running" if active == "active" else "dead",
        description=description or f"{name} daemon",
    )


class FakeLogStream:
    """Scripted journal: yields `lines`, then optionally waits for pushed lines."""

    def __init__(self, lines: Iterable[str] = (), hold_open: bool = False) -> None:
        self._lines = list(lines)
        self._hold_open = hold_open
        self._more: asyncio.Queue[str] = asyncio.Queue()
        self.closed = False

    def push(self, line: str) -> None:
        self._more.put_nowait(line)

    async def __aiter__(self):
        for line in self._lines:
            yield line
        while self._hold_open:
            yield await self._more.get()

    async def close(self) -> None:
        self.closed = True


class FakeDirectory:
    def __init__(
        self,
        services: Iterable[Service] = (),
        streams: dict[str, FakeLogStream] | None = None,
        configs: dict[str, str] | None = None,
        host: HostStats | None = None,
    ) -> None:
        self.services = tuple(services)
        self.streams = dict(streams or {})
        self.configs = dict(configs or {})
        self.host = host or HostStats("box", "debian", 3_600, "6.1.0")
        self.list_error: str | None = None
        self.stream_errors: set[str] = set()
        self.failing_actions: dict[tuple[str, str], str] = {}
        self.actions: list[tuple[str, str]] = []
        self.opened: list[str] = []
        self.list_calls = 0

    async def list_services(self) -> tuple[Service, ...]:
        self.list_calls += 1
        if self.list_error:
            raise DirectoryError("list units", self.list_error)
        return self.services

    async def open_log_stream(self, name: str) -> FakeLogStream:
        self.opened.append(name)
        if name in self.stream_errors:
            raise LogStreamError("stream logs", "journalctl: No such file or directory")
        return self.streams.setdefault(name, FakeLogStream())

    async def fetch_config_text(self, name: str) -> str:
        if name not in self.configs:
            raise DirectoryError("read config", f"No files found for {name}.")
        return self.configs[name]

    async def perform_action(self, kind: str, name: str) -> None:
        self.actions.append((kind, name))
        error = self.failing_actions.get((kind, name))
        if error:
            raise DirectoryError(kind, error)

    async def fetch_host_stats(self) -> HostStats:
        return self.host


@pytest.fixture
def settings() -> Settings:
    return Settings(refresh_seconds=0, status_seconds=4)


@pytest.fixture
def units() -> tuple[Service, ...]:
    return (
        svc("nginx.service"),
        svc("web.service"),
        svc("postgres.service", active="failed"),
        svc("systemd-journald.service"),
        svc("cron.timer", active="inactive"),
    )


@pytest.fixture
def controller(settings: Settings) -> Controller:
    return Controller(settings)


@pytest.fixture
def listing(controller: Controller, units) -> Controller:
    """Controller past the splash screen with `units` loaded."""
    controller.handle(ServicesLoaded(units))
    controller.handle(KeyPressed("enter"))
    return controller


def press(controller: Controller, *keys: str):
    effects = []
    for key in keys:
        character = key if len(key) == 1 else None
        _state, out = controller.handle(KeyPressed(key, character))
        effects.extend(out)
    return effects


async def settle(engine: Engine, until: Callable[[], bool], limit: int = 500) -> None:
    """Let background tasks run and fold their messages until `until()` holds."""
    for _ in range(limit):
        while not engine.queue.empty():
            _state, effects = engine.controller.handle(engine.queue.get_nowait())
            engine.execute(effects)
        if until():
            return
        await asyncio.sleep(0)
    raise AssertionError("engine did not reach the expected state")
