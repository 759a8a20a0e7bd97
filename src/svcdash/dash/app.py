from __future__ import annotations

import asyncio
import logging
import time
from asyncio import Task
from contextlib import suppress
from pathlib import Path

from rich.text import Text
from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.timer import Timer
from textual.widgets import Static

from ..config import Settings
from ..directory import ServiceDirectory, SystemdDirectory
from .components import DevFilter
from .controller import Controller
from .engine import Engine
from .messages import KeyPressed, Resize, Tick
from .models import AppState
from .render import render

logger = logging.getLogger(__name__)

TICK_SECONDS = 0.1


class ServiceBoard(Static, can_focus=True):
    """The whole dashboard frame; forwards every key and resize to the engine."""

    def __init__(self, engine: Engine, **kwargs) -> None:
        super().__init__("", **kwargs)
        self._engine = engine

    def on_key(self, event: events.Key) -> None:
        event.stop()
        event.prevent_default()
        key = event.key
        # Textual names punctuation ("slash"); the controller wants the glyph
        if event.is_printable and event.character and event.character != " ":
            key = event.character
        self._engine.post(KeyPressed(key, event.character))

    def on_resize(self, event: events.Resize) -> None:
        self._engine.post(Resize(event.size.width, event.size.height))

    def show(self, state: AppState) -> None:
        self.update(Text(render(state), no_wrap=True, overflow="crop"))


class SvcDashApp(App):
    CSS_PATH = Path(__file__).with_name("app.tcss")
    # Priority bindings run before focus handling would swallow these keys
    BINDINGS = [
        Binding("tab", "forward('tab')", "Switch pane", show=False, priority=True),
        Binding("ctrl+c", "forward('ctrl+c')", "Quit", show=False, priority=True),
    ]

    def __init__(self, engine: Engine, tick_seconds: float = TICK_SECONDS) -> None:
        super().__init__()
        self.engine = engine
        self.tick_seconds = tick_seconds
        self.board: ServiceBoard | None = None
        self._engine_task: Task | None = None
        self._tick_timer: Timer | None = None

    def compose(self) -> ComposeResult:
        self.board = ServiceBoard(self.engine, id="board")
        yield self.board

    async def on_mount(self) -> None:
        self.board = self.query_one(ServiceBoard)
        self.engine.on_state = self._paint
        self.board.focus()
        self._paint(self.engine.state)
        self._engine_task = asyncio.create_task(self._run_engine())
        self._tick_timer = self.set_interval(self.tick_seconds, self._tick)

    async def on_unmount(self) -> None:
        if self._tick_timer is not None:
            self._tick_timer.stop()
        if self._engine_task and not self._engine_task.done():
            self._engine_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._engine_task
        close = getattr(self.engine.directory, "close", None)
        if callable(close):
            await close()

    async def _run_engine(self) -> None:
        try:
            await self.engine.run()
        finally:
            self.exit()

    def _tick(self) -> None:
        self.engine.post(Tick(time.monotonic()))

    def _paint(self, state: AppState) -> None:
        if self.board is not None:
            self.board.show(state)

    def action_forward(self, key: str) -> None:
        self.engine.post(KeyPressed(key))


def build_engine(
    settings: Settings,
    directory: ServiceDirectory | None = None,
    dev_filter: DevFilter | None = None,
) -> Engine:
    controller = Controller(settings, dev_filter=dev_filter)
    return Engine(controller, directory or SystemdDirectory(settings))


def run_dash(settings: Settings) -> None:
    app = SvcDashApp(build_engine(settings))
    app.run()
    logger.info("dashboard closed")
