"""Event loop and background task runner for the dashboard.

One asyncio queue carries everything the controller sees: key presses,
resizes and ticks from the terminal, and results from background tasks.
`Engine.run()` is the only consumer; tasks can only put messages on the queue.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from ..directory import DirectoryError, LogStreamError, ServiceDirectory
from .controller import Controller
from .messages import (
    ActionCompleted,
    AwaitLogLine,
    CancelLogStream,
    ConfigLoaded,
    Effect,
    Event,
    Exit,
    FetchConfig,
    FetchFailed,
    FetchHostStats,
    FetchServices,
    HostStatsLoaded,
    LogLine,
    LogStreamEnded,
    PerformAction,
    ServicesLoaded,
    StartLogStream,
    SubscriptionFailed,
)
from .models import AppState
from .subscription import LogSubscriptionManager

logger = logging.getLogger(__name__)

StateListener = Callable[[AppState], None]

# Expected failures of a one-shot collaborator call; anything else is logged with a traceback
CALL_ERRORS = (DirectoryError, OSError, asyncio.TimeoutError)


def describe_error(e: BaseException) -> str:
    if isinstance(e, asyncio.TimeoutError):
        return "timed out"
    return str(e) or type(e).__name__


class Engine:
    def __init__(
        self,
        controller: Controller,
        directory: ServiceDirectory,
        *,
        on_state: StateListener | None = None,
    ) -> None:
        self.controller = controller
        self.directory = directory
        self.on_state = on_state
        self.queue: asyncio.Queue[Event] = asyncio.Queue()
        self.subscriptions = LogSubscriptionManager(directory.open_log_stream)
        self._tasks: set[asyncio.Task] = set()
        self._stopped = asyncio.Event()

    @property
    def state(self) -> AppState:
        return self.controller.state

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def post(self, event: Event) -> None:
        """Enqueue an event; safe to call from any coroutine on the loop."""
        self.queue.put_nowait(event)

    async def run(self) -> None:
        self.execute(self.controller.startup())
        try:
            while not self.stopped:
                event = await self.queue.get()
                state, effects = self.controller.handle(event)
                self.execute(effects)
                if self.on_state is not None:
                    self.on_state(state)
        finally:
            await self.shutdown()

    async def run_until_idle(self) -> None:
        """Fold every queued event and wait for the spawned tasks to settle.

        Meant for tests and scripted sessions; a live log stream keeps the
        engine busy, so callers should not use this while one is open.
        """
        while True:
            while not self.queue.empty():
                state, effects = self.controller.handle(self.queue.get_nowait())
                self.execute(effects)
                if self.on_state is not None:
                    self.on_state(state)
            if not self._tasks:
                return
            await asyncio.wait(set(self._tasks))

    async def shutdown(self) -> None:
        self._stopped.set()
        await self.subscriptions.close()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ---- effects ----

    def execute(self, effects: list[Effect]) -> None:
        for effect in effects:
            if isinstance(effect, FetchServices):
                self._spawn(self._fetch_services(), "fetch-services")
            elif isinstance(effect, FetchConfig):
                self._spawn(self._fetch_config(effect.name), f"fetch-config:{effect.name}")
            elif isinstance(effect, FetchHostStats):
                self._spawn(self._fetch_host_stats(), "fetch-host")
            elif isinstance(effect, PerformAction):
                self._spawn(self._perform_action(effect), f"{effect.kind}:{effect.name}")
            elif isinstance(effect, StartLogStream):
                self._start_stream(effect)
            elif isinstance(effect, AwaitLogLine):
                self._await_line(effect)
            elif isinstance(effect, CancelLogStream):
                sub = self.subscriptions.get(effect.token)
                if sub is not None:
                    self.subscriptions.cancel(sub)
            elif isinstance(effect, Exit):
                self._stopped.set()
            else:
                raise TypeError(f"unknown effect: {effect!r}")

    def _spawn(self, coro: Awaitable[None], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _call(self, coro: Awaitable):
        return await asyncio.wait_for(coro, timeout=self.controller.settings.call_timeout)

    async def _fetch_services(self) -> None:
        try:
            services = await self._call(self.directory.list_services())
        except CALL_ERRORS as e:
            logger.warning("listing units failed: %s", describe_error(e))
            self.post(FetchFailed("services", describe_error(e)))
            return
        except Exception as e:
            logger.exception("listing units failed")
            self.post(FetchFailed("services", describe_error(e)))
            return
        logger.debug("listed %d units", len(services))
        self.post(ServicesLoaded(tuple(services)))

    async def _fetch_config(self, name: str) -> None:
        try:
            text = await self._call(self.directory.fetch_config_text(name))
        except CALL_ERRORS as e:
            logger.warning("reading config of %s failed: %s", name, describe_error(e))
            self.post(FetchFailed("config", describe_error(e), name=name))
            return
        except Exception as e:
            logger.exception("reading config of %s failed", name)
            self.post(FetchFailed("config", describe_error(e), name=name))
            return
        self.post(ConfigLoaded(name, text))

    async def _fetch_host_stats(self) -> None:
        try:
            stats = await self._call(self.directory.fetch_host_stats())
        except CALL_ERRORS as e:
            logger.warning("reading host info failed: %s", describe_error(e))
            self.post(FetchFailed("host", describe_error(e)))
            return
        except Exception as e:
            logger.exception("reading host info failed")
            self.post(FetchFailed("host", describe_error(e)))
            return
        self.post(HostStatsLoaded(stats))

    async def _perform_action(self, effect: PerformAction) -> None:
        try:
            await self._call(self.directory.perform_action(effect.kind, effect.name))
        except CALL_ERRORS as e:
            logger.warning("%s %s failed: %s", effect.kind, effect.name, describe_error(e))
            self.post(ActionCompleted(effect.kind, effect.name, error=describe_error(e)))
            return
        except Exception as e:
            logger.exception("%s %s failed", effect.kind, effect.name)
            self.post(ActionCompleted(effect.kind, effect.name, error=describe_error(e)))
            return
        logger.info("%s %s ok", effect.kind, effect.name)
        self.post(ActionCompleted(effect.kind, effect.name))

    def _start_stream(self, effect: StartLogStream) -> None:
        token = effect.token
        sub = self.subscriptions.start(token.target, token)
        if sub.token is not token:
            # Same unit followed under an older token: rebind to the new one
            self.subscriptions.cancel(sub)
            self.subscriptions.start(token.target, token)

    def _await_line(self, effect: AwaitLogLine) -> None:
        sub = self.subscriptions.get(effect.token)
        if sub is None:
            # Superseded or never started: nobody is listening for this token
            return
        token = effect.token

        async def _wait() -> None:
            try:
                line = await sub.next_line()
            except LogStreamError as e:
                if sub.acquired:
                    self.post(LogStreamEnded(token, error=str(e)))
                else:
                    self.post(SubscriptionFailed(token, str(e)))
                return
            if line is not None:
                self.post(LogLine(token, line))
            elif not token.cancelled:
                self.post(LogStreamEnded(token))

        self._spawn(_wait(), f"await-line:{token.target}")
