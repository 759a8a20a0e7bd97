"""At most one live log subscription at a time.

A subscription couples a `CancellationToken` with a private channel fed by a
pump task. Readers pull one line at a time with `next_line()`. Cancelling is
synchronous for the caller: the token is flipped, the pump task is cancelled
and any reader blocked on the channel is woken with end-of-stream, so nothing
from the old subscription is delivered afterwards, whatever the underlying
journal process is still doing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from ..directory import LogStream, LogStreamError
from .models import CancellationToken

logger = logging.getLogger(__name__)

CHANNEL_SIZE = 256

_CLOSED = object()


class _Failure:
    __slots__ = ("error",)

    def __init__(self, error: BaseException) -> None:
        self.error = error


StreamOpener = Callable[[str], Awaitable[LogStream]]


class LogSubscription:
    def __init__(self, token: CancellationToken, channel_size: int = CHANNEL_SIZE) -> None:
        self.token = token
        self.acquired = False
        self.closed = False
        self._channel: asyncio.Queue = asyncio.Queue(maxsize=channel_size)
        self._pump: asyncio.Task | None = None

    @property
    def target(self) -> str:
        return self.token.target

    @property
    def live(self) -> bool:
        return not (self.closed or self.token.cancelled)

    async def next_line(self) -> str | None:
        """Next line, or None once the stream ended or was cancelled.

        Raises LogStreamError when the stream could not be opened or broke.
        """
        if self.token.cancelled:
            return None
        item = await self._channel.get()
        if self.token.cancelled or item is _CLOSED:
            self.closed = True
            return None
        if isinstance(item, _Failure):
            self.closed = True
            if isinstance(item.error, LogStreamError):
                raise item.error
            raise LogStreamError("stream logs", str(item.error)) from item.error
        return item

    def _wake_reader(self) -> None:
        # Drop buffered lines and leave a single end marker for a blocked reader
        while not self._channel.empty():
            self._channel.get_nowait()
        self._channel.put_nowait(_CLOSED)


class LogSubscriptionManager:
    def __init__(self, opener: StreamOpener, channel_size: int = CHANNEL_SIZE) -> None:
        self._opener = opener
        self._channel_size = channel_size
        self._current: LogSubscription | None = None
        self._pumps: set[asyncio.Task] = set()

    @property
    def current(self) -> LogSubscription | None:
        return self._current

    def get(self, token: CancellationToken) -> LogSubscription | None:
        cur = self._current
        if cur is not None and cur.token is token:
            return cur
        return None

    def start(self, target: str, token: CancellationToken | None = None) -> LogSubscription:
        """Follow `target`; a no-op when it is already followed by a live subscription."""
        cur = self._current
        if cur is not None and cur.live and cur.target == target:
            return cur
        if cur is not None:
            self.cancel(cur)
        sub = LogSubscription(token or CancellationToken(target), self._channel_size)
        sub._pump = asyncio.create_task(self._pump(sub), name=f"logs:{target}")
        self._pumps.add(sub._pump)
        sub._pump.add_done_callback(self._pumps.discard)
        self._current = sub
        logger.info("log subscription started for %s", target)
        return sub

    def cancel(self, sub: LogSubscription) -> None:
        if sub.token.cancelled and sub.closed:
            return
        sub.token.cancel()
        sub.closed = True
        if sub._pump is not None and not sub._pump.done():
            sub._pump.cancel()
        sub._wake_reader()
        if self._current is sub:
            self._current = None
        logger.info("log subscription cancelled for %s", sub.target)

    async def close(self) -> None:
        """Cancel the current subscription and wait for every pump to exit."""
        if self._current is not None:
            self.cancel(self._current)
        if self._pumps:
            await asyncio.gather(*self._pumps, return_exceptions=True)

    async def _pump(self, sub: LogSubscription) -> None:
        stream: LogStream | None = None
        try:
            stream = await self._opener(sub.target)
            sub.acquired = True
            async for line in stream:
                if sub.token.cancelled:
                    break
                await sub._channel.put(line)
            if not sub.token.cancelled:
                await sub._channel.put(_CLOSED)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # collaborator boundary: reported to the reader
            logger.warning("log stream for %s failed: %s", sub.target, e)
            if not sub.token.cancelled:
                await sub._channel.put(_Failure(e))
        finally:
            if stream is not None:
                await stream.close()
