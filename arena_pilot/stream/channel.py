"""
Token delivery and poll scheduling primitives.

`TokenChannel` replaces ad hoc callbacks: the engine pushes `TokenEvent`s, a consumer iterates
them with `async for`, and `close()` ends the iteration. `PollScheduler` yields ticks at a fixed
interval until its `CancellationToken` is cancelled; cancellation wakes a sleeping scheduler
immediately instead of on the next tick.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

from arena_pilot.stream.views import AcquisitionResult, TokenEvent

logger = logging.getLogger(__name__)

TokenCallback = Callable[[TokenEvent], Union[None, Awaitable[None]]]

_CLOSED = object()


class CancellationToken:
    __slots__ = ("_event", "reason")

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class PollScheduler:
    """Fixed-interval tick source bound to a cancellation token."""

    def __init__(self, interval: float, token: Optional[CancellationToken] = None):
        self.interval = interval
        self.token = token or CancellationToken()
        self.tick = 0

    def cancel(self, reason: str = "cancelled") -> None:
        self.token.cancel(reason)

    async def sleep(self) -> bool:
        """Wait one interval; returns False if cancelled meanwhile."""
        if self.token.cancelled:
            return False
        try:
            await asyncio.wait_for(self.token.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            return True
        return False

    async def ticks(self) -> AsyncIterator[int]:
        while await self.sleep():
            self.tick += 1
            yield self.tick


class TokenChannel:
    """Async sequence of token events for one outbound message.

    A bounded `maxsize` makes `send()` wait for the consumer. An optional callback receives every
    event as it is sent, for presentation layers that prefer callbacks.

    When a message is retried, `restart()` sends a `restart=True` event: consumers that join deltas
    drop what they have so far, and `text` always holds the current attempt's answer only.
    """

    def __init__(self, maxsize: int = 0, on_token: Optional[TokenCallback] = None):
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._on_token = on_token
        self.closed = False
        self.result: Optional[AcquisitionResult] = None
        self.error: Optional[BaseException] = None
        self.text = ""

    async def send(self, event: TokenEvent) -> None:
        if self.closed:
            return
        self.text = event.full_text
        if self._on_token is not None:
            try:
                ret = self._on_token(event)
                if inspect.isawaitable(ret):
                    await ret
            except Exception as e:
                logger.warning(f"⚠️ on_token callback raised {type(e).__name__}: {e}")
        await self._queue.put(event)

    async def restart(self) -> None:
        """Tell consumers the next attempt starts over; a no-op if nothing was delivered yet."""
        if not self.text:
            return
        logger.debug(f"🔁 Discarding {len(self.text)} streamed chars from a failed attempt")
        await self.send(TokenEvent(full_text="", delta="", restart=True))

    async def close(self, result: Optional[AcquisitionResult] = None, error: Optional[BaseException] = None) -> None:
        if self.closed:
            return
        self.result = result
        self.error = error
        self.closed = True
        await self._queue.put(_CLOSED)

    def __aiter__(self) -> AsyncIterator[TokenEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[TokenEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                if self.error is not None:
                    raise self.error
                return
            yield item
