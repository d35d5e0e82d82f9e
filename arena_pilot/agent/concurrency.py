"""
Concurrency primitives for the agent core.

The upstream page accepts exactly one outbound message at a time, so every send runs under a
single-permit lease owned by the session it targets.
"""
from __future__ import annotations

import asyncio
import logging
from types import TracebackType
from typing import Optional, Type

from arena_pilot.exceptions import LockTimeoutError

logger = logging.getLogger(__name__)


class LeaseToken:
    """Opaque token representing a held send lease."""
    __slots__ = ("_ok", "holder")

    def __init__(self, holder: str = "") -> None:
        self._ok = True
        self.holder = holder

    @property
    def valid(self) -> bool:
        return self._ok


class SendLease:
    """Acquire the single outbound-message permit of a session.

    Usage:
        async with session.send_lease(timeout=600) as token:
            await submit_and_wait(...)
    """

    def __init__(self, semaphore: asyncio.Semaphore, timeout: Optional[float] = None, holder: str = ""):
        self._semaphore = semaphore
        self._timeout = timeout
        self._holder = holder
        self._token: Optional[LeaseToken] = None

    async def __aenter__(self) -> LeaseToken:
        try:
            if self._timeout is None:
                await self._semaphore.acquire()
            else:
                await asyncio.wait_for(self._semaphore.acquire(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise LockTimeoutError(f"Failed to acquire send lease within {self._timeout}s") from e
        self._token = LeaseToken(self._holder)
        return self._token

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> bool:
        if self._token is not None:
            self._token._ok = False
            self._token = None
            self._semaphore.release()
        return False
