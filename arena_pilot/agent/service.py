"""
ArenaClient: the presentation-facing surface of the execution core.

CLIs, web front ends and editor panels only call `initialize`, `select_model`, `send_message`
(or `stream_message`) and `get_available_models`; everything below is hidden behind it.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import TYPE_CHECKING, Any, AsyncIterator, Optional

from arena_pilot.agent.views import SendResult
from arena_pilot.browser.challenge import PageReadiness
from arena_pilot.catalog import MODEL_CATALOG, canonical_model_id
from arena_pilot.config import CONFIG
from arena_pilot.exceptions import ArenaError, UnknownModelError
from arena_pilot.stream.channel import CancellationToken, TokenCallback, TokenChannel

if TYPE_CHECKING:
    from arena_pilot.agent.supervisor import RetrySupervisor
    from arena_pilot.browser.router import ModelRouter
    from arena_pilot.browser.session import SessionController
    from arena_pilot.stream.views import TokenEvent

logger = logging.getLogger(__name__)


class ClientStats:
    """Aggregate counters republished by dashboards; response times are a bounded history."""

    def __init__(self, history_size: int = 100):
        self.total_messages = 0
        self.total_errors = 0
        self.response_times: deque[float] = deque(maxlen=history_size)

    def record(self, seconds: float) -> None:
        self.total_messages += 1
        self.response_times.append(seconds)

    def record_error(self) -> None:
        self.total_errors += 1

    @property
    def average_response_time(self) -> float:
        return sum(self.response_times) / len(self.response_times) if self.response_times else 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_messages": self.total_messages,
            "total_errors": self.total_errors,
            "average_response_time": round(self.average_response_time, 3),
            "recent_response_times": list(self.response_times),
        }


class ArenaClient:
    def __init__(
        self,
        session: SessionController,
        router: ModelRouter,
        supervisor: RetrySupervisor,
        default_model: Optional[str] = None,
        clearance_timeout: float = 10.0,
    ):
        self.session = session
        self.router = router
        self.supervisor = supervisor
        self.default_model = default_model or CONFIG.ARENA_DEFAULT_MODEL
        self.clearance_timeout = clearance_timeout
        self.stats = ClientStats()
        self._initialized = False
        self._init_task: Optional[asyncio.Task] = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _describe(self) -> dict[str, Any]:
        return {"model": self.router.current_model, "modality": self.router.current_modality.value}

    async def initialize(self, model_id: Optional[str] = None) -> dict[str, Any]:
        """Launch, navigate and clear any challenge. Concurrent callers share one pending run."""
        if self._initialized:
            return self._describe()
        if self._init_task is None or self._init_task.done():
            self._init_task = asyncio.create_task(self._initialize(model_id), name="arena-initialize")
        task = self._init_task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._init_task is task:
                self._init_task = None

    async def _initialize(self, model_id: Optional[str]) -> dict[str, Any]:
        logger.info("🚀 Initializing arena client...")
        await self.session.launch()
        await self.supervisor.engine.install()
        async with self.session.send_lease():
            await self.router.navigate(model_id or self.default_model)
        readiness = await self.session.wait_for_clearance(timeout=self.clearance_timeout)
        if readiness is PageReadiness.BLOCKED:
            logger.warning("🧩 Page blocked after navigation, attempting challenge resolution")
            await self.session.attempt_challenge_resolution()
            await self.session.wait_for_clearance(timeout=self.clearance_timeout)
        self._initialized = True
        logger.info(f"✅ Ready on {self.router.current_model} ({self.router.current_modality.value})")
        return self._describe()

    async def select_model(self, model_id: str) -> dict[str, Any]:
        canonical = canonical_model_id(model_id)
        if not canonical or canonical not in MODEL_CATALOG:
            raise UnknownModelError(f"Unknown model: {model_id}")
        if not self._initialized:
            return await self.initialize(canonical)
        async with self.session.send_lease():
            await self.router.navigate(canonical)
        return self._describe()

    async def send_message(
        self,
        text: str,
        on_token: Optional[TokenCallback] = None,
        channel: Optional[TokenChannel] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> SendResult:
        if not self._initialized:
            await self.initialize()
        if channel is None and on_token is not None:
            channel = TokenChannel(on_token=on_token)
        started = time.monotonic()
        try:
            result = await self.supervisor.send(text, channel=channel, cancel=cancel)
        except ArenaError:
            self.stats.record_error()
            raise
        self.stats.record(time.monotonic() - started)
        return result

    async def stream_message(self, text: str, cancel: Optional[CancellationToken] = None) -> AsyncIterator[TokenEvent]:
        """Yield token events while the answer streams; errors surface at the end of iteration."""
        channel = TokenChannel()

        async def produce() -> SendResult:
            try:
                return await self.send_message(text, channel=channel, cancel=cancel)
            except Exception as e:
                await channel.close(error=e)
                raise
            finally:
                await channel.close()

        task = asyncio.create_task(produce())
        try:
            async for event in channel:
                yield event
        finally:
            if not task.done():
                if cancel is not None:
                    cancel.cancel("consumer stopped")
                task.cancel()
            try:
                await task
            except (asyncio.CancelledError, ArenaError):
                pass

    def get_available_models(self) -> list[dict[str, str]]:
        return [{"id": d.id, "name": d.display_name, "modality": d.modality.value} for d in MODEL_CATALOG.values()]

    async def navigate_to_chat(self, chat_id: Optional[str]) -> str:
        async with self.session.send_lease():
            return await self.router.navigate_to_chat(chat_id)

    async def upload_image(self, base64_data: str) -> bool:
        page = await self.session.get_page()
        return await self.supervisor.composer.upload_image(page, base64_data)

    async def get_model_icon(self) -> Optional[str]:
        return await self.router.extract_model_icon()

    def get_stats(self) -> dict[str, Any]:
        return {**self.stats.as_dict(), **self._describe(), "initialized": self._initialized}

    async def close(self) -> None:
        await self.session.close()
        self._initialized = False
