"""
Response acquisition engine.

One engine instance serves one session. For every outbound message the caller runs
`arm()` then either drives `poll()` itself or calls `wait()`:

    idle -> armed -> streaming -> complete
                        \\-> stalled -> complete

The network channel is authoritative once it has seen a stream; the content channel is read
only while the network channel has produced nothing.
"""
from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Sequence

from arena_pilot.exceptions import ResponseTimeout, classify_browser_error
from arena_pilot.stream.channel import CancellationToken, PollScheduler, TokenChannel
from arena_pilot.stream.sources import ContentObservationSource, NetworkStreamSource, ResponseSource
from arena_pilot.stream.views import (
    AcquisitionOutcome,
    AcquisitionPhase,
    AcquisitionResult,
    AcquisitionSettings,
    ChannelKind,
    PollResult,
    SourceLink,
    SourceSnapshot,
    StreamState,
    TokenEvent,
)
from arena_pilot.timing import Clock
from arena_pilot.utils import _log_preview

if TYPE_CHECKING:
    from arena_pilot.browser.session import SessionController

logger = logging.getLogger(__name__)

# Called every tick with the tick number; returning True means acquisition was re-armed.
TickHook = Callable[[int], Awaitable[bool]]


class ResponseAcquisitionEngine:
    def __init__(
        self,
        session: SessionController,
        settings: Optional[AcquisitionSettings] = None,
        sources: Optional[Sequence[ResponseSource]] = None,
        clock: Clock = time.monotonic,
    ):
        self.session = session
        self.settings = settings or AcquisitionSettings.from_config()
        self.sources: list[ResponseSource] = list(sources) if sources is not None else [
            NetworkStreamSource(),
            ContentObservationSource(),
        ]
        self.clock = clock
        self.state = StreamState()
        self.phase = AcquisitionPhase.IDLE
        self._installed = False
        self._reset_tracking()

    def _reset_tracking(self) -> None:
        self._armed_at = self.clock()
        self._unchanged_ticks = 0
        self._last_len = 0
        self._fallback_done = False
        self._image_url: Optional[str] = None
        self._chat_id: Optional[str] = None
        self._sources: list[SourceLink] = []
        self._channel: Optional[ChannelKind] = None

    @property
    def content_source(self) -> Optional[ContentObservationSource]:
        for source in self.sources:
            if isinstance(source, ContentObservationSource):
                return source
        return None

    async def install(self) -> None:
        if self._installed:
            return
        for source in self.sources:
            await source.install(self.session)
        self._installed = True

    async def arm(self) -> None:
        """Reset stream state and re-arm every source against the current page."""
        await self.install()
        self.state.reset()
        self._reset_tracking()
        page = await self.session.get_page()
        for source in self.sources:
            try:
                await source.arm(page)
            except Exception as e:
                raise classify_browser_error(e) from e
        self.phase = AcquisitionPhase.ARMED

    async def _read_all(self) -> dict[ChannelKind, SourceSnapshot]:
        page = await self.session.get_page()
        snapshots: dict[ChannelKind, SourceSnapshot] = {}
        for source in self.sources:
            try:
                snapshots[source.kind] = await source.read(page)
            except Exception as e:
                raise classify_browser_error(e) from e
        return snapshots

    def _pick(self, snapshots: dict[ChannelKind, SourceSnapshot]) -> Optional[SourceSnapshot]:
        network = snapshots.get(ChannelKind.NETWORK)
        if network is not None and (network.active or network.text):
            return network
        content = snapshots.get(ChannelKind.CONTENT)
        if content is not None and (content.text or content.image_url or content.rate_limited):
            return content
        return network or content

    def _finish(self, outcome: AcquisitionOutcome, cancelled: bool = False) -> AcquisitionResult:
        self.state.done = True
        self.state.active = False
        self.phase = AcquisitionPhase.STALLED if outcome is AcquisitionOutcome.STALLED else AcquisitionPhase.COMPLETE
        return AcquisitionResult(
            text=self.state.text,
            image_url=self._image_url,
            sources=list(self._sources),
            chat_id=self._chat_id,
            outcome=outcome,
            channel=self._channel,
            cancelled=cancelled,
        )

    async def poll(self) -> PollResult:
        """One tick: read the sources, emit growth, decide completion. Never sleeps."""
        if self.phase is AcquisitionPhase.IDLE:
            raise RuntimeError("poll() called before arm()")
        if self.phase in (AcquisitionPhase.COMPLETE, AcquisitionPhase.STALLED):
            return PollResult(phase=self.phase, active=False)

        snapshots = await self._read_all()
        snapshot = self._pick(snapshots)
        if snapshot is None:
            return PollResult(phase=self.phase, active=True)

        # Image, sources and chat id are only visible in the page; merge them from any channel.
        image_changed = False
        for seen in snapshots.values():
            if seen.chat_id:
                self._chat_id = seen.chat_id
            if seen.sources:
                self._sources = seen.sources
            if seen.image_url and seen.image_url != self._image_url:
                self._image_url = seen.image_url
                image_changed = True

        delta = self.state.advance(snapshot.text)
        if delta or snapshot.active:
            self._channel = snapshot.channel
            self.state.active = True
            self.phase = AcquisitionPhase.STREAMING

        event = None
        if delta or image_changed:
            event = TokenEvent(
                full_text=self.state.text,
                delta=delta,
                image_url=self._image_url,
                chat_id=self._chat_id,
                sources=list(self._sources),
            )
            if delta:
                logger.debug(f"📨 +{len(delta)} chars via {snapshot.channel.value}: {_log_preview(delta)}")

        result = self._decide(snapshot)
        return PollResult(phase=self.phase, active=result is None, delta=delta, event=event, result=result)

    def _decide(self, snapshot: SourceSnapshot) -> Optional[AcquisitionResult]:
        settings = self.settings
        if snapshot.rate_limited and self.state.text:
            logger.warning(f"⚠️ Upstream rate limit notice: {_log_preview(self.state.text, 80)}")
            self._channel = snapshot.channel
            return self._finish(AcquisitionOutcome.RATE_LIMITED)

        length = len(self.state.text)
        if length == self._last_len:
            self._unchanged_ticks += 1
        else:
            self._unchanged_ticks = 0
            self._last_len = length

        if snapshot.channel is ChannelKind.NETWORK:
            if snapshot.done and length > 0:
                logger.debug(f"✅ Stream complete ({length} chars)")
                return self._finish(AcquisitionOutcome.COMPLETE)
            if length > 0 and self._unchanged_ticks >= settings.stream_stall_ticks:
                logger.info(f"⏳ Stream stalled for {self._unchanged_ticks} ticks, returning {length} chars")
                return self._finish(AcquisitionOutcome.STALLED)
        elif (length > 0 or self._image_url) and self._unchanged_ticks >= settings.stall_ticks:
            return self._finish(AcquisitionOutcome.COMPLETE)
        return None

    async def _grace_fallback(self) -> Optional[AcquisitionResult]:
        """One read of the visible answer region after a silent grace period."""
        self._fallback_done = True
        source = self.content_source
        if source is None:
            return None
        page = await self.session.get_page()
        try:
            text = await source.fallback_read(page)
        except Exception as e:
            raise classify_browser_error(e) from e
        if text and len(text) > self.settings.min_fallback_chars:
            logger.info(f"👀 No stream after {self.settings.initial_grace_seconds:.0f}s, using visible answer ({len(text)} chars)")
            self.state.advance(text)
            self._channel = ChannelKind.CONTENT
            return self._finish(AcquisitionOutcome.COMPLETE)
        return None

    def timeout_result(self, cancelled: bool = False) -> AcquisitionResult:
        """Best-effort result at the ceiling; raises when nothing at all was captured."""
        if self.state.text or self._image_url:
            return self._finish(AcquisitionOutcome.PARTIAL, cancelled=cancelled)
        self.phase = AcquisitionPhase.COMPLETE
        raise ResponseTimeout("No response content before the wait ceiling", partial_text="")

    async def wait(
        self,
        channel: Optional[TokenChannel] = None,
        cancel: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
        on_tick: Optional[TickHook] = None,
    ) -> AcquisitionResult:
        """Poll until complete, stalled, cancelled or the ceiling expires."""
        settings = self.settings
        started = self.clock()
        timeout = settings.message_timeout_seconds if timeout is None else timeout
        deadline = started + timeout
        scheduler = PollScheduler(settings.poll_interval, cancel)

        async for tick in scheduler.ticks():
            if self.clock() >= deadline:
                logger.warning(f"⏳ Response ceiling of {timeout:.0f}s reached with {len(self.state.text)} chars")
                return self.timeout_result()
            if on_tick is not None and await on_tick(tick):
                # Re-armed after recovery: restart the message window, bounded by the recovery ceiling.
                now = self.clock()
                deadline = min(now + timeout, started + max(timeout, settings.challenge_timeout_seconds))
                continue

            outcome = await self.poll()
            if outcome.event is not None and channel is not None:
                await channel.send(outcome.event)
            if outcome.result is not None:
                return outcome.result

            silent_for = self.clock() - self._armed_at
            if not self.state.text and not self._fallback_done and silent_for > settings.initial_grace_seconds:
                result = await self._grace_fallback()
                if result is not None:
                    if channel is not None:
                        await channel.send(TokenEvent(full_text=result.text, delta=result.text))
                    return result

        logger.info(f"🛑 Response wait cancelled ({scheduler.token.reason}) with {len(self.state.text)} chars")
        return self.timeout_result(cancelled=True)
