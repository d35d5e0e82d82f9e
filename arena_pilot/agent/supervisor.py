"""
Retry & recovery around one send/receive cycle.

A unit of work is "enter message -> submit -> acquire answer". It runs under the session's send
lease, so a session never has two outbound messages in flight. Mid-stream challenges are
handled inside the acquisition wait without consuming an attempt.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from arena_pilot.agent.settings import SupervisorSettings
from arena_pilot.agent.views import SendResult
from arena_pilot.browser.challenge import ChallengeStatus
from arena_pilot.browser.composer import MessageComposer
from arena_pilot.exceptions import (
    AntiBotChallenge,
    ArenaError,
    ResponseTimeout,
    SendFailedError,
    SessionCrashed,
    TransientIOError,
    classify_browser_error,
)
from arena_pilot.utils import _log_preview

if TYPE_CHECKING:
    from arena_pilot.browser.session import SessionController
    from arena_pilot.stream.channel import CancellationToken, TokenChannel
    from arena_pilot.stream.engine import ResponseAcquisitionEngine
    from arena_pilot.stream.views import AcquisitionResult

logger = logging.getLogger(__name__)


@dataclass
class RecoveryState:
    """Per-message challenge bookkeeping; one automated resolution and one resend at most."""
    resolved: bool = False
    resent: bool = False
    rearmed: int = 0


class RetrySupervisor:
    def __init__(
        self,
        session: SessionController,
        engine: ResponseAcquisitionEngine,
        composer: Optional[MessageComposer] = None,
        settings: Optional[SupervisorSettings] = None,
    ):
        self.session = session
        self.engine = engine
        self.composer = composer or MessageComposer()
        self.settings = settings or SupervisorSettings.from_config()
        self.last_message: Optional[str] = None
        self.recovery = RecoveryState()

    async def send(
        self,
        text: str,
        channel: Optional[TokenChannel] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> SendResult:
        async with self.session.send_lease(self.settings.lease_timeout):
            return await self._send_locked(text, channel, cancel)

    async def _send_locked(
        self,
        text: str,
        channel: Optional[TokenChannel],
        cancel: Optional[CancellationToken],
    ) -> SendResult:
        self.last_message = text
        self.recovery = RecoveryState()
        max_attempts = self.settings.max_attempts
        last_error: Optional[BaseException] = None
        partial = ""
        logger.info(f"📤 Sending message: {_log_preview(text, 50)}")

        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                logger.info(f"🔄 Retry attempt {attempt}/{max_attempts}")
                if channel is not None:
                    await channel.restart()
            try:
                await self.engine.arm()
                page = await self.session.get_page()
                await self.composer.send(page, text)
                result = await self.engine.wait(channel=channel, cancel=cancel, on_tick=self._check_challenge)
                if channel is not None:
                    await channel.close(result=result)
                logger.info(f"✅ Response received ({len(result.text)} chars, {result.outcome.value}) after {attempt} attempt(s)")
                return self._to_send_result(result, attempt)
            except (AntiBotChallenge, ResponseTimeout) as e:
                # Terminal: manual intervention or nothing produced before the ceiling.
                logger.error(f"❌ Send failed terminally: {type(e).__name__}: {e}")
                if channel is not None:
                    await channel.close(error=e)
                raise
            except (TransientIOError, SessionCrashed) as e:
                last_error = e
                partial = self.engine.state.text or partial
                logger.warning(f"⚠️ Connection unstable on attempt {attempt}: {e}")
                if attempt < max_attempts:
                    await asyncio.sleep(self.settings.transient_retry_delay)
            except ArenaError as e:
                last_error = e
                partial = self.engine.state.text or partial
                logger.warning(f"⚠️ Attempt {attempt} failed: {type(e).__name__}: {e}")
            except Exception as e:
                err = classify_browser_error(e)
                last_error = err
                partial = self.engine.state.text or partial
                logger.warning(f"⚠️ Attempt {attempt} error: {type(e).__name__}: {e}")
                if isinstance(err, TransientIOError) and attempt < max_attempts:
                    await asyncio.sleep(self.settings.transient_retry_delay)

        error = SendFailedError(
            f"Message failed after {max_attempts} attempts: {last_error}",
            partial_text=partial,
            attempts=max_attempts,
            last_error=last_error,
        )
        if channel is not None:
            await channel.close(error=error)
        raise error

    async def _check_challenge(self, tick: int) -> bool:
        """Tick hook for the acquisition wait; returns True after re-arming."""
        if tick % self.settings.challenge_check_every:
            return False
        try:
            status = await self.session.detect_challenge()
        except Exception as e:
            err = classify_browser_error(e)
            if isinstance(err, TransientIOError):
                logger.debug(f"Challenge check skipped, page is navigating: {e}")
                await asyncio.sleep(self.settings.navigation_settle_seconds)
                return False
            raise err from e
        if status is not ChallengeStatus.BLOCKED:
            return False

        if self.recovery.resolved:
            raise AntiBotChallenge("Challenge reappeared after automated resolution; manual attention needed")
        self.recovery.resolved = True
        logger.warning("🧩 Challenge appeared while waiting for the answer, attempting resolution")
        await self.session.attempt_challenge_resolution()
        await asyncio.sleep(self.settings.challenge_settle_seconds)
        await self.session.wait_for_clearance(timeout=self.settings.input_wait_seconds)

        if self.engine.state.text:
            logger.info("🧩 Answer already streaming, continuing")
            return False

        page = await self.session.get_page()
        content = self.engine.content_source
        needs_resend = False
        if content is not None:
            try:
                needs_resend = await content.needs_resend(page)
            except Exception as e:
                logger.debug(f"Resend check failed: {type(e).__name__}: {e}")

        await self.engine.arm()
        self.recovery.rearmed += 1
        if needs_resend and not self.recovery.resent:
            self.recovery.resent = True
            logger.info("📤 Message was not submitted before the challenge, resending")
            await self.composer.resend(await self.session.get_page())
        return True

    @staticmethod
    def _to_send_result(result: AcquisitionResult, attempts: int) -> SendResult:
        return SendResult(
            response=result.response,
            text=result.text,
            sources=result.sources,
            chat_id=result.chat_id,
            image_url=result.image_url,
            outcome=result.outcome,
            attempts=attempts,
        )
