import asyncio

import pytest

from arena_pilot.agent.concurrency import SendLease
from arena_pilot.agent.settings import SupervisorSettings
from arena_pilot.agent.supervisor import RetrySupervisor
from arena_pilot.browser.challenge import ChallengeStatus, PageReadiness
from arena_pilot.exceptions import (
    AntiBotChallenge,
    LockTimeoutError,
    ResponseTimeout,
    SendFailedError,
    TransientIOError,
)
from arena_pilot.stream.channel import TokenChannel
from arena_pilot.stream.engine import ResponseAcquisitionEngine
from arena_pilot.stream.sources import ContentObservationSource, ResponseSource
from arena_pilot.stream.views import AcquisitionOutcome, AcquisitionSettings, ChannelKind, SourceSnapshot


class TickingClock:
    def __init__(self, step: float = 0.01):
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


class DummySession:
    def __init__(self, challenges=()):
        # an Exception entry in `challenges` is raised by detect_challenge instead of returned
        self.page = object()
        self.challenges = list(challenges)
        self.resolutions = 0
        self.clearance_waits = 0
        self._semaphore = asyncio.Semaphore(1)

    async def get_page(self):
        return self.page

    def send_lease(self, timeout=None):
        return SendLease(self._semaphore, timeout=timeout, holder="test")

    async def detect_challenge(self):
        if self.challenges:
            status = self.challenges.pop(0)
            if isinstance(status, Exception):
                raise status
            return status
        return ChallengeStatus.CLEAR

    async def attempt_challenge_resolution(self):
        self.resolutions += 1
        return True

    async def wait_for_clearance(self, timeout=30.0, interval=1.0):
        self.clearance_waits += 1
        return PageReadiness.READY


class DummyComposer:
    def __init__(self, failures=()):
        self.sent = []
        self.resent = 0
        self.failures = list(failures)

    async def send(self, page, text):
        self.sent.append(text)
        if self.failures:
            raise self.failures.pop(0)
        return text

    async def resend(self, page):
        self.resent += 1


class ScriptedSource(ResponseSource):
    """Network source whose reads are scripted per arm() call."""

    kind = ChannelKind.NETWORK

    def __init__(self, script):
        self.script = script
        self.armed = 0
        self.reads = 0

    async def arm(self, page):
        self.armed += 1
        self.reads = 0

    async def read(self, page):
        self.reads += 1
        step = self.script(self.armed, self.reads)
        if isinstance(step, BaseException):
            raise step
        return step or SourceSnapshot(channel=self.kind)


class PendingContent(ContentObservationSource):
    def __init__(self, pending=True):
        super().__init__()
        self.pending = pending

    async def arm(self, page):
        self.initial_count = 0

    async def read(self, page):
        return SourceSnapshot(channel=self.kind)

    async def needs_resend(self, page):
        return self.pending


def _supervisor(session, sources, composer=None, max_attempts=3, message_timeout=5.0):
    engine = ResponseAcquisitionEngine(
        session,
        settings=AcquisitionSettings(
            poll_interval=0.001,
            stall_ticks=3,
            stream_stall_ticks=5,
            initial_grace_seconds=1000.0,
            message_timeout_seconds=message_timeout,
            challenge_timeout_seconds=message_timeout * 2,
        ),
        sources=sources,
        clock=TickingClock(),
    )
    settings = SupervisorSettings(
        max_attempts=max_attempts,
        transient_retry_delay=0,
        challenge_check_every=1,
        challenge_settle_seconds=0,
        navigation_settle_seconds=0,
        input_wait_seconds=0,
    )
    return RetrySupervisor(session, engine, composer or DummyComposer(), settings=settings)


def _done(text):
    return SourceSnapshot(channel=ChannelKind.NETWORK, text=text, active=True, done=True)


async def test_successful_send_streams_into_channel():
    session = DummySession()
    supervisor = _supervisor(session, [ScriptedSource(lambda armed, reads: _done("Hi there"))])
    channel = TokenChannel()

    result = await supervisor.send("hello", channel=channel)

    assert result.text == "Hi there"
    assert result.response == "Hi there"
    assert result.outcome is AcquisitionOutcome.COMPLETE
    assert result.attempts == 1
    assert channel.closed and channel.result.text == "Hi there"
    assert [e.delta async for e in channel] == ["Hi there"]


async def test_challenge_is_resolved_once_and_message_resent_once():
    session = DummySession(challenges=[ChallengeStatus.BLOCKED])
    composer = DummyComposer()

    def script(armed, reads):
        # The answer only appears once acquisition was re-armed after the challenge.
        return _done("Recovered answer") if armed >= 2 else None

    source = ScriptedSource(script)
    supervisor = _supervisor(session, [source, PendingContent(pending=True)], composer=composer)

    result = await supervisor.send("hello")

    assert result.text == "Recovered answer"
    assert result.attempts == 1
    assert session.resolutions == 1
    assert composer.sent == ["hello"]
    assert composer.resent == 1
    assert source.armed == 2
    assert supervisor.recovery.rearmed == 1


async def test_submitted_message_is_not_resent_after_challenge():
    session = DummySession(challenges=[ChallengeStatus.BLOCKED])
    composer = DummyComposer()
    source = ScriptedSource(lambda armed, reads: _done("ok") if armed >= 2 else None)
    supervisor = _supervisor(session, [source, PendingContent(pending=False)], composer=composer)

    await supervisor.send("hello")

    assert composer.resent == 0
    assert composer.sent == ["hello"]


async def test_recurring_challenge_is_terminal():
    session = DummySession(challenges=[ChallengeStatus.BLOCKED] * 5)
    composer = DummyComposer()
    supervisor = _supervisor(session, [ScriptedSource(lambda armed, reads: None), PendingContent()], composer=composer)

    with pytest.raises(AntiBotChallenge):
        await supervisor.send("hello")
    assert session.resolutions == 1
    assert composer.sent == ["hello"]


async def test_transient_error_is_retried():
    composer = DummyComposer(failures=[TransientIOError("Target closed")])
    supervisor = _supervisor(DummySession(), [ScriptedSource(lambda armed, reads: _done("second time"))], composer=composer)

    result = await supervisor.send("hello")

    assert result.text == "second time"
    assert result.attempts == 2
    assert composer.sent == ["hello", "hello"]


async def test_exhausted_attempts_carry_partial_text():
    def script(armed, reads):
        if reads == 1:
            return SourceSnapshot(channel=ChannelKind.NETWORK, text="partial", active=True)
        return RuntimeError("Target page, context or browser has been closed")

    composer = DummyComposer()
    supervisor = _supervisor(DummySession(), [ScriptedSource(script)], composer=composer, max_attempts=2)
    channel = TokenChannel()

    with pytest.raises(SendFailedError) as exc_info:
        await supervisor.send("hello", channel=channel)

    assert exc_info.value.partial_text == "partial"
    assert exc_info.value.attempts == 2
    assert isinstance(exc_info.value.last_error, TransientIOError)
    assert len(composer.sent) == 2
    assert channel.closed and isinstance(channel.error, SendFailedError)


async def test_response_timeout_is_not_retried():
    composer = DummyComposer()
    supervisor = _supervisor(DummySession(), [ScriptedSource(lambda armed, reads: None)], composer=composer, message_timeout=0.5)

    with pytest.raises(ResponseTimeout):
        await supervisor.send("hello")
    assert composer.sent == ["hello"]


async def test_lease_timeout_when_session_is_busy():
    session = DummySession()
    supervisor = _supervisor(session, [ScriptedSource(lambda armed, reads: _done("x"))])
    supervisor.settings.lease_timeout = 0.01

    async with session.send_lease():
        with pytest.raises(LockTimeoutError):
            await supervisor.send("hello")


async def test_retry_restarts_the_token_stream():
    def script(armed, reads):
        if armed == 1:
            if reads == 1:
                return SourceSnapshot(channel=ChannelKind.NETWORK, text="stale half ", active=True)
            return RuntimeError("Target page, context or browser has been closed")
        return _done("fresh answer")

    received = []
    channel = TokenChannel(on_token=received.append)
    supervisor = _supervisor(DummySession(), [ScriptedSource(script)])

    result = await supervisor.send("hello", channel=channel)

    joined = ""
    for event in received:
        if event.restart:
            joined = ""
        joined += event.delta
    assert result.text == "fresh answer"
    assert result.attempts == 2
    assert joined == "fresh answer"
    assert [e.restart for e in received] == [False, True, False]
    assert channel.text == "fresh answer"


async def test_first_attempt_sends_no_restart_event():
    received = []
    channel = TokenChannel(on_token=received.append)
    supervisor = _supervisor(DummySession(), [ScriptedSource(lambda armed, reads: _done("only answer"))])

    await supervisor.send("hello", channel=channel)

    assert not any(e.restart for e in received)
    assert [e.delta for e in received] == ["only answer"]


async def test_challenge_check_during_navigation_is_skipped():
    session = DummySession(challenges=[RuntimeError("Execution context was destroyed")])

    def script(armed, reads):
        if reads < 3:
            return SourceSnapshot(channel=ChannelKind.NETWORK, text="x" * reads, active=True)
        return _done("xxx")

    supervisor = _supervisor(session, [ScriptedSource(script)])

    result = await supervisor.send("hello")

    assert result.text == "xxx"
    assert session.resolutions == 0


def test_navigation_settle_delay_comes_from_environment(monkeypatch):
    monkeypatch.setenv("ARENA_NAVIGATION_SETTLE_SECONDS", "0.25")
    assert SupervisorSettings.from_config().navigation_settle_seconds == 0.25
