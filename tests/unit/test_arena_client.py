import asyncio
import types

import pytest

from arena_pilot.agent.concurrency import SendLease
from arena_pilot.agent.service import ArenaClient, ClientStats
from arena_pilot.agent.views import SendResult
from arena_pilot.browser.challenge import PageReadiness
from arena_pilot.catalog import Modality
from arena_pilot.exceptions import LockTimeoutError, SendFailedError, UnknownModelError
from arena_pilot.stream.views import AcquisitionResult, TokenEvent


class DummySession:
    def __init__(self, readiness=PageReadiness.READY):
        self.launches = 0
        self.closed = 0
        self.readiness = readiness
        self.resolutions = 0
        self._semaphore = asyncio.Semaphore(1)

    async def launch(self):
        self.launches += 1
        await asyncio.sleep(0)
        return self

    def send_lease(self, timeout=None):
        return SendLease(self._semaphore, timeout=timeout, holder="test")

    async def wait_for_clearance(self, timeout=30.0, interval=1.0):
        return self.readiness

    async def attempt_challenge_resolution(self):
        self.resolutions += 1
        return True

    async def close(self):
        self.closed += 1


class DummyRouter:
    def __init__(self):
        self.navigations = []
        self.current = None

    @property
    def current_model(self):
        return self.current

    @property
    def current_modality(self):
        return Modality.TEXT

    async def navigate(self, model_id, hint=Modality.TEXT):
        self.navigations.append(model_id)
        self.current = model_id


class DummySupervisor:
    def __init__(self, chunks=("Hel", "lo"), error=None):
        self.chunks = chunks
        self.error = error
        self.engine = types.SimpleNamespace(install=self._install, installs=0)
        self.sent = []

    async def _install(self):
        self.engine.installs += 1

    async def send(self, text, channel=None, cancel=None):
        self.sent.append(text)
        full = ""
        for chunk in self.chunks:
            full += chunk
            if channel is not None:
                await channel.send(TokenEvent(full_text=full, delta=chunk))
        if self.error is not None:
            if channel is not None:
                await channel.close(error=self.error)
            raise self.error
        if channel is not None:
            await channel.close(result=AcquisitionResult(text=full))
        return SendResult(response=full, text=full)


def _client(session=None, supervisor=None):
    return ArenaClient(session or DummySession(), DummyRouter(), supervisor or DummySupervisor(), default_model="gpt-5.2")


async def test_concurrent_initialize_launches_once():
    client = _client()
    first, second = await asyncio.gather(client.initialize(), client.initialize())
    assert first == second == {"model": "gpt-5.2", "modality": "text"}
    assert client.session.launches == 1
    assert client.supervisor.engine.installs == 1
    assert client.router.navigations == ["gpt-5.2"]
    assert client.initialized


async def test_blocked_page_triggers_one_resolution():
    client = _client(session=DummySession(readiness=PageReadiness.BLOCKED))
    await client.initialize()
    assert client.session.resolutions == 1


async def test_select_model_validates_and_navigates():
    client = _client()
    with pytest.raises(UnknownModelError):
        await client.select_model("definitely-not-a-model")
    assert client.session.launches == 0

    described = await client.select_model("o3")
    assert described["model"] == "o3-2025-04-16"
    await client.select_model("gpt-5.2-search")
    assert client.router.navigations == ["o3-2025-04-16", "gpt-5.2-search"]


async def test_select_model_waits_for_the_send_lease():
    client = _client()
    await client.initialize()
    async with client.session.send_lease():
        task = asyncio.create_task(client.select_model("gpt-5.2-search"))
        await asyncio.sleep(0.01)
        assert not task.done()
    await task
    assert client.router.current_model == "gpt-5.2-search"


async def test_send_message_records_stats_and_callbacks():
    client = _client()
    deltas = []
    result = await client.send_message("hello", on_token=lambda event: deltas.append(event.delta))
    assert result.text == "Hello"
    assert deltas == ["Hel", "lo"]
    stats = client.get_stats()
    assert stats["total_messages"] == 1
    assert stats["total_errors"] == 0
    assert stats["initialized"] is True


async def test_failed_send_counts_as_error():
    error = SendFailedError("nope", partial_text="Hel", attempts=3)
    client = _client(supervisor=DummySupervisor(chunks=("Hel",), error=error))
    with pytest.raises(SendFailedError):
        await client.send_message("hello")
    assert client.get_stats()["total_errors"] == 1
    assert client.get_stats()["total_messages"] == 0


async def test_stream_message_yields_events():
    client = _client()
    events = [event async for event in client.stream_message("hello")]
    assert [e.full_text for e in events] == ["Hel", "Hello"]


async def test_stream_message_surfaces_errors_after_tokens():
    error = SendFailedError("nope", partial_text="Hel", attempts=3)
    client = _client(supervisor=DummySupervisor(chunks=("Hel",), error=error))
    received = []
    with pytest.raises(SendFailedError):
        async for event in client.stream_message("hello"):
            received.append(event.delta)
    assert received == ["Hel"]


async def test_lease_timeout_is_raised_to_the_caller():
    session = DummySession()
    client = _client(session=session)
    await client.initialize()
    lease = SendLease(session._semaphore, timeout=0.01)
    async with session.send_lease():
        with pytest.raises(LockTimeoutError):
            async with lease:
                pass


async def test_catalog_listing_and_close():
    client = _client()
    models = client.get_available_models()
    assert {"id": "gpt-5.2", "name": "GPT 5.2", "modality": "text"} in models
    await client.initialize()
    await client.close()
    assert client.session.closed == 1
    assert not client.initialized


def test_client_stats_history_is_bounded():
    stats = ClientStats(history_size=2)
    for seconds in (1.0, 2.0, 4.0):
        stats.record(seconds)
    assert stats.total_messages == 3
    assert stats.as_dict()["recent_response_times"] == [2.0, 4.0]
    assert stats.average_response_time == 3.0
