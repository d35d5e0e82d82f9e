import asyncio

import pytest

from arena_pilot.stream.channel import CancellationToken, PollScheduler, TokenChannel
from arena_pilot.stream.sources import parse_stream_chunk, unescape_token
from arena_pilot.stream.views import (
    AcquisitionOutcome,
    AcquisitionResult,
    SourceLink,
    StreamState,
    TokenEvent,
)


def test_parse_stream_chunk_decodes_tokens():
    chunk = 'f:{"messageId":"x"}\na0:"Hello"\na0:", \\"world\\"\\n"\nad:{"finishReason":"stop"}\n'
    assert parse_stream_chunk(chunk) == ["Hello", ', "world"\n']


def test_parse_stream_chunk_ignores_other_records():
    assert parse_stream_chunk('e:{"finishReason":"stop"}') == []


def test_unescape_token():
    assert unescape_token(r"a\tb\\c") == "a\tb\\c"


def test_stream_state_only_grows():
    state = StreamState()
    assert state.advance("Hel") == "Hel"
    assert state.advance("Hello") == "lo"
    assert state.advance("He") == ""
    assert state.text == "Hello"
    assert state.advance("Hello") == ""
    state.reset()
    assert state.text == ""
    assert state.advance("x") == "x"


def test_response_appends_image_and_sources():
    result = AcquisitionResult(
        text="Answer",
        image_url="https://img.test/a.png",
        sources=[SourceLink(title="Doc", url="https://doc.test"), SourceLink(title="Ref", url="https://ref.test")],
    )
    assert result.response == (
        "Answer\n\n![Generated Image](https://img.test/a.png)"
        "\n\n---\n\n**Sources:**\n1. [Doc](https://doc.test)\n2. [Ref](https://ref.test)\n"
    )
    assert not result.is_partial
    assert AcquisitionResult(text="x", outcome=AcquisitionOutcome.STALLED).is_partial


async def test_token_channel_iterates_until_closed():
    seen = []
    channel = TokenChannel(on_token=lambda event: seen.append(event.delta))
    await channel.send(TokenEvent(full_text="a", delta="a"))
    await channel.send(TokenEvent(full_text="ab", delta="b"))
    await channel.close(result=AcquisitionResult(text="ab"))
    await channel.send(TokenEvent(full_text="abc", delta="c"))

    deltas = [event.delta async for event in channel]
    assert deltas == ["a", "b"]
    assert seen == ["a", "b"]
    assert channel.result.text == "ab"


async def test_token_channel_raises_close_error():
    channel = TokenChannel()
    await channel.send(TokenEvent(full_text="a", delta="a"))
    await channel.close(error=ValueError("boom"))
    received = []
    with pytest.raises(ValueError):
        async for event in channel:
            received.append(event)
    assert len(received) == 1


async def test_token_channel_survives_failing_callback():
    async def bad_callback(_event):
        raise RuntimeError("consumer bug")

    channel = TokenChannel(on_token=bad_callback)
    await channel.send(TokenEvent(full_text="a", delta="a"))
    await channel.close()
    assert [e.delta async for e in channel] == ["a"]


async def test_token_channel_restart_discards_previous_attempt():
    channel = TokenChannel()
    await channel.restart()
    await channel.send(TokenEvent(full_text="stale", delta="stale"))
    await channel.restart()
    assert channel.text == ""
    await channel.send(TokenEvent(full_text="fresh", delta="fresh"))
    await channel.close()

    events = [event async for event in channel]
    assert [(e.delta, e.restart) for e in events] == [("stale", False), ("", True), ("fresh", False)]
    assert channel.text == "fresh"


async def test_poll_scheduler_stops_on_cancel():
    token = CancellationToken()
    scheduler = PollScheduler(0.001, token)
    ticks = []
    async for tick in scheduler.ticks():
        ticks.append(tick)
        if tick == 3:
            token.cancel("enough")
    assert ticks == [1, 2, 3]
    assert token.reason == "enough"


async def test_cancel_wakes_sleeping_scheduler():
    scheduler = PollScheduler(10.0)

    async def cancel_soon():
        await asyncio.sleep(0.01)
        scheduler.cancel()

    task = asyncio.create_task(cancel_soon())
    assert await asyncio.wait_for(scheduler.sleep(), timeout=1.0) is False
    await task
