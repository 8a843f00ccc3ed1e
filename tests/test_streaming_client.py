"""Tests for cancellable completion sessions."""

from __future__ import annotations

import asyncio

import pytest

from ghostwire.completion.errors import TransportError
from ghostwire.completion.streaming import StreamingCompletionClient
from ghostwire.completion.types import CancellationSignal, StreamEvent

from tests.helpers import FakeTransport, QueueTransport


async def _collect(session) -> list[StreamEvent]:
    return [event async for event in session]


@pytest.mark.asyncio
async def test_session_yields_text_events_in_order() -> None:
    transport = FakeTransport(["def ", "main", "():"])
    client = StreamingCompletionClient(transport)

    session = client.open("sys", "user", CancellationSignal(), request_id="r1")
    events = await _collect(session)

    assert [event.text for event in events] == ["def ", "main", "():"]
    assert all(event.type == "text" for event in events)
    assert session.chunks_received == 3
    assert transport.calls == [("sys", "user")]
    assert transport.streams_closed == 1


@pytest.mark.asyncio
async def test_reasoning_tags_are_separated_across_chunk_boundaries() -> None:
    transport = FakeTransport(["<thi", "nk>weigh options</th", "ink>return x"])
    client = StreamingCompletionClient(transport)

    events = await _collect(client.open("s", "u", CancellationSignal()))

    reasoning = "".join(event.text for event in events if event.type == "reasoning")
    text = "".join(event.text for event in events if event.type == "text")
    assert reasoning == "weigh options"
    assert text == "return x"


@pytest.mark.asyncio
async def test_provider_reasoning_events_pass_through() -> None:
    transport = FakeTransport([StreamEvent.reasoning_chunk("thinking"), "done"])
    client = StreamingCompletionClient(transport)

    events = await _collect(client.open("s", "u", CancellationSignal()))

    assert events == [StreamEvent.reasoning_chunk("thinking"), StreamEvent.text_chunk("done")]


@pytest.mark.asyncio
async def test_held_back_partial_marker_is_flushed_at_end() -> None:
    transport = FakeTransport(["a <th"])
    client = StreamingCompletionClient(transport)

    events = await _collect(client.open("s", "u", CancellationSignal()))

    assert "".join(event.text for event in events) == "a <th"
    assert all(event.type == "text" for event in events)


@pytest.mark.asyncio
async def test_reasoning_tag_can_be_disabled() -> None:
    transport = FakeTransport(["<think>kept</think>"])
    client = StreamingCompletionClient(transport, reasoning_tag=None)

    events = await _collect(client.open("s", "u", CancellationSignal()))

    assert events == [StreamEvent.text_chunk("<think>kept</think>")]


@pytest.mark.asyncio
async def test_cancel_before_first_read_never_opens_transport() -> None:
    transport = FakeTransport(["x"])
    client = StreamingCompletionClient(transport)
    signal = CancellationSignal()
    signal.cancel("superseded")

    events = await _collect(client.open("s", "u", signal))

    assert events == []
    assert transport.calls == []


@pytest.mark.asyncio
async def test_cancel_mid_stream_ends_session_and_closes_transport() -> None:
    transport = QueueTransport()
    client = StreamingCompletionClient(transport)
    signal = CancellationSignal()
    session = client.open("s", "u", signal)

    transport.queues[0].put_nowait("first")
    first = await session.__anext__()
    assert first.text == "first"

    pending = asyncio.ensure_future(session.__anext__())
    await asyncio.sleep(0)
    signal.cancel("dismissed")
    with pytest.raises(StopAsyncIteration):
        await pending

    assert transport.closed == [0]
    with pytest.raises(StopAsyncIteration):
        await session.__anext__()


@pytest.mark.asyncio
async def test_idle_timeout_raises_transport_error() -> None:
    transport = FakeTransport([], hang=True)
    client = StreamingCompletionClient(transport, idle_timeout=0.05)

    with pytest.raises(TransportError, match="no data"):
        await _collect(client.open("s", "u", CancellationSignal()))
    assert transport.streams_closed == 1


@pytest.mark.asyncio
async def test_transport_exceptions_are_wrapped() -> None:
    transport = FakeTransport(["ok"], error=ConnectionResetError("peer reset"))
    client = StreamingCompletionClient(transport)
    session = client.open("s", "u", CancellationSignal())

    assert (await session.__anext__()).text == "ok"
    with pytest.raises(TransportError, match="peer reset"):
        await session.__anext__()


@pytest.mark.asyncio
async def test_sessions_are_independent() -> None:
    transport = FakeTransport(["a", "b"])
    client = StreamingCompletionClient(transport)

    first = await _collect(client.open("s", "u", CancellationSignal()))
    second = await _collect(client.open("s", "u", CancellationSignal()))

    assert first == second == [StreamEvent.text_chunk("a"), StreamEvent.text_chunk("b")]
    assert len(transport.calls) == 2


@pytest.mark.asyncio
async def test_client_aclose_closes_transport() -> None:
    transport = FakeTransport()
    client = StreamingCompletionClient(transport)

    await client.aclose()

    assert transport.aclosed is True
