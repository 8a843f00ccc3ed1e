"""Tests for the OpenAI-compatible streaming transport."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Iterable, cast

import httpx
import pytest
from openai import APIConnectionError, AsyncOpenAI

from ghostwire.ai.transport import OpenAICompatibleTransport, TransportSettings
from ghostwire.completion.errors import ConfigurationError, TransportError
from ghostwire.completion.types import StreamEvent


def _chunk(content: str | None = None, **delta: Any) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content, **delta))])


def _connection_error() -> APIConnectionError:
    return APIConnectionError(request=httpx.Request("POST", "http://local/v1/chat/completions"))


class _FakeStream:
    def __init__(self, chunks: Iterable[Any], *, error: BaseException | None = None):
        self._iterator = iter(list(chunks))
        self._error = error
        self.closed = False

    def __aiter__(self) -> "_FakeStream":
        return self

    async def __anext__(self) -> Any:
        try:
            return next(self._iterator)
        except StopIteration as exc:
            if self._error is not None:
                raise self._error from None
            raise StopAsyncIteration from exc

    async def close(self) -> None:
        self.closed = True


class _FakeCompletions:
    def __init__(self, chunks: Iterable[Any], *, failures: Iterable[BaseException] = (), error=None):
        self._chunks = list(chunks)
        self._failures = list(failures)
        self._error = error
        self.calls: list[dict[str, Any]] = []
        self.streams: list[_FakeStream] = []

    async def create(self, **kwargs: Any) -> _FakeStream:
        self.calls.append(kwargs)
        if self._failures:
            raise self._failures.pop(0)
        stream = _FakeStream(self._chunks, error=self._error)
        self.streams.append(stream)
        return stream


class _FakeModels:
    def __init__(self, ids: Iterable[str]):
        self._payload = [SimpleNamespace(id=item) for item in ids]
        self.calls = 0

    async def list(self) -> SimpleNamespace:
        self.calls += 1
        return SimpleNamespace(data=self._payload)


def _make_transport(
    completions: _FakeCompletions | None = None,
    *,
    models: Iterable[str] = ("qwen2.5-coder:1.5b",),
    **settings: Any,
) -> tuple[OpenAICompatibleTransport, SimpleNamespace]:
    fake = SimpleNamespace(
        chat=SimpleNamespace(completions=completions or _FakeCompletions([])),
        models=_FakeModels(models),
        closed=False,
    )

    async def _close() -> None:
        fake.closed = True

    fake.close = _close
    options = {
        "provider": "ollama",
        "base_url": "http://local/v1",
        "api_key": "ollama",
        "model": "qwen2.5-coder:1.5b",
        "retry_min_seconds": 0.0,
        "retry_max_seconds": 0.0,
        **settings,
    }
    transport = OpenAICompatibleTransport(TransportSettings(**options), client=cast(AsyncOpenAI, fake))
    return transport, fake


async def _collect(transport: OpenAICompatibleTransport) -> list[StreamEvent]:
    return [event async for event in transport.stream("system", "user")]


@pytest.mark.asyncio
async def test_stream_normalizes_content_and_reasoning_deltas() -> None:
    completions = _FakeCompletions(
        [
            _chunk(reasoning_content="think first"),
            _chunk("return "),
            SimpleNamespace(choices=[]),
            _chunk(None, reasoning="more"),
            _chunk("x"),
        ]
    )
    transport, _ = _make_transport(completions)

    events = await _collect(transport)

    assert events == [
        StreamEvent.reasoning_chunk("think first"),
        StreamEvent.text_chunk("return "),
        StreamEvent.reasoning_chunk("more"),
        StreamEvent.text_chunk("x"),
    ]
    assert completions.streams[0].closed is True


@pytest.mark.asyncio
async def test_stream_payload_carries_model_messages_and_temperature() -> None:
    completions = _FakeCompletions([_chunk("a")])
    transport, _ = _make_transport(completions, temperature=0.0)

    await _collect(transport)

    payload = completions.calls[0]
    assert payload["model"] == "qwen2.5-coder:1.5b"
    assert payload["stream"] is True
    assert payload["temperature"] == 0.0
    assert payload["messages"] == [
        {"role": "system", "content": "system"},
        {"role": "user", "content": "user"},
    ]
    assert "max_tokens" not in payload


@pytest.mark.asyncio
async def test_opening_stream_is_retried() -> None:
    completions = _FakeCompletions([_chunk("ok")], failures=[_connection_error()])
    transport, _ = _make_transport(completions, max_retries=3)

    events = await _collect(transport)

    assert events == [StreamEvent.text_chunk("ok")]
    assert len(completions.calls) == 2


@pytest.mark.asyncio
async def test_exhausted_retries_raise_transport_error() -> None:
    completions = _FakeCompletions([], failures=[_connection_error(), _connection_error()])
    transport, _ = _make_transport(completions, max_retries=2)

    with pytest.raises(TransportError, match="request failed"):
        await _collect(transport)
    assert len(completions.calls) == 2


@pytest.mark.asyncio
async def test_mid_stream_failures_are_not_retried() -> None:
    completions = _FakeCompletions([_chunk("par")], error=_connection_error())
    transport, _ = _make_transport(completions, max_retries=3)
    received: list[StreamEvent] = []

    with pytest.raises(TransportError, match="stream failed"):
        async for event in transport.stream("system", "user"):
            received.append(event)

    assert received == [StreamEvent.text_chunk("par")]
    assert len(completions.calls) == 1


@pytest.mark.asyncio
async def test_list_models_caches_results() -> None:
    transport, fake = _make_transport(models=("a", "b"))

    first = await transport.list_models()
    second = await transport.list_models()

    assert first == second == ["a", "b"]
    assert fake.models.calls == 1


@pytest.mark.asyncio
async def test_check_model_accepts_served_model() -> None:
    transport, _ = _make_transport()

    assert await transport.check_model() == "qwen2.5-coder:1.5b"


@pytest.mark.asyncio
async def test_check_model_rejects_unknown_model() -> None:
    transport, _ = _make_transport(models=("llama3",))

    with pytest.raises(ConfigurationError, match="not available"):
        await transport.check_model()


@pytest.mark.asyncio
async def test_check_model_requires_model_id() -> None:
    transport, fake = _make_transport(model="  ")

    with pytest.raises(ConfigurationError, match="Model ID is missing"):
        await transport.check_model()
    assert fake.models.calls == 0


@pytest.mark.asyncio
async def test_aclose_closes_client() -> None:
    transport, fake = _make_transport()

    await transport.aclose()

    assert fake.closed is True
