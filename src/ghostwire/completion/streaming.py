"""Cancellable streaming sessions over a model transport.

A :class:`StreamingCompletionClient` turns a provider transport into a uniform
sequence of :class:`~ghostwire.completion.types.StreamEvent` values. Each call
to :meth:`StreamingCompletionClient.open` returns an independent, finite,
non-restartable :class:`CompletionSession`.

Cancellation is cooperative: every wait for the next transport chunk races the
request's :class:`~ghostwire.completion.types.CancellationSignal`. When the
signal fires the session stops reading, closes the transport iterator and ends
like an exhausted iterator. Cancellation is never reported as an error.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from typing import Any, AsyncIterator, Protocol, runtime_checkable

from .errors import CompletionError, TransportError
from .tag_matcher import DEFAULT_REASONING_TAG, ReasoningTagMatcher
from .types import CancellationSignal, StreamEvent

LOGGER = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_STREAM_IDLE_TIMEOUT",
    "ChatStreamTransport",
    "CompletionSession",
    "StreamingCompletionClient",
]

DEFAULT_STREAM_IDLE_TIMEOUT = 30.0

_EXHAUSTED = object()


@runtime_checkable
class ChatStreamTransport(Protocol):
    """Provider-specific streaming call.

    ``stream`` yields raw events: ``text`` events may still contain reasoning
    markup; ``reasoning`` events come from providers that report reasoning in a
    separate field.
    """

    def stream(self, system_prompt: str, user_prompt: str) -> AsyncIterator[StreamEvent]:
        ...


class CompletionSession:
    """Async iterator over the typed events of a single model stream."""

    def __init__(
        self,
        transport: ChatStreamTransport,
        system_prompt: str,
        user_prompt: str,
        signal: CancellationSignal,
        *,
        reasoning_tag: str | None = DEFAULT_REASONING_TAG,
        idle_timeout: float | None = DEFAULT_STREAM_IDLE_TIMEOUT,
        request_id: str | None = None,
    ) -> None:
        self._transport = transport
        self._system_prompt = system_prompt
        self._user_prompt = user_prompt
        self._signal = signal
        self._matcher = ReasoningTagMatcher(reasoning_tag) if reasoning_tag else None
        self._idle_timeout = idle_timeout if idle_timeout and idle_timeout > 0 else None
        self._request_id = request_id
        self._iterator: AsyncIterator[StreamEvent] | None = None
        self._ready: list[StreamEvent] = []
        self._finished = False
        self._started = False
        self.chunks_received = 0

    @property
    def request_id(self) -> str | None:
        return self._request_id

    @property
    def cancelled(self) -> bool:
        return self._signal.cancelled

    def __aiter__(self) -> "CompletionSession":
        return self

    async def __anext__(self) -> StreamEvent:
        while True:
            if self._signal.cancelled:
                await self.aclose()
                raise StopAsyncIteration
            if self._ready:
                return self._ready.pop(0)
            if self._finished:
                raise StopAsyncIteration
            raw = await self._next_raw()
            if raw is _EXHAUSTED:
                self._finished = True
                if not self._signal.cancelled and self._matcher is not None:
                    self._ready.extend(self._matcher.final())
                await self.aclose()
                continue
            self.chunks_received += 1
            self._ready.extend(self._classify(raw))

    async def aclose(self) -> None:
        """Release the transport iterator. Safe to call repeatedly."""

        self._finished = True
        iterator, self._iterator = self._iterator, None
        if iterator is None:
            return
        close = getattr(iterator, "aclose", None)
        if close is None:
            return
        try:
            result = close()
            if inspect.isawaitable(result):
                await result
        except Exception:  # pragma: no cover - transport cleanup must not mask results
            LOGGER.debug("Transport iterator close failed", exc_info=True)

    def _classify(self, raw: StreamEvent) -> list[StreamEvent]:
        if raw.type == "reasoning" or self._matcher is None:
            return [raw] if raw.text else []
        return self._matcher.update(raw.text)

    async def _next_raw(self) -> Any:
        if not self._started:
            self._started = True
            try:
                self._iterator = self._transport.stream(self._system_prompt, self._user_prompt).__aiter__()
            except CompletionError:
                raise
            except Exception as exc:
                raise TransportError(f"Unable to open model stream: {exc}") from exc
            LOGGER.debug("Opened model stream for request %s", self._request_id)
        iterator = self._iterator
        if iterator is None:
            return _EXHAUSTED

        read_task = asyncio.ensure_future(iterator.__anext__())
        cancel_task = asyncio.ensure_future(self._signal.wait())
        try:
            done, _pending = await asyncio.wait(
                {read_task, cancel_task},
                timeout=self._idle_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            await _discard(read_task)
            raise
        finally:
            await _discard(cancel_task)

        if read_task not in done:
            await _discard(read_task)
            if self._signal.cancelled:
                LOGGER.debug("Model stream for request %s cancelled", self._request_id)
                return _EXHAUSTED
            raise TransportError(
                f"Model stream produced no data for {self._idle_timeout:g}s",
                details={"request_id": self._request_id, "idle_timeout": self._idle_timeout},
            )

        try:
            return read_task.result()
        except StopAsyncIteration:
            return _EXHAUSTED
        except CompletionError:
            raise
        except Exception as exc:
            raise TransportError(f"Model stream failed: {exc}") from exc


class StreamingCompletionClient:
    """Opens cancellable completion sessions against a transport."""

    def __init__(
        self,
        transport: ChatStreamTransport,
        *,
        reasoning_tag: str | None = DEFAULT_REASONING_TAG,
        idle_timeout: float | None = DEFAULT_STREAM_IDLE_TIMEOUT,
    ) -> None:
        if transport is None:
            raise ValueError("transport is required")
        self._transport = transport
        self._reasoning_tag = reasoning_tag
        self._idle_timeout = idle_timeout

    @property
    def transport(self) -> ChatStreamTransport:
        return self._transport

    def open(
        self,
        system_prompt: str,
        user_prompt: str,
        signal: CancellationSignal,
        *,
        request_id: str | None = None,
    ) -> CompletionSession:
        return CompletionSession(
            self._transport,
            system_prompt,
            user_prompt,
            signal,
            reasoning_tag=self._reasoning_tag,
            idle_timeout=self._idle_timeout,
            request_id=request_id,
        )

    async def aclose(self) -> None:
        close = getattr(self._transport, "aclose", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result


async def _discard(task: "asyncio.Future[Any]") -> None:
    if task.done():
        if not task.cancelled():
            task.exception()
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError, Exception):
        await task
