"""Shared test helpers and stub classes.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable

from ghostwire.completion.context import EditorSnapshot
from ghostwire.completion.types import StreamEvent


class FakeTransport:
    """Transport that replays scripted chunks for every stream call.

    Strings become ``text`` events; :class:`StreamEvent` instances pass through.
    ``error`` is raised after the chunks; ``hang`` blocks forever afterwards.
    """

    def __init__(
        self,
        chunks: Iterable[str | StreamEvent] = (),
        *,
        error: BaseException | None = None,
        hang: bool = False,
        delay: float = 0.0,
    ) -> None:
        self.chunks = list(chunks)
        self.error = error
        self.hang = hang
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.streams_closed = 0
        self.aclosed = False

    async def stream(self, system_prompt: str, user_prompt: str):
        self.calls.append((system_prompt, user_prompt))
        try:
            for chunk in self.chunks:
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield chunk if isinstance(chunk, StreamEvent) else StreamEvent.text_chunk(chunk)
            if self.error is not None:
                raise self.error
            if self.hang:
                await asyncio.Event().wait()
        finally:
            self.streams_closed += 1

    async def aclose(self) -> None:
        self.aclosed = True


class QueueTransport:
    """Transport whose streams are fed by the test, one queue per stream call.

    Push strings into ``queues[i]`` to deliver chunks to the i-th stream; push
    ``None`` to end it.
    """

    def __init__(self, streams: int = 1) -> None:
        self.queues: list[asyncio.Queue[str | None]] = [asyncio.Queue() for _ in range(streams)]
        self.calls: list[tuple[str, str]] = []
        self.closed: list[int] = []

    async def stream(self, system_prompt: str, user_prompt: str):
        index = len(self.calls)
        self.calls.append((system_prompt, user_prompt))
        queue = self.queues[index]
        try:
            while True:
                item = await queue.get()
                if item is None:
                    return
                yield StreamEvent.text_chunk(item)
        finally:
            self.closed.append(index)


class RecordingSink:
    """Presentation sink that records every callback in order."""

    def __init__(self) -> None:
        self.events: list[tuple[Any, ...]] = []

    def on_preview(self, text: str) -> None:
        self.events.append(("preview", text))

    def on_final(self, text: str) -> None:
        self.events.append(("final", text))

    def on_error(self, kind: str, message: str) -> None:
        self.events.append(("error", kind, message))

    @property
    def previews(self) -> list[str]:
        return [event[1] for event in self.events if event[0] == "preview"]

    @property
    def finals(self) -> list[str]:
        return [event[1] for event in self.events if event[0] == "final"]

    @property
    def errors(self) -> list[tuple[str, str]]:
        return [(event[1], event[2]) for event in self.events if event[0] == "error"]


class MutableDocument:
    """Snapshot provider over text the test can edit between calls."""

    def __init__(self, text: str, *, language: str = "python", path: str = "/work/demo.py") -> None:
        self.text = text
        self.language = language
        self.path = path
        self.selected_completion = None
        self.reads = 0

    def __call__(self) -> EditorSnapshot:
        self.reads += 1
        return EditorSnapshot(
            text=self.text,
            language=self.language,
            path=self.path,
            selected_completion=self.selected_completion,
        )


async def wait_until(predicate: Callable[[], bool], *, timeout: float = 1.0) -> None:
    """Poll ``predicate`` on the running loop until it holds."""

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout)
