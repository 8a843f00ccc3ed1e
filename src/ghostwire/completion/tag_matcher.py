"""Incremental separation of reasoning spans from visible completion text.

Some models wrap their chain of thought in markup such as ``<think>...</think>``
inside the ordinary content stream. :class:`ReasoningTagMatcher` is a two-state
machine (``outside-tag`` / ``inside-tag``) fed one raw chunk at a time. Text that
might be the beginning of a marker is held back until the next chunk decides it,
so markers split across chunk boundaries are classified correctly.
"""

from __future__ import annotations

from .types import StreamEvent, StreamEventType

__all__ = ["DEFAULT_REASONING_TAG", "ReasoningTagMatcher"]

DEFAULT_REASONING_TAG = "think"


class ReasoningTagMatcher:
    OUTSIDE = "outside-tag"
    INSIDE = "inside-tag"

    def __init__(self, tag: str = DEFAULT_REASONING_TAG) -> None:
        name = (tag or "").strip().strip("<>/")
        if not name:
            raise ValueError("tag must be a non-empty element name")
        self._open_marker = f"<{name}>"
        self._close_marker = f"</{name}>"
        self._state = self.OUTSIDE
        self._pending = ""

    @property
    def state(self) -> str:
        return self._state

    def update(self, chunk: str) -> list[StreamEvent]:
        """Consume ``chunk`` and return the events that are now unambiguous."""

        if not chunk:
            return []
        self._pending += chunk
        events: list[StreamEvent] = []
        while self._pending:
            marker = self._close_marker if self._state == self.INSIDE else self._open_marker
            index = self._pending.find(marker)
            if index >= 0:
                self._append(events, self._pending[:index])
                self._pending = self._pending[index + len(marker) :]
                self._state = self.OUTSIDE if self._state == self.INSIDE else self.INSIDE
                continue
            held = _partial_marker_length(self._pending, marker)
            ready = self._pending[: len(self._pending) - held]
            self._append(events, ready)
            self._pending = self._pending[len(ready) :]
            break
        return events

    def final(self) -> list[StreamEvent]:
        """Flush held-back text at end of stream and reset the machine."""

        events: list[StreamEvent] = []
        self._append(events, self._pending)
        self._pending = ""
        self._state = self.OUTSIDE
        return events

    def _append(self, events: list[StreamEvent], text: str) -> None:
        if not text:
            return
        kind: StreamEventType = "reasoning" if self._state == self.INSIDE else "text"
        if events and events[-1].type == kind:
            events[-1] = StreamEvent(type=kind, text=events[-1].text + text)
            return
        events.append(StreamEvent(type=kind, text=text))


def _partial_marker_length(text: str, marker: str) -> int:
    """Length of the longest suffix of ``text`` that is a proper prefix of ``marker``."""

    for size in range(min(len(text), len(marker) - 1), 0, -1):
        if marker.startswith(text[-size:]):
            return size
    return 0
