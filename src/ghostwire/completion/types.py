"""Shared value types for the completion pipeline."""

from __future__ import annotations

import asyncio
import enum
import time
import uuid
from dataclasses import dataclass, field
from typing import Literal

__all__ = [
    "StreamEventType",
    "StreamEvent",
    "RequestStatus",
    "CancellationSignal",
    "Request",
]

StreamEventType = Literal["text", "reasoning"]


@dataclass(frozen=True, slots=True)
class StreamEvent:
    """Typed chunk produced by the streaming completion client."""

    type: StreamEventType
    text: str

    @classmethod
    def text_chunk(cls, text: str) -> "StreamEvent":
        return cls(type="text", text=text)

    @classmethod
    def reasoning_chunk(cls, text: str) -> "StreamEvent":
        return cls(type="reasoning", text=text)


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({RequestStatus.CANCELLED, RequestStatus.COMPLETED, RequestStatus.FAILED})
_ALLOWED_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset(
        {RequestStatus.STREAMING, RequestStatus.CANCELLED, RequestStatus.COMPLETED, RequestStatus.FAILED}
    ),
    RequestStatus.STREAMING: frozenset(
        {RequestStatus.CANCELLED, RequestStatus.COMPLETED, RequestStatus.FAILED}
    ),
}


class CancellationSignal:
    """Level-triggered cancellation flag that can also be awaited.

    Cancelling is idempotent. The awaitable side is created lazily so the signal
    can be constructed outside a running event loop.
    """

    __slots__ = ("_cancelled", "_event", "reason")

    def __init__(self) -> None:
        self._cancelled = False
        self._event: asyncio.Event | None = None
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "") -> bool:
        if self._cancelled:
            return False
        self._cancelled = True
        self.reason = reason
        if self._event is not None:
            self._event.set()
        return True

    async def wait(self) -> None:
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        await self._event.wait()


@dataclass(slots=True)
class Request:
    """One end-to-end attempt to produce a completion."""

    document_key: str
    cursor_offset: int
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: RequestStatus = RequestStatus.PENDING
    created_at: float = field(default_factory=time.monotonic)
    signal: CancellationSignal = field(default_factory=CancellationSignal, repr=False)
    reasoning: str = field(default="", repr=False)
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.terminal

    def transition(self, status: RequestStatus) -> bool:
        """Move to ``status`` when allowed; terminal states never change."""

        allowed = _ALLOWED_TRANSITIONS.get(self.status, frozenset())
        if status not in allowed:
            return False
        self.status = status
        return True

    def cancel(self, reason: str = "") -> bool:
        """Cancel the request and abort its stream. Returns ``False`` when already terminal."""

        if self.is_terminal:
            return False
        self.signal.cancel(reason)
        return self.transition(RequestStatus.CANCELLED)
