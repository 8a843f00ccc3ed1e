"""In-process telemetry events for completion lifecycle instrumentation."""

from __future__ import annotations

import logging
from collections import deque
from threading import Lock
from typing import Any, Callable, Mapping

LOGGER = logging.getLogger(__name__)

_EVENT_LISTENERS: dict[str, list[Callable[[dict[str, Any]], None]]] = {}

__all__ = [
    "emit",
    "register_event_listener",
    "unregister_event_listener",
    "clear_event_listeners",
    "EventRecorder",
]


def register_event_listener(event_name: str, callback: Callable[[dict[str, Any]], None]) -> None:
    """Register a callback invoked whenever :func:`emit` fires *event_name*."""

    if not event_name or callback is None:
        return
    listeners = _EVENT_LISTENERS.setdefault(event_name, [])
    if callback not in listeners:
        listeners.append(callback)


def unregister_event_listener(event_name: str, callback: Callable[[dict[str, Any]], None]) -> None:
    listeners = _EVENT_LISTENERS.get(event_name)
    if not listeners:
        return
    if callback in listeners:
        listeners.remove(callback)
    if not listeners:
        _EVENT_LISTENERS.pop(event_name, None)


def clear_event_listeners() -> None:
    _EVENT_LISTENERS.clear()


def emit(event_name: str, payload: Mapping[str, Any] | None = None) -> None:
    """Broadcast a structured telemetry event to in-process listeners."""

    if not event_name:
        return
    event_payload = {"event": event_name}
    if payload:
        event_payload.update(payload)
    listeners = list(_EVENT_LISTENERS.get(event_name, ()))
    for callback in listeners:
        try:
            callback(dict(event_payload))
        except Exception:  # pragma: no cover - listeners must not break emitters
            LOGGER.debug("Telemetry listener %s failed", callback, exc_info=True)
    LOGGER.debug("Telemetry emit %s: %s", event_name, event_payload)


class EventRecorder:
    """Ring buffer that records selected events, for status widgets and tests."""

    def __init__(self, *event_names: str, capacity: int = 200) -> None:
        self._capacity = max(10, capacity)
        self._buffer: deque[dict[str, Any]] = deque(maxlen=self._capacity)
        self._lock = Lock()
        self._event_names = tuple(event_names)
        for name in self._event_names:
            register_event_listener(name, self.record)

    @property
    def capacity(self) -> int:
        return self._capacity

    def record(self, payload: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.append(payload)

    def names(self) -> list[str]:
        return [str(item.get("event")) for item in self.tail()]

    def tail(self, limit: int | None = None) -> list[dict[str, Any]]:
        with self._lock:
            events = list(self._buffer)
        if limit is None or limit >= len(events):
            return events
        return events[-limit:]

    def close(self) -> None:
        for name in self._event_names:
            unregister_event_listener(name, self.record)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)
