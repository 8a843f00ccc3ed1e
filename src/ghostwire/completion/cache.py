"""Bounded, time-limited cache of finished completions."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict

from ..services import telemetry as telemetry_service

__all__ = [
    "DEFAULT_CACHE_CONTEXT_CHARS",
    "DEFAULT_CACHE_MAX_SIZE",
    "DEFAULT_CACHE_TTL_SECONDS",
    "CompletionCache",
    "build_cache_key",
]

DEFAULT_CACHE_MAX_SIZE = 100
DEFAULT_CACHE_TTL_SECONDS = 60.0
DEFAULT_CACHE_CONTEXT_CHARS = 200


def build_cache_key(
    document_key: str,
    cursor_offset: int,
    text: str,
    *,
    context_chars: int = DEFAULT_CACHE_CONTEXT_CHARS,
) -> str:
    """Return the cache key for a cursor position.

    The key combines the document identity, the numeric offset and the last
    ``context_chars`` characters before the cursor, so edits far above the cursor
    do not change it.
    """

    offset = max(0, min(int(cursor_offset), len(text)))
    start = max(0, offset - max(0, int(context_chars)))
    return f"{document_key}:{offset}:{text[start:offset]}"


@dataclass(slots=True)
class _CacheEntry:
    key: str
    value: str
    created_at: float
    touched_at: float


class CompletionCache:
    """LRU cache with a time-to-live, owned by the completion engine.

    Expired entries are treated as absent and evicted lazily on lookup. Reads
    refresh recency; inserting into a full cache evicts the least recently
    touched entry first.
    """

    def __init__(
        self,
        *,
        max_size: int = DEFAULT_CACHE_MAX_SIZE,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_size = max(1, int(max_size))
        self._ttl_seconds = max(0.0, float(ttl_seconds))
        self._clock = clock
        self._entries: Dict[str, _CacheEntry] = {}

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = self._clock()
        if now - entry.created_at > self._ttl_seconds:
            self._evict(key, reason="expired")
            return None
        entry.touched_at = now
        return entry.value

    def set(self, key: str, text: str) -> None:
        now = self._clock()
        if key not in self._entries:
            while len(self._entries) >= self._max_size:
                oldest = min(self._entries.values(), key=lambda item: item.touched_at)
                self._evict(oldest.key, reason="capacity")
        self._entries[key] = _CacheEntry(key=key, value=text, created_at=now, touched_at=now)

    def clear(self) -> None:
        self._entries.clear()

    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def _evict(self, key: str, *, reason: str) -> None:
        if self._entries.pop(key, None) is None:
            return
        telemetry_service.emit(
            "completion.cache_evicted",
            {"reason": reason, "size": len(self._entries)},
        )
