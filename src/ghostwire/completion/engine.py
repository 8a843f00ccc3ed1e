"""Request lifecycle engine for inline completions.

The engine owns the single active :class:`~ghostwire.completion.types.Request`,
the debounce timer and the :class:`~ghostwire.completion.cache.CompletionCache`.
Everything runs on one event loop; suspension points are the debounce timer,
context gathering and each stream read. Emission to the presentation sink is
guarded by comparing the request against the active request before every call,
so a superseded request can never write.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Protocol, Sequence

from ..services import telemetry as telemetry_service
from .cache import DEFAULT_CACHE_CONTEXT_CHARS, CompletionCache, build_cache_key
from .context import ContextGatherer, EditorSnapshot, SnapshotProvider, document_fingerprint
from .errors import CancelledNotAnError, CompletionError, ConfigurationError, ErrorKind, ValidationSkip
from .normalizer import strip_code_fences
from .prompts import PromptOptions, build_prompts
from .streaming import StreamingCompletionClient
from .types import Request, RequestStatus

LOGGER = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_DEBOUNCE_MS",
    "DEFAULT_DISABLED_FILE_PATTERNS",
    "DEFAULT_MIN_TYPED_LENGTH",
    "CompletionCallbacks",
    "CompletionEngine",
    "CompletionSink",
    "EngineConfig",
]

DEFAULT_DEBOUNCE_MS = 150
DEFAULT_MIN_TYPED_LENGTH = 4
DEFAULT_DISABLED_FILE_PATTERNS: tuple[str, ...] = ("*.md", "*.txt")


class CompletionSink(Protocol):
    """Presentation boundary that renders ghost text."""

    def on_preview(self, text: str) -> None:
        ...

    def on_final(self, text: str) -> None:
        ...

    def on_error(self, kind: str, message: str) -> None:
        ...


@dataclass(slots=True)
class CompletionCallbacks:
    """Adapts plain callables to the :class:`CompletionSink` protocol."""

    preview: Callable[[str], Any] | None = None
    final: Callable[[str], Any] | None = None
    error: Callable[[str, str], Any] | None = None

    def on_preview(self, text: str) -> None:
        if self.preview is not None:
            self.preview(text)

    def on_final(self, text: str) -> None:
        if self.final is not None:
            self.final(text)

    def on_error(self, kind: str, message: str) -> None:
        if self.error is not None:
            self.error(kind, message)


@dataclass(slots=True)
class EngineConfig:
    """Runtime knobs consumed by :class:`CompletionEngine`."""

    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    use_cache: bool = True
    cache_context_chars: int = DEFAULT_CACHE_CONTEXT_CHARS
    min_typed_length: int = DEFAULT_MIN_TYPED_LENGTH
    disabled_file_patterns: Sequence[str] = DEFAULT_DISABLED_FILE_PATTERNS
    prompt_options: PromptOptions = field(default_factory=PromptOptions)
    strict: bool = False


@dataclass(slots=True)
class _PendingTrigger:
    document_key: str
    cursor_offset: int
    snapshot_provider: SnapshotProvider
    fingerprint: str


class CompletionEngine:
    """Debounces triggers and drives one completion request at a time."""

    def __init__(
        self,
        client: StreamingCompletionClient | None,
        sink: CompletionSink,
        *,
        config: EngineConfig | None = None,
        cache: CompletionCache | None = None,
        context_gatherer: ContextGatherer | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._client = client
        self._sink = sink
        self._config = config or EngineConfig()
        self._cache = cache if cache is not None else CompletionCache()
        self._gatherer = context_gatherer or ContextGatherer()
        self._loop = loop
        self._enabled = True
        self._active: Request | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._timer_waiter: asyncio.Future[None] | None = None
        self._task: asyncio.Task[None] | None = None
        self._deferred_error: Exception | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def cache(self) -> CompletionCache:
        return self._cache

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = bool(value)
        if not self._enabled:
            self.cancel()
        LOGGER.info("Inline completions %s", "enabled" if self._enabled else "disabled")

    def toggle(self) -> bool:
        """Flip the enabled flag and return the new value."""

        self.enabled = not self._enabled
        return self._enabled

    @property
    def active_request(self) -> Request | None:
        return self._active

    def trigger(self, document_key: str, cursor_offset: int, snapshot_provider: SnapshotProvider) -> None:
        """Record an edit or cursor move; a request runs once the debounce window is quiet."""

        self._cancel_active("superseded")
        self._cancel_timer()
        if self._closed or not self._enabled:
            self._resolve_timer_waiter()
            return
        if self._is_disabled_for(document_key):
            LOGGER.debug("Completions disabled for %s", document_key)
            telemetry_service.emit(
                "completion.suppressed",
                {"document_key": document_key, "reason": "disabled-file"},
            )
            self._resolve_timer_waiter()
            return
        try:
            snapshot = snapshot_provider()
        except Exception as exc:
            LOGGER.exception("Snapshot provider for %s failed", document_key)
            self._resolve_timer_waiter()
            self._defer_if_strict(exc)
            return
        self._schedule(
            _PendingTrigger(
                document_key=document_key,
                cursor_offset=int(cursor_offset),
                snapshot_provider=snapshot_provider,
                fingerprint=document_fingerprint(snapshot.text),
            )
        )

    def cancel(self) -> None:
        """Dismiss any pending or running request without emitting anything."""

        self._cancel_timer()
        self._resolve_timer_waiter()
        self._cancel_active("dismissed")

    async def wait_idle(self) -> None:
        """Wait until no debounce timer is pending and no request task is running.

        In strict mode, programming errors raised by the snapshot provider, the
        debounce callback or the request task are re-raised here.
        """

        while True:
            waiter = self._timer_waiter
            if waiter is not None and not waiter.done():
                await asyncio.shield(waiter)
                continue
            deferred, self._deferred_error = self._deferred_error, None
            if deferred is not None:
                raise deferred
            task = self._task
            if task is None:
                return
            if not task.done():
                await asyncio.wait({task})
                continue
            self._task = None
            if not task.cancelled():
                error = task.exception()
                if error is not None:
                    raise error

    async def aclose(self) -> None:
        """Cancel outstanding work and release the streaming client."""

        if self._closed:
            return
        self._closed = True
        self.cancel()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if self._client is not None:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Debounce
    # ------------------------------------------------------------------
    def _schedule(self, pending: _PendingTrigger) -> None:
        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        delay = max(0, self._config.debounce_ms) / 1000.0
        self._timer = loop.call_later(delay, self._fire, pending)
        if self._timer_waiter is None or self._timer_waiter.done():
            self._timer_waiter = loop.create_future()

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def _resolve_timer_waiter(self) -> None:
        waiter, self._timer_waiter = self._timer_waiter, None
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

    def _defer_if_strict(self, exc: Exception) -> None:
        # host-facing callbacks never raise; wait_idle() reports the first error
        if self._config.strict and self._deferred_error is None:
            self._deferred_error = exc

    def _fire(self, pending: _PendingTrigger) -> None:
        self._timer = None
        try:
            self._start(pending)
        except Exception as exc:
            LOGGER.exception("Completion trigger for %s failed", pending.document_key)
            self._defer_if_strict(exc)
        finally:
            if self._timer is None:
                self._resolve_timer_waiter()

    # ------------------------------------------------------------------
    # Request lifecycle
    # ------------------------------------------------------------------
    def _start(self, pending: _PendingTrigger) -> None:
        snapshot = pending.snapshot_provider()
        fingerprint = document_fingerprint(snapshot.text)
        if fingerprint != pending.fingerprint:
            LOGGER.debug("Document %s changed during debounce; restarting", pending.document_key)
            self._schedule(replace(pending, fingerprint=fingerprint))
            return

        try:
            self._check_selection(snapshot)
        except ValidationSkip as skip:
            LOGGER.debug("Completion suppressed for %s: %s", pending.document_key, skip.reason)
            telemetry_service.emit(
                "completion.suppressed",
                {"document_key": pending.document_key, "reason": skip.reason},
            )
            return

        request = Request(document_key=pending.document_key, cursor_offset=pending.cursor_offset)
        self._active = request
        telemetry_service.emit(
            "completion.request.started",
            {
                "request_id": request.id,
                "document_key": request.document_key,
                "cursor_offset": request.cursor_offset,
            },
        )

        cache_key: str | None = None
        if self._config.use_cache:
            cache_key = build_cache_key(
                request.document_key,
                request.cursor_offset,
                snapshot.text,
                context_chars=self._config.cache_context_chars,
            )
            cached = self._cache.get(cache_key)
            if cached is not None:
                LOGGER.debug("Cache hit for request %s", request.id)
                self._emit(request, "on_final", cached)
                request.transition(RequestStatus.COMPLETED)
                telemetry_service.emit(
                    "completion.cache_hit",
                    {"request_id": request.id, "length": len(cached)},
                )
                return

        loop = self._loop or asyncio.get_running_loop()
        self._task = loop.create_task(self._run(request, snapshot, cache_key))

    async def _run(self, request: Request, snapshot: EditorSnapshot, cache_key: str | None) -> None:
        session = None
        accumulated = ""
        try:
            if self._client is None:
                raise ConfigurationError()
            options = self._config.prompt_options
            context = await self._gatherer.gather(
                snapshot,
                request.cursor_offset,
                use_imports=options.include_imports,
                use_definitions=options.include_definitions,
            )
            self._raise_if_cancelled(request)
            system_prompt, user_prompt = build_prompts(context, options)
            session = self._client.open(system_prompt, user_prompt, request.signal, request_id=request.id)
            request.transition(RequestStatus.STREAMING)

            async for event in session:
                if event.type == "reasoning":
                    request.reasoning += event.text
                    continue
                accumulated += event.text
                self._raise_if_cancelled(request)
                self._emit(request, "on_preview", strip_code_fences(accumulated))

            self._raise_if_cancelled(request)
            text = strip_code_fences(accumulated)
            if cache_key is not None and text:
                self._cache.set(cache_key, text)
            self._emit(request, "on_final", text)
            request.transition(RequestStatus.COMPLETED)
            telemetry_service.emit(
                "completion.completed",
                {
                    "request_id": request.id,
                    "length": len(text),
                    "chunks": session.chunks_received,
                    "reasoning_length": len(request.reasoning),
                },
            )
        except CancelledNotAnError as outcome:
            LOGGER.debug("Request %s stopped: %s", request.id, outcome.reason)
            self._cancel_request(request, outcome.reason or "cancelled")
        except asyncio.CancelledError:
            self._cancel_request(request, "task cancelled")
            raise
        except CompletionError as exc:
            if request.signal.cancelled:
                self._cancel_request(request, request.signal.reason)
                return
            self._fail(request, exc)
            self._emit(request, "on_error", exc.kind, exc.message)
        except Exception as exc:
            LOGGER.exception("Completion request %s failed unexpectedly", request.id)
            self._fail(
                request,
                CompletionError(
                    str(exc) or type(exc).__name__,
                    kind=ErrorKind.INTERNAL,
                    details={"exception": type(exc).__name__},
                ),
            )
            if self._config.strict:
                raise
        finally:
            if session is not None:
                await session.aclose()

    def _check_selection(self, snapshot: EditorSnapshot) -> None:
        selected = snapshot.selected_completion
        if selected is None:
            return
        if selected.typed_length < self._config.min_typed_length:
            raise ValidationSkip("selection-too-short")
        if not selected.text.startswith(selected.typed_text):
            raise ValidationSkip("selection-mismatch")

    def _is_disabled_for(self, document_key: str) -> bool:
        basename = document_key.replace("\\", "/").rsplit("/", 1)[-1]
        for pattern in self._config.disabled_file_patterns:
            pattern = pattern.strip()
            if not pattern:
                continue
            if fnmatch.fnmatch(document_key, pattern) or fnmatch.fnmatch(basename, pattern):
                return True
        return False

    def _is_current(self, request: Request) -> bool:
        active = self._active
        return active is not None and active.id == request.id and not request.signal.cancelled

    def _raise_if_cancelled(self, request: Request) -> None:
        if request.signal.cancelled or not self._is_current(request):
            raise CancelledNotAnError(request.signal.reason or "superseded")

    def _emit(self, request: Request, method: str, *args: Any) -> bool:
        if not self._is_current(request):
            return False
        callback = getattr(self._sink, method, None)
        if callback is None:
            return False
        try:
            callback(*args)
        except Exception:
            LOGGER.exception("Completion sink %s raised", method)
        return True

    def _cancel_active(self, reason: str) -> None:
        request = self._active
        if request is not None:
            self._cancel_request(request, reason)

    def _cancel_request(self, request: Request, reason: str) -> None:
        if request.cancel(reason):
            LOGGER.debug("Request %s cancelled (%s)", request.id, reason)
            telemetry_service.emit(
                "completion.cancelled",
                {"request_id": request.id, "reason": reason},
            )

    def _fail(self, request: Request, error: CompletionError) -> None:
        request.error = error.message
        request.transition(RequestStatus.FAILED)
        telemetry_service.emit("completion.failed", {"request_id": request.id, **error.to_dict()})
