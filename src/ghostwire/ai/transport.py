"""Async transport for OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Mapping

import httpx
from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI, RateLimitError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..completion.errors import ConfigurationError, TransportError
from ..completion.types import StreamEvent

LOGGER = logging.getLogger(__name__)

__all__ = ["TransportSettings", "OpenAICompatibleTransport"]

_RETRYABLE_ERRORS = (
    APIConnectionError,
    APIStatusError,
    RateLimitError,
    httpx.TimeoutException,
)


@dataclass(slots=True)
class TransportSettings:
    """Subset of settings required to talk to a provider."""

    provider: str
    base_url: str
    api_key: str
    model: str
    temperature: float | None = 0.0
    max_tokens: int | None = None
    request_timeout: float | None = 30.0
    max_retries: int = 2
    retry_min_seconds: float = 0.25
    retry_max_seconds: float = 2.0
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False


class OpenAICompatibleTransport:
    """Streams chat completions and normalizes deltas into stream events.

    Only opening the stream is retried; once text has been delivered a failure
    is reported as :class:`TransportError` instead of replaying the request.
    """

    def __init__(self, settings: TransportSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._models_cache: List[str] | None = None
        self._models_lock = asyncio.Lock()

    @property
    def settings(self) -> TransportSettings:
        return self._settings

    async def stream(self, system_prompt: str, user_prompt: str) -> AsyncIterator[StreamEvent]:
        """Yield ``text`` and ``reasoning`` events for one chat completion."""

        payload = self._build_payload(system_prompt, user_prompt)
        LOGGER.debug(
            "Starting streamed completion via %s/%s",
            self._settings.provider,
            self._settings.model,
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        stream = await self._open_stream(payload)
        try:
            async for chunk in stream:
                for event in self._normalize_chunk(chunk):
                    yield event
        except (APIError, httpx.HTTPError) as exc:
            raise TransportError(
                f"{self._settings.provider} stream failed: {exc}",
                details={"provider": self._settings.provider, "model": self._settings.model},
            ) from exc
        finally:
            await _close_quietly(stream)

    async def list_models(self, *, force_refresh: bool = False) -> List[str]:
        """Return the model identifiers served by the endpoint."""

        if self._models_cache is not None and not force_refresh:
            return list(self._models_cache)

        async with self._models_lock:
            if self._models_cache is not None and not force_refresh:
                return list(self._models_cache)
            try:
                response = await self._client.models.list()
            except (APIError, httpx.HTTPError) as exc:
                raise TransportError(f"Unable to list models: {exc}") from exc
            models = [item.id for item in response.data if getattr(item, "id", None)]
            self._models_cache = models
            return list(models)

    async def check_model(self) -> str:
        """Verify the configured model is served; returns its identifier."""

        model = (self._settings.model or "").strip()
        if not model:
            raise ConfigurationError("Model ID is missing")
        models = await self.list_models(force_refresh=True)
        if models and model not in models:
            raise ConfigurationError(
                f"Model {model!r} is not available from {self._settings.provider}",
                details={"available": models[:20]},
            )
        LOGGER.info("Completion model %s is available via %s", model, self._settings.provider)
        return model

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        try:
            result = close()
        except Exception as exc:  # pragma: no cover - defensive guard
            LOGGER.debug("Transport close failed to start: %s", exc)
            return
        if inspect.isawaitable(result):
            await result

    def _build_client(self, settings: TransportSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key or "unused",
            base_url=settings.base_url,
            timeout=settings.request_timeout,
            max_retries=0,
            default_headers=headers,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(_RETRYABLE_ERRORS),
        )

    async def _open_stream(self, payload: Mapping[str, Any]) -> Any:
        try:
            async for attempt in self._retrying():
                with attempt:
                    return await self._client.chat.completions.create(**payload)
        except (APIError, httpx.HTTPError) as exc:
            raise TransportError(
                f"{self._settings.provider} request failed: {exc}",
                details={"provider": self._settings.provider, "model": self._settings.model},
            ) from exc
        raise TransportError("Model stream could not be opened")  # pragma: no cover - retry exhausted

    def _build_payload(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "stream": True,
        }
        if self._settings.temperature is not None:
            payload["temperature"] = self._settings.temperature
        if self._settings.max_tokens is not None:
            payload["max_tokens"] = self._settings.max_tokens
        return payload

    def _normalize_chunk(self, chunk: Any) -> list[StreamEvent]:
        choices = getattr(chunk, "choices", None) or []
        if not choices:
            return []
        delta = getattr(choices[0], "delta", None)
        if delta is None:
            return []
        events: list[StreamEvent] = []
        reasoning = getattr(delta, "reasoning_content", None) or getattr(delta, "reasoning", None)
        if isinstance(reasoning, str) and reasoning:
            events.append(StreamEvent.reasoning_chunk(reasoning))
        content = getattr(delta, "content", None)
        if isinstance(content, str) and content:
            events.append(StreamEvent.text_chunk(content))
        return events

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Completion prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Completion prompt payload:\n%s", serialized)


async def _close_quietly(stream: Any) -> None:
    close = getattr(stream, "close", None)
    if close is None:
        return
    try:
        result = close()
        if inspect.isawaitable(result):
            await result
    except Exception:  # pragma: no cover - cleanup must not mask stream results
        LOGGER.debug("Stream close failed", exc_info=True)
