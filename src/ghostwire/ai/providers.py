"""Provider registry mapping configuration to a model transport."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict

from ..completion.errors import ConfigurationError
from ..services.settings import CompletionSettings
from .transport import OpenAICompatibleTransport, TransportSettings

LOGGER = logging.getLogger(__name__)

__all__ = ["ProviderInfo", "PROVIDERS", "build_transport", "resolve_provider"]


@dataclass(frozen=True, slots=True)
class ProviderInfo:
    name: str
    default_base_url: str = ""
    default_api_key: str = ""
    requires_api_key: bool = False


PROVIDERS: Dict[str, ProviderInfo] = {
    "ollama": ProviderInfo("ollama", default_base_url="http://localhost:11434/v1", default_api_key="ollama"),
    "openai": ProviderInfo("openai", default_base_url="https://api.openai.com/v1", requires_api_key=True),
    "openai-compatible": ProviderInfo("openai-compatible"),
}


def resolve_provider(name: str) -> ProviderInfo:
    key = (name or "").strip().lower()
    info = PROVIDERS.get(key)
    if info is None:
        raise ConfigurationError(
            f"Unknown completion provider {name!r}",
            details={"known": sorted(PROVIDERS)},
        )
    return info


def build_transport(settings: CompletionSettings) -> OpenAICompatibleTransport:
    """Build the transport for ``settings.provider``.

    Raises:
        ConfigurationError: when the provider is unknown or the model, base URL
            or a required API key is missing.
    """

    info = resolve_provider(settings.provider)
    model = (settings.model or "").strip()
    if not model:
        raise ConfigurationError("Model ID is missing")
    base_url = (settings.base_url or info.default_base_url).strip()
    if not base_url:
        raise ConfigurationError(f"Provider {info.name!r} requires a base URL")
    api_key = settings.api_key or info.default_api_key
    if info.requires_api_key and not api_key:
        raise ConfigurationError(f"Provider {info.name!r} requires an API key")

    LOGGER.debug("Building %s transport for model %s at %s", info.name, model, base_url)
    return OpenAICompatibleTransport(
        TransportSettings(
            provider=info.name,
            base_url=base_url,
            api_key=api_key,
            model=model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            request_timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
            debug_logging=settings.debug_logging,
        )
    )
