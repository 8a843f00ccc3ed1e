"""Completion settings and persistence helpers."""

from __future__ import annotations

from abc import ABC, abstractmethod
import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping

from cryptography.fernet import Fernet, InvalidToken

from ..completion.cache import CompletionCache
from ..completion.context import ContextLimits
from ..completion.engine import EngineConfig
from ..completion.prompts import MultilineMode, PromptOptions

__all__ = [
    "CompletionSettings",
    "SettingsStore",
    "SecretVault",
    "FernetSecretProvider",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".ghostwire"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "GHOSTWIRE_PROVIDER": "provider",
    "GHOSTWIRE_MODEL": "model",
    "GHOSTWIRE_BASE_URL": "base_url",
    "GHOSTWIRE_API_KEY": "api_key",
    "GHOSTWIRE_MULTILINE_MODE": "multiline_mode",
    "GHOSTWIRE_REASONING_TAG": "reasoning_tag",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "GHOSTWIRE_ENABLED": "enabled",
    "GHOSTWIRE_USE_CACHE": "use_cache",
    "GHOSTWIRE_USE_IMPORTS": "use_imports",
    "GHOSTWIRE_USE_DEFINITIONS": "use_definitions",
    "GHOSTWIRE_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "GHOSTWIRE_TEMPERATURE": "temperature",
    "GHOSTWIRE_REQUEST_TIMEOUT": "request_timeout",
    "GHOSTWIRE_STREAM_IDLE_TIMEOUT": "stream_idle_timeout",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "GHOSTWIRE_DEBOUNCE_MS": "debounce_ms",
    "GHOSTWIRE_CACHE_MAX_SIZE": "cache_max_size",
    "GHOSTWIRE_CACHE_TTL_MS": "cache_ttl_ms",
    "GHOSTWIRE_MAX_TOKENS": "max_tokens",
    "GHOSTWIRE_MIN_TYPED_LENGTH": "min_typed_length",
}
_LIST_ENV_OVERRIDES: Mapping[str, str] = {
    "GHOSTWIRE_DISABLED_FILE_PATTERNS": "disabled_file_patterns",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_API_KEY_FIELD = "api_key_ciphertext"


@dataclass(slots=True)
class CompletionSettings:
    """User-configurable completion behaviour."""

    enabled: bool = True
    provider: str = "ollama"
    model: str = "qwen2.5-coder:1.5b"
    base_url: str = ""
    api_key: str = ""
    temperature: float = 0.0
    max_tokens: int | None = None
    request_timeout: float = 30.0
    max_retries: int = 2
    retry_min_seconds: float = 0.25
    retry_max_seconds: float = 2.0
    debounce_ms: int = 150
    use_cache: bool = True
    cache_max_size: int = 100
    cache_ttl_ms: int = 60_000
    cache_context_chars: int = 200
    max_preceding_lines: int = 20
    max_following_lines: int = 10
    max_imports: int = 20
    max_definitions: int = 5
    use_imports: bool = True
    use_definitions: bool = True
    min_typed_length: int = 4
    multiline_mode: str = MultilineMode.AUTO.value
    disabled_file_patterns: List[str] = field(default_factory=lambda: ["*.md", "*.txt"])
    stream_idle_timeout: float | None = 30.0
    reasoning_tag: str = "think"
    debug_logging: bool = False

    def prompt_options(self, *, language: str = "") -> PromptOptions:
        return PromptOptions(
            language=language,
            include_imports=self.use_imports,
            include_definitions=self.use_definitions,
            multiline_mode=MultilineMode.parse(self.multiline_mode),
        )

    def context_limits(self) -> ContextLimits:
        return ContextLimits(
            max_preceding_lines=self.max_preceding_lines,
            max_following_lines=self.max_following_lines,
            max_imports=self.max_imports,
            max_definitions=self.max_definitions,
        )

    def to_engine_config(self) -> EngineConfig:
        return EngineConfig(
            debounce_ms=self.debounce_ms,
            use_cache=self.use_cache,
            cache_context_chars=self.cache_context_chars,
            min_typed_length=self.min_typed_length,
            disabled_file_patterns=tuple(self.disabled_file_patterns),
            prompt_options=self.prompt_options(),
            strict=self.debug_logging,
        )

    def build_cache(self) -> CompletionCache:
        return CompletionCache(max_size=self.cache_max_size, ttl_seconds=self.cache_ttl_ms / 1000.0)


class SecretProvider(ABC):
    """Interface for encrypting and decrypting sensitive strings."""

    name: str = "unknown"

    @abstractmethod
    def encrypt(self, secret: str) -> str:
        """Return an encoded representation of ``secret`` suitable for storage."""

    @abstractmethod
    def decrypt(self, token: str) -> str:
        """Return the plaintext representation of ``token``."""


class FernetSecretProvider(SecretProvider):
    """Secret provider that uses a symmetric Fernet key stored on disk."""

    name = "fernet"

    def __init__(self, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        token = self._get_fernet().encrypt(secret.encode("utf-8"))
        return token.decode("ascii")

    def decrypt(self, token: str) -> str:
        raw = self._get_fernet().decrypt(token.encode("ascii"))
        return raw.decode("utf-8")

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


class SecretVault:
    """Encrypts and decrypts the provider API key for settings persistence."""

    def __init__(
        self,
        *,
        key_path: Path | None = None,
        provider: SecretProvider | None = None,
    ) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._provider = provider or FernetSecretProvider(self._key_path)

    @property
    def strategy(self) -> str:
        return self._provider.name

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        return f"{self._provider.name}:{self._provider.encrypt(secret)}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, payload = self._split_token(token)
        if prefix not in (None, self._provider.name):
            LOGGER.warning("Unknown secret token prefix %s; returning ciphertext.", prefix)
            return token
        try:
            return self._provider.decrypt(payload)
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    @staticmethod
    def _split_token(token: str) -> tuple[str | None, str]:
        if ":" not in token:
            return None, token
        prefix, payload = token.split(":", 1)
        return (prefix or None), payload


class SettingsStore:
    """Persistence adapter for :class:`CompletionSettings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> CompletionSettings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = CompletionSettings()
        needs_migration = False

        if payload:
            plaintext_key, needs_migration = self._decrypt_api_key(
                payload.pop(_API_KEY_FIELD, None), payload.pop("api_key", None)
            )
            data = _filter_fields(payload)
            try:
                settings = CompletionSettings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = CompletionSettings()
            if plaintext_key:
                settings = replace(settings, api_key=plaintext_key)

        version_mismatch = bool(payload) and payload.get("version") != _SETTINGS_VERSION
        if needs_migration or version_mismatch:
            try:
                self.save(settings)
            except OSError as exc:  # pragma: no cover - read-only home directories
                LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        settings = self._apply_env_overrides(settings)
        return _normalize(settings)

    def save(self, settings: CompletionSettings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s (provider=%s, model=%s)", self._path, settings.provider, settings.model)
        return self._path

    def _serialize(self, settings: CompletionSettings) -> Dict[str, Any]:
        data = asdict(settings)
        api_key = data.pop("api_key", "") or ""
        ciphertext = self._encrypt_api_key(api_key)
        if ciphertext:
            data[_API_KEY_FIELD] = ciphertext
        data["version"] = _SETTINGS_VERSION
        data["secret_backend"] = self._vault.strategy
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: CompletionSettings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> CompletionSettings:
        allowed = {item.name for item in fields(CompletionSettings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: CompletionSettings) -> CompletionSettings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        for env_name, field_name in _LIST_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = _split_patterns(value)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings

    def _encrypt_api_key(self, api_key: str) -> str | None:
        if not api_key:
            return None
        try:
            token = self._vault.encrypt(api_key)
        except OSError as exc:  # pragma: no cover - key file not writable
            LOGGER.warning("Failed to encrypt API key: %s", exc)
            return None
        LOGGER.debug("API key encrypted via %s backend", self._vault.strategy)
        return token

    def _decrypt_api_key(self, ciphertext: str | None, legacy_plaintext: str | None) -> tuple[str, bool]:
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext), False
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API key: %s", exc)
                return "", False
        if legacy_plaintext:
            LOGGER.info("Detected plaintext API key; migrating to encrypted storage.")
            return legacy_plaintext, True
        return "", False


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(CompletionSettings)} - {"api_key"}
    return {key: value for key, value in payload.items() if key in allowed}


def _split_patterns(value: Any) -> List[str]:
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value or ())
    return [str(item).strip() for item in items if str(item).strip()]


def _normalize(settings: CompletionSettings) -> CompletionSettings:
    mode = MultilineMode.parse(settings.multiline_mode)
    idle_timeout = settings.stream_idle_timeout
    if idle_timeout is not None and idle_timeout <= 0:
        idle_timeout = None
    return replace(
        settings,
        multiline_mode=mode.value,
        disabled_file_patterns=_split_patterns(settings.disabled_file_patterns),
        debounce_ms=max(0, int(settings.debounce_ms)),
        cache_max_size=max(1, int(settings.cache_max_size)),
        cache_ttl_ms=max(0, int(settings.cache_ttl_ms)),
        min_typed_length=max(0, int(settings.min_typed_length)),
        stream_idle_timeout=idle_timeout,
    )


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
