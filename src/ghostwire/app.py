"""Command line entry point that completes a file at a cursor offset."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.providers import build_transport
from .completion.context import EditorSnapshot
from .completion.engine import CompletionEngine
from .completion.errors import CompletionError
from .completion.preview import GhostTextPreview
from .completion.streaming import StreamingCompletionClient
from .services.settings import CompletionSettings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)

_LANGUAGE_BY_SUFFIX: Mapping[str, str] = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascriptreact",
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".rs": "rust",
    ".go": "go",
    ".java": "java",
    ".cs": "csharp",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".rb": "ruby",
}


def configure_logging(
    settings: CompletionSettings | None = None,
    *,
    debug: bool | None = None,
    force: bool = False,
) -> logging_utils.LoggingPlan:
    """Configure logging from ``settings`` plus the CLI and environment debug switches."""

    plan = logging_utils.setup_logging(settings, debug=debug, force=force)
    _LOGGER.debug(
        "Logging configured (level=%s, console=%s, file=%s)",
        logging.getLevelName(plan.level),
        plan.console,
        plan.log_path,
    )
    return plan


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> CompletionSettings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return CompletionSettings()


def build_engine(settings: CompletionSettings, sink: Any) -> CompletionEngine:
    """Wire transport, streaming client, cache and engine from ``settings``."""

    transport = build_transport(settings)
    client = StreamingCompletionClient(
        transport,
        reasoning_tag=settings.reasoning_tag or None,
        idle_timeout=settings.stream_idle_timeout,
    )
    engine = CompletionEngine(
        client,
        sink,
        config=settings.to_engine_config(),
        cache=settings.build_cache(),
    )
    engine.enabled = settings.enabled
    return engine


async def complete_file(
    path: Path,
    offset: int | None,
    settings: CompletionSettings,
    *,
    language: str = "",
    preview_stream: TextIO | None = None,
) -> tuple[str, tuple[str, str] | None]:
    """Run one completion for ``path`` and return ``(text, error)``."""

    text = path.read_text(encoding="utf-8")
    cursor = len(text) if offset is None else max(0, min(offset, len(text)))
    snapshot = EditorSnapshot(
        text=text,
        language=language or _LANGUAGE_BY_SUFFIX.get(path.suffix.lower(), ""),
        path=str(path),
    )
    destination = preview_stream

    def _render(visible: str) -> None:
        if destination is None or not visible:
            return
        # only the last line fits on a single status line
        destination.write("\r\x1b[2K" + visible.splitlines()[-1])
        destination.flush()

    preview = GhostTextPreview(renderer=_render)
    engine = build_engine(settings, preview)
    try:
        engine.trigger(str(path), cursor, lambda: snapshot)
        await engine.wait_idle()
    finally:
        await engine.aclose()
    if destination is not None:
        destination.write("\n")
    return preview.current_text, preview.last_error


async def check_model(settings: CompletionSettings) -> str:
    """Confirm the configured model is served by the provider."""

    transport = build_transport(settings)
    try:
        return await transport.check_model()
    finally:
        await transport.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `ghostwire` console script."""

    args = _parse_cli_args(argv)
    debug = logging_utils.debug_requested(debug=args.debug)

    settings_path = args.settings_path or os.environ.get("GHOSTWIRE_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    store = SettingsStore(resolved_path)
    try:
        overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2
    if args.provider:
        overrides["provider"] = args.provider
    if args.model:
        overrides["model"] = args.model
    if args.no_cache:
        overrides["use_cache"] = False
    if debug:
        overrides["debug_logging"] = True

    settings = load_settings(resolved_path, store=store, overrides=overrides or None)
    configure_logging(settings)

    if args.dump_settings:
        _dump_settings(settings, store, overrides=overrides)
        return 0

    try:
        if args.check_model:
            model = asyncio.run(check_model(settings))
            print(f"Model {model} is available via {settings.provider}")
            return 0
        if args.file is None:
            print("A file to complete is required (see --help).", file=sys.stderr)
            return 2
        text, error = asyncio.run(
            complete_file(
                Path(args.file).expanduser(),
                args.offset,
                settings,
                language=args.language or "",
                preview_stream=None if args.quiet else sys.stderr,
            )
        )
    except CompletionError as exc:
        print(f"{exc.message}", file=sys.stderr)
        if exc.suggestion:
            print(exc.suggestion, file=sys.stderr)
        return 1
    except OSError as exc:
        print(f"Unable to read {args.file}: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")
        return 130

    if error is not None:
        kind, message = error
        print(f"Completion failed ({kind}): {message}", file=sys.stderr)
        return 1
    sys.stdout.write(text)
    if text and not text.endswith("\n"):
        sys.stdout.write("\n")
    return 0


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="ghostwire",
        description="Stream an inline code completion for a file at a cursor offset.",
    )
    parser.add_argument("file", nargs="?", help="File to complete.")
    parser.add_argument(
        "--offset",
        type=int,
        default=None,
        help="Cursor offset in characters (defaults to the end of the file).",
    )
    parser.add_argument("--language", help="Language id used in the prompt (guessed from the suffix).")
    parser.add_argument("--provider", help="Provider id: ollama, openai or openai-compatible.")
    parser.add_argument("--model", help="Model id to request.")
    parser.add_argument("--no-cache", action="store_true", help="Bypass the completion cache.")
    parser.add_argument("--quiet", action="store_true", help="Do not print streaming previews to stderr.")
    parser.add_argument(
        "--check-model",
        action="store_true",
        help="Verify the configured model is served by the provider and exit.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.ghostwire/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings (repeatable).",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = CompletionSettings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(CompletionSettings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        overrides[key] = _coerce_value(type_hints.get(key, fields[key].type), raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if normalized.lower() in {"none", "null"} and _is_optional(annotation):
        return None
    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is list:
        if normalized.startswith("["):
            try:
                return json.loads(normalized)
            except json.JSONDecodeError as exc:
                raise ValueError("List overrides must be valid JSON arrays") from exc
        return [item.strip() for item in normalized.split(",") if item.strip()]
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return _resolve_annotation(args[0])


def _is_optional(annotation: Any) -> bool:
    return type(None) in get_args(annotation)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: CompletionSettings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_key"] = redact_secret(payload.get("api_key", "") or "")
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.strategy,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("GHOSTWIRE_"))


if __name__ == "__main__":  # pragma: no cover - manual invocation
    raise SystemExit(main())
