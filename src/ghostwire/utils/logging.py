"""Logging configuration driven by the completion settings.

Verbose output is requested by ``--debug``, the ``GHOSTWIRE_DEBUG`` environment
variable or ``debug_logging`` in the persisted settings. A verbose run logs at
DEBUG to the rotating log file and mirrors records to stderr; a normal run only
keeps warnings, in the file.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - import only needed for annotations
    from ..services.settings import CompletionSettings

__all__ = [
    "DEBUG_ENV_VAR",
    "LOG_DIR_ENV_VAR",
    "LoggingPlan",
    "debug_requested",
    "plan_logging",
    "setup_logging",
    "reset_logging",
    "get_log_path",
]

DEBUG_ENV_VAR = "GHOSTWIRE_DEBUG"
LOG_DIR_ENV_VAR = "GHOSTWIRE_LOG_DIR"
LOG_FILE_NAME = "ghostwire.log"
DEFAULT_LOG_DIR = Path.home() / ".ghostwire" / "logs"

_RECORD_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
_LIBRARY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_TRUE_VALUES = frozenset({"1", "true", "yes", "on", "debug"})
_OWNED_MARKER = "_ghostwire_owned"


@dataclass(frozen=True, slots=True)
class LoggingPlan:
    """Resolved logging choices for one process."""

    level: int
    console: bool
    log_path: Path
    max_bytes: int = 1_000_000
    backup_count: int = 3

    @property
    def verbose(self) -> bool:
        return self.level <= logging.DEBUG


_active_plan: LoggingPlan | None = None


def debug_requested(settings: "CompletionSettings | None" = None, *, debug: bool | None = None) -> bool:
    """Return ``True`` when debug output is requested from any source."""

    if debug:
        return True
    if os.environ.get(DEBUG_ENV_VAR, "").strip().lower() in _TRUE_VALUES:
        return True
    return bool(getattr(settings, "debug_logging", False))


def plan_logging(
    settings: "CompletionSettings | None" = None,
    *,
    debug: bool | None = None,
    log_dir: Path | str | None = None,
) -> LoggingPlan:
    verbose = debug_requested(settings, debug=debug)
    directory = Path(log_dir or os.environ.get(LOG_DIR_ENV_VAR) or DEFAULT_LOG_DIR).expanduser()
    return LoggingPlan(
        level=logging.DEBUG if verbose else logging.WARNING,
        console=verbose,
        log_path=directory / LOG_FILE_NAME,
    )


def setup_logging(
    settings: "CompletionSettings | None" = None,
    *,
    debug: bool | None = None,
    log_dir: Path | str | None = None,
    force: bool = False,
) -> LoggingPlan:
    """Install the handlers described by :func:`plan_logging` on the root logger.

    Calling it again with the same inputs is a no-op. A different plan (for
    example after settings were reloaded with ``debug_logging`` switched on)
    replaces the handlers installed earlier. Handlers owned by the host or by a
    test runner are left alone.
    """

    global _active_plan
    plan = plan_logging(settings, debug=debug, log_dir=log_dir)
    if plan == _active_plan and not force:
        return plan

    root = logging.getLogger()
    _drop_owned_handlers(root)
    plan.log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(_RECORD_FORMAT)
    handlers: list[logging.Handler] = [
        RotatingFileHandler(
            plan.log_path,
            maxBytes=plan.max_bytes,
            backupCount=plan.backup_count,
            encoding="utf-8",
        )
    ]
    if plan.console:
        handlers.append(logging.StreamHandler(sys.stderr))
    for handler in handlers:
        handler.setLevel(plan.level)
        handler.setFormatter(formatter)
        setattr(handler, _OWNED_MARKER, True)
        root.addHandler(handler)
    root.setLevel(plan.level)

    # HTTP and SDK chatter stays at WARNING even in verbose runs
    library_level = max(plan.level, logging.WARNING)
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    _active_plan = plan
    return plan


def reset_logging() -> None:
    """Remove and close every handler installed by :func:`setup_logging`."""

    global _active_plan
    _drop_owned_handlers(logging.getLogger())
    _active_plan = None


def get_log_path() -> Path | None:
    return _active_plan.log_path if _active_plan is not None else None


def _drop_owned_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, _OWNED_MARKER, False):
            logger.removeHandler(handler)
            handler.close()
