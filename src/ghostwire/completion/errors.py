"""Error and outcome types for the inline completion pipeline.

Failures that should reach the presentation layer derive from
:class:`CompletionError`. Non-error outcomes (a cancelled request, a suppressed
trigger) derive from :class:`CompletionOutcome` so that ``except
CompletionError`` never swallows them by accident.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "ErrorKind",
    "CompletionError",
    "TransportError",
    "ConfigurationError",
    "CompletionOutcome",
    "CancelledNotAnError",
    "ValidationSkip",
]


class ErrorKind:
    """Constants for the ``kind`` reported through ``on_error``."""

    TRANSPORT = "transport"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"


# -----------------------------------------------------------------------------
# Errors surfaced to the host
# -----------------------------------------------------------------------------

@dataclass
class CompletionError(Exception):
    """Base exception for failures reported to the presentation boundary.

    Attributes:
        message: Human-readable, single-line description.
        kind: Machine-readable category (see :class:`ErrorKind`).
        details: Additional structured information for logs and telemetry.
        suggestion: Optional recovery hint for status indicators.
    """

    message: str
    kind: str = field(default=ErrorKind.INTERNAL)
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for telemetry payloads."""
        result: dict[str, Any] = {
            "kind": self.kind,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"


@dataclass
class TransportError(CompletionError):
    """The provider was unreachable or failed mid-stream."""

    message: str = field(default="The model provider request failed")
    kind: str = field(default=ErrorKind.TRANSPORT)
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Check that the model server is running and reachable")


@dataclass
class ConfigurationError(CompletionError):
    """No usable provider or model is configured."""

    message: str = field(default="No completion model is configured")
    kind: str = field(default=ErrorKind.CONFIGURATION)
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Set a provider and model in the completion settings")


# -----------------------------------------------------------------------------
# Outcomes that are not errors
# -----------------------------------------------------------------------------

class CompletionOutcome(Exception):
    """Base class for control-flow outcomes that must never reach ``on_error``."""

    def __init__(self, reason: str = "") -> None:
        super().__init__(reason)
        self.reason = reason


class CancelledNotAnError(CompletionOutcome):
    """The request was superseded or cancelled by the host."""


class ValidationSkip(CompletionOutcome):
    """The trigger was suppressed by a guard (e.g. a short suggestion-list selection)."""
