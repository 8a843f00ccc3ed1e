"""Inline completion request lifecycle: debounce, cache, streaming and preview."""

from .cache import CompletionCache, build_cache_key
from .context import ContextGatherer, ContextSnapshot, EditorSnapshot, SelectedCompletionInfo
from .engine import CompletionCallbacks, CompletionEngine, CompletionSink, EngineConfig
from .errors import (
    CancelledNotAnError,
    CompletionError,
    ConfigurationError,
    TransportError,
    ValidationSkip,
)
from .normalizer import strip_code_fences
from .preview import GhostTextPreview
from .prompts import MultilineMode, PromptOptions, build_prompts
from .streaming import CompletionSession, StreamingCompletionClient
from .types import CancellationSignal, Request, RequestStatus, StreamEvent

__all__ = [
    "CancellationSignal",
    "CancelledNotAnError",
    "CompletionCache",
    "CompletionCallbacks",
    "CompletionEngine",
    "CompletionError",
    "CompletionSession",
    "CompletionSink",
    "ConfigurationError",
    "ContextGatherer",
    "ContextSnapshot",
    "EditorSnapshot",
    "EngineConfig",
    "GhostTextPreview",
    "MultilineMode",
    "PromptOptions",
    "Request",
    "RequestStatus",
    "SelectedCompletionInfo",
    "StreamEvent",
    "StreamingCompletionClient",
    "TransportError",
    "ValidationSkip",
    "build_cache_key",
    "build_prompts",
    "strip_code_fences",
]
