"""Context snapshots describing the document around the cursor.

The host editor supplies an :class:`EditorSnapshot`; :class:`ContextGatherer`
turns it into the immutable :class:`ContextSnapshot` consumed by the prompt
builder. Definition lookups are delegated to an optional
:class:`DefinitionProvider` (usually backed by a language server).
"""

from __future__ import annotations

import hashlib
import inspect
import logging
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol, Sequence, Union

LOGGER = logging.getLogger(__name__)

__all__ = [
    "IMPORT_PATTERNS",
    "ContextGatherer",
    "ContextLimits",
    "ContextSnapshot",
    "DefinitionExcerpt",
    "DefinitionProvider",
    "EditorSnapshot",
    "SelectedCompletionInfo",
    "SnapshotProvider",
    "document_fingerprint",
    "extract_imports",
    "locate_cursor",
]

IMPORT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\s*import\s+.*?from\s+['\"].*?['\"]"),  # ES module imports
    re.compile(r"^\s*import\s+['\"].*?['\"]"),  # side-effect imports
    re.compile(r"^\s*(?:const|let|var)\s+.*?\s*=\s*require\(['\"].*?['\"]\)"),  # CommonJS
    re.compile(r"^\s*from\s+[\w.]+\s+import\s+"),  # Python from-imports
    re.compile(r"^\s*import\s+[\w.]+(?:\s+as\s+\w+)?\s*$"),  # Python/Java/Go single imports
    re.compile(r"^\s*using\s+.*;"),  # C#
    re.compile(r"^\s*#include\s+[<\"].*?[>\"]"),  # C/C++
    re.compile(r"^\s*use\s+[\w:{}, *]+;"),  # Rust
)


@dataclass(frozen=True, slots=True)
class SelectedCompletionInfo:
    """An entry currently highlighted in the editor's native suggestion list."""

    text: str
    typed_text: str

    @property
    def typed_length(self) -> int:
        return len(self.typed_text)


@dataclass(frozen=True, slots=True)
class EditorSnapshot:
    """Read-only view of the live document handed over by the host editor."""

    text: str
    language: str = ""
    path: str | None = None
    selected_completion: SelectedCompletionInfo | None = None


SnapshotProvider = Callable[[], EditorSnapshot]


@dataclass(frozen=True, slots=True)
class DefinitionExcerpt:
    path: str
    text: str
    start_line: int = 0
    end_line: int = 0


@dataclass(frozen=True, slots=True)
class ContextSnapshot:
    """Everything the prompt builder needs, captured once per request."""

    current_line: str
    preceding_lines: tuple[str, ...] = ()
    following_lines: tuple[str, ...] = ()
    imports: tuple[str, ...] = ()
    definitions: tuple[DefinitionExcerpt, ...] = ()
    language: str = ""
    cursor_column: int = 0


@dataclass(frozen=True, slots=True)
class ContextLimits:
    max_preceding_lines: int = 20
    max_following_lines: int = 10
    max_imports: int = 20
    max_definitions: int = 5


DefinitionResult = Union[Sequence[DefinitionExcerpt], Awaitable[Sequence[DefinitionExcerpt]]]


class DefinitionProvider(Protocol):
    """Looks up definitions for the symbol at a cursor position."""

    def __call__(self, snapshot: EditorSnapshot, line: int, column: int) -> DefinitionResult:
        ...


def document_fingerprint(text: str) -> str:
    """Short content hash used to detect edits between trigger and fire."""

    return hashlib.sha1((text or "").encode("utf-8", errors="surrogatepass")).hexdigest()


def locate_cursor(text: str, offset: int) -> tuple[int, int]:
    """Return the zero-based ``(line, column)`` of ``offset`` within ``text``."""

    clamped = max(0, min(int(offset), len(text)))
    line = text.count("\n", 0, clamped)
    line_start = text.rfind("\n", 0, clamped) + 1
    return line, clamped - line_start


def extract_imports(text: str, *, limit: int = 20) -> list[str]:
    """Collect import-like statements from ``text`` in document order."""

    if limit <= 0:
        return []
    imports: list[str] = []
    for line in text.split("\n"):
        if any(pattern.search(line) for pattern in IMPORT_PATTERNS):
            imports.append(line.strip())
            if len(imports) >= limit:
                break
    return imports


@dataclass(slots=True)
class ContextGatherer:
    """Builds :class:`ContextSnapshot` instances from editor snapshots."""

    limits: ContextLimits = field(default_factory=ContextLimits)
    definition_provider: DefinitionProvider | None = None

    async def gather(
        self,
        snapshot: EditorSnapshot,
        cursor_offset: int,
        *,
        use_imports: bool = True,
        use_definitions: bool = True,
    ) -> ContextSnapshot:
        text = snapshot.text or ""
        lines = text.split("\n")
        line_index, column = locate_cursor(text, cursor_offset)
        current_line = lines[line_index] if line_index < len(lines) else ""

        preceding_start = max(0, line_index - max(0, self.limits.max_preceding_lines))
        preceding = [line for line in lines[preceding_start:line_index] if line.strip()]
        following_end = line_index + 1 + max(0, self.limits.max_following_lines)
        following = [line for line in lines[line_index + 1 : following_end] if line.strip()]

        imports: list[str] = []
        if use_imports:
            imports = extract_imports(text, limit=self.limits.max_imports)

        definitions: list[DefinitionExcerpt] = []
        if use_definitions and self.definition_provider is not None:
            definitions = await self._lookup_definitions(snapshot, line_index, column)

        return ContextSnapshot(
            current_line=current_line,
            preceding_lines=tuple(preceding),
            following_lines=tuple(following),
            imports=tuple(imports),
            definitions=tuple(definitions),
            language=snapshot.language,
            cursor_column=column,
        )

    async def _lookup_definitions(
        self, snapshot: EditorSnapshot, line: int, column: int
    ) -> list[DefinitionExcerpt]:
        provider = self.definition_provider
        if provider is None or self.limits.max_definitions <= 0:
            return []
        try:
            result = provider(snapshot, line, column)
            if inspect.isawaitable(result):
                result = await result
        except Exception:
            LOGGER.warning("Definition lookup failed", exc_info=True)
            return []
        definitions: list[DefinitionExcerpt] = []
        for item in result or ():
            if not isinstance(item, DefinitionExcerpt):
                LOGGER.debug("Ignoring unexpected definition payload %r", item)
                continue
            definitions.append(item)
            if len(definitions) >= self.limits.max_definitions:
                break
        return definitions
