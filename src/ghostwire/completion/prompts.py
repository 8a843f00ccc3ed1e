"""Prompt templates for inline code completion.

Rendering is a pure function of the :class:`ContextSnapshot` and the
:class:`PromptOptions`; no I/O and no hidden state.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any

from .context import ContextSnapshot

LOGGER = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_LANGUAGE",
    "MultilineMode",
    "PromptOptions",
    "build_prompts",
    "render_system_prompt",
    "render_user_prompt",
]

DEFAULT_LANGUAGE = "plaintext"

_SYSTEM_PROMPT = (
    "You are an AI coding assistant that provides accurate and helpful code completions.\n"
    "Your task is to complete the code at the cursor position.\n"
    "Provide only the completion text, without any explanations or markdown formatting.\n"
    "The completion should be valid, syntactically correct code that fits the context."
)


class MultilineMode(str, enum.Enum):
    ONE_LINE = "one-line"
    MULTILINE = "multiline"
    AUTO = "auto"

    @classmethod
    def parse(cls, value: Any, *, default: "MultilineMode | None" = None) -> "MultilineMode":
        """Coerce user configuration (strings or legacy booleans) to a mode."""

        fallback = default or cls.AUTO
        if isinstance(value, cls):
            return value
        if value is True:
            return cls.MULTILINE
        if value is False:
            return cls.ONE_LINE
        normalized = str(value or "").strip().lower().replace("_", "-")
        if not normalized:
            return fallback
        aliases = {"oneline": cls.ONE_LINE, "single": cls.ONE_LINE, "single-line": cls.ONE_LINE, "multi": cls.MULTILINE}
        if normalized in aliases:
            return aliases[normalized]
        for mode in cls:
            if mode.value == normalized:
                return mode
        LOGGER.warning("Unknown multiline mode %r; defaulting to %s", value, fallback.value)
        return fallback


@dataclass(frozen=True, slots=True)
class PromptOptions:
    language: str = ""
    include_imports: bool = True
    include_definitions: bool = True
    multiline_mode: MultilineMode = MultilineMode.AUTO


def render_system_prompt() -> str:
    return _SYSTEM_PROMPT


def render_user_prompt(context: ContextSnapshot, options: PromptOptions) -> str:
    """Assemble the user prompt in a fixed section order.

    Imports, definitions, preceding lines, the current line, following lines and
    finally the instruction matching ``options.multiline_mode``.
    """

    language = (options.language or context.language or DEFAULT_LANGUAGE).strip() or DEFAULT_LANGUAGE
    sections: list[str] = [f"Language: {language}\n"]

    if options.include_imports and context.imports:
        sections.append("Relevant imports:\n" + "\n".join(context.imports) + "\n")

    if options.include_definitions and context.definitions:
        parts = ["Relevant definitions:"]
        for definition in context.definitions:
            parts.append(f"// From {definition.path}\n{definition.text}\n")
        sections.append("\n".join(parts))

    body: list[str] = []
    if context.preceding_lines:
        body.append("Preceding code:\n" + "\n".join(context.preceding_lines))
    body.append(f"Current line: {context.current_line}")
    if context.following_lines:
        body.append("Following code:\n" + "\n".join(context.following_lines))
    sections.append("\n".join(body) + "\n")

    sections.append(_instruction(options.multiline_mode, language))
    return "\n".join(sections)


def build_prompts(context: ContextSnapshot, options: PromptOptions) -> tuple[str, str]:
    """Return the ``(system_prompt, user_prompt)`` pair for a request."""

    return render_system_prompt(), render_user_prompt(context, options)


def _instruction(mode: MultilineMode, language: str) -> str:
    if mode is MultilineMode.MULTILINE:
        return (
            "Complete the current line and continue with additional lines if appropriate. "
            f"Focus on providing accurate, idiomatic {language} code."
        )
    if mode is MultilineMode.AUTO:
        return (
            "Complete the current line. If the line appears to be the start of a block "
            "(like a function, loop, or conditional), you may continue with the implementation "
            f"of that block. Focus on providing accurate, idiomatic {language} code."
        )
    return f"Complete only the current line with accurate, idiomatic {language} code."
