"""Tests for completion prompt rendering."""

from __future__ import annotations

import pytest

from ghostwire.completion.context import ContextSnapshot, DefinitionExcerpt
from ghostwire.completion.prompts import MultilineMode, PromptOptions, build_prompts


def _context(**overrides) -> ContextSnapshot:
    payload = dict(
        current_line="    total = ",
        preceding_lines=("def sum_all(values):",),
        following_lines=("    return total",),
        imports=("import math",),
        definitions=(DefinitionExcerpt(path="lib/values.py", text="def normalize(v): ..."),),
        language="python",
    )
    payload.update(overrides)
    return ContextSnapshot(**payload)


def test_system_prompt_forbids_prose_and_markdown() -> None:
    system_prompt, _ = build_prompts(_context(), PromptOptions())

    assert "without any explanations or markdown formatting" in system_prompt


def test_user_prompt_sections_follow_fixed_order() -> None:
    _, user_prompt = build_prompts(_context(), PromptOptions())

    markers = [
        "Language: python",
        "Relevant imports:\nimport math",
        "Relevant definitions:",
        "// From lib/values.py\ndef normalize(v): ...",
        "Preceding code:\ndef sum_all(values):",
        "Current line:     total = ",
        "Following code:\n    return total",
        "Complete the current line.",
    ]
    positions = [user_prompt.index(marker) for marker in markers]
    assert positions == sorted(positions)


def test_disabled_sections_are_omitted() -> None:
    options = PromptOptions(include_imports=False, include_definitions=False)

    _, user_prompt = build_prompts(_context(), options)

    assert "Relevant imports" not in user_prompt
    assert "Relevant definitions" not in user_prompt


def test_empty_sections_are_omitted() -> None:
    _, user_prompt = build_prompts(
        _context(imports=(), definitions=(), preceding_lines=(), following_lines=()),
        PromptOptions(),
    )

    assert "Relevant imports" not in user_prompt
    assert "Preceding code" not in user_prompt
    assert "Following code" not in user_prompt
    assert "Current line:     total = " in user_prompt


def test_language_falls_back_to_plaintext() -> None:
    _, user_prompt = build_prompts(_context(language=""), PromptOptions())

    assert user_prompt.startswith("Language: plaintext\n")


def test_option_language_overrides_context() -> None:
    _, user_prompt = build_prompts(_context(), PromptOptions(language="cython"))

    assert user_prompt.startswith("Language: cython\n")


@pytest.mark.parametrize(
    ("mode", "phrase"),
    [
        (MultilineMode.ONE_LINE, "Complete only the current line with accurate, idiomatic python code."),
        (MultilineMode.MULTILINE, "continue with additional lines if appropriate"),
        (MultilineMode.AUTO, "start of a block"),
    ],
)
def test_instruction_matches_multiline_mode(mode: MultilineMode, phrase: str) -> None:
    _, user_prompt = build_prompts(_context(), PromptOptions(multiline_mode=mode))

    assert user_prompt.rstrip().endswith("code.")
    assert phrase in user_prompt


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (True, MultilineMode.MULTILINE),
        (False, MultilineMode.ONE_LINE),
        ("one_line", MultilineMode.ONE_LINE),
        ("MULTILINE", MultilineMode.MULTILINE),
        ("", MultilineMode.AUTO),
        (None, MultilineMode.AUTO),
        ("sideways", MultilineMode.AUTO),
    ],
)
def test_multiline_mode_parse(value, expected: MultilineMode) -> None:
    assert MultilineMode.parse(value) is expected
