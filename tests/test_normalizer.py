"""Tests for code fence stripping."""

from __future__ import annotations

import pytest

from ghostwire.completion.normalizer import strip_code_fences


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("```python\nprint('x')\n```", "print('x')"),
        ("```\nfoo()\n```", "foo()"),
        ("```ts\nconst a = 1;\nconst b = 2;\n```", "const a = 1;\nconst b = 2;"),
        ("```objective-c\n[obj run];\n```", "[obj run];"),
    ],
)
def test_complete_fenced_blocks_become_their_interior(raw: str, expected: str) -> None:
    assert strip_code_fences(raw) == expected


def test_leading_fence_is_stripped_while_streaming() -> None:
    assert strip_code_fences("```python\nreturn") == "return"


def test_inner_fence_collapses_to_newline() -> None:
    assert strip_code_fences("a = 1\n```js\nb = 2") == "a = 1\nb = 2"


def test_trailing_fence_is_stripped() -> None:
    assert strip_code_fences("value + 1\n```") == "value + 1"


@pytest.mark.parametrize("partial", ["`", "``", "```", "```py", "x = 1\n``", "``` python"])
def test_incomplete_markers_are_left_untouched(partial: str) -> None:
    assert strip_code_fences(partial) == partial


def test_text_without_fences_is_unchanged() -> None:
    text = "for i in range(3):\n    print(i)\n"

    assert strip_code_fences(text) is text


def test_closing_fence_followed_by_newline_collapses() -> None:
    assert strip_code_fences("x\n```\n") == "x\n"


def test_empty_input() -> None:
    assert strip_code_fences("") == ""


def test_growing_accumulator_never_exposes_fence_markers() -> None:
    chunks = ["```", "python\n", "def f():\n", "    return 1\n", "```"]
    accumulated = chunks[0]
    outputs = []
    for chunk in chunks[1:]:
        accumulated += chunk
        outputs.append(strip_code_fences(accumulated))

    assert all("```" not in output for output in outputs)
    assert outputs[-1] == "def f():\n    return 1"


def test_opening_fence_mid_line_waits_for_the_closing_fence() -> None:
    partial = "foo ``"
    assert strip_code_fences(partial) == partial

    assert strip_code_fences("foo ```\nbar\n```") == "foo bar"
