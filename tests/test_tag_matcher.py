"""Tests for the reasoning tag state machine."""

from __future__ import annotations

import pytest

from ghostwire.completion.tag_matcher import ReasoningTagMatcher
from ghostwire.completion.types import StreamEvent


def _feed(matcher: ReasoningTagMatcher, chunks: list[str]) -> list[StreamEvent]:
    events: list[StreamEvent] = []
    for chunk in chunks:
        events.extend(matcher.update(chunk))
    events.extend(matcher.final())
    return events


def _split(events: list[StreamEvent]) -> tuple[str, str]:
    reasoning = "".join(event.text for event in events if event.type == "reasoning")
    text = "".join(event.text for event in events if event.type == "text")
    return reasoning, text


def test_plain_text_passes_through() -> None:
    matcher = ReasoningTagMatcher()

    assert matcher.update("return value") == [StreamEvent.text_chunk("return value")]
    assert matcher.state == ReasoningTagMatcher.OUTSIDE


def test_single_chunk_with_reasoning_block() -> None:
    matcher = ReasoningTagMatcher()

    events = matcher.update("<think>why</think>answer")

    assert events == [StreamEvent.reasoning_chunk("why"), StreamEvent.text_chunk("answer")]


@pytest.mark.parametrize("size", [1, 2, 3, 5, 8])
def test_markers_split_at_any_boundary(size: int) -> None:
    payload = "pre<think>deliberate</think>post"
    chunks = [payload[index : index + size] for index in range(0, len(payload), size)]

    reasoning, text = _split(_feed(ReasoningTagMatcher(), chunks))

    assert reasoning == "deliberate"
    assert text == "prepost"


def test_partial_marker_is_held_until_decided() -> None:
    matcher = ReasoningTagMatcher()

    assert matcher.update("x <thi") == [StreamEvent.text_chunk("x ")]
    assert matcher.update("s is not a tag") == [StreamEvent.text_chunk("<this is not a tag")]


def test_final_flushes_pending_text_and_resets_state() -> None:
    matcher = ReasoningTagMatcher()
    matcher.update("<think>unfinished </th")

    assert matcher.state == ReasoningTagMatcher.INSIDE
    assert matcher.final() == [StreamEvent.reasoning_chunk("</th")]
    assert matcher.state == ReasoningTagMatcher.OUTSIDE


def test_custom_tag_name() -> None:
    matcher = ReasoningTagMatcher("<reasoning>")

    events = matcher.update("<think>a</think><reasoning>b</reasoning>c")

    assert _split(events) == ("b", "<think>a</think>c")


def test_empty_tag_is_rejected() -> None:
    with pytest.raises(ValueError):
        ReasoningTagMatcher("  ")
