"""Markdown code-fence stripping for streamed completion text.

The normalizer is applied to the whole accumulated completion every time a new
chunk arrives, never to individual deltas. A fence marker split across two
chunks is therefore handled once enough text has arrived; until then the
incomplete marker is left untouched.
"""

from __future__ import annotations

import re

__all__ = [
    "COMPLETE_FENCE_RE",
    "LEADING_FENCE_RE",
    "INNER_FENCE_RE",
    "TRAILING_FENCE_RE",
    "strip_code_fences",
]

# ```lang\n<body>\n```  ->  <body>
COMPLETE_FENCE_RE = re.compile(r"```[\w-]*\n([\s\S]*?)\n```")
LEADING_FENCE_RE = re.compile(r"\A```[\w-]*\n")
INNER_FENCE_RE = re.compile(r"\n```[\w-]*\n")
TRAILING_FENCE_RE = re.compile(r"\n```\Z")


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences from ``text``.

    Rules are applied in order:

    1. complete fenced blocks are replaced by their interior;
    2. an opening fence at the very start of the string is dropped;
    3. an opening fence in the middle of the string collapses to a newline;
    4. a closing fence at the very end of the string is dropped.

    The function is total: any string is a valid input and partial markers such
    as ``"``"`` pass through unchanged.
    """

    if not text or "```" not in text:
        return text or ""
    cleaned = COMPLETE_FENCE_RE.sub(r"\1", text)
    cleaned = LEADING_FENCE_RE.sub("", cleaned)
    cleaned = INNER_FENCE_RE.sub("\n", cleaned)
    cleaned = TRAILING_FENCE_RE.sub("", cleaned)
    return cleaned
