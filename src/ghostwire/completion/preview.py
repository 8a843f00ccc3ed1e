"""Ghost text state shared with the host editor."""

from __future__ import annotations

import logging
from typing import Callable, Optional

LOGGER = logging.getLogger(__name__)

__all__ = ["GhostTextPreview", "PreviewRenderer"]

PreviewRenderer = Callable[[str], None]


class GhostTextPreview:
    """Tracks the suggestion currently shown at the cursor.

    Implements the engine's sink callbacks. ``renderer`` (when provided) is
    called with the visible text whenever it changes; an empty string means the
    ghost text was cleared.
    """

    def __init__(self, renderer: Optional[PreviewRenderer] = None) -> None:
        self._renderer = renderer
        self._text = ""
        self._final = False
        self._last_error: tuple[str, str] | None = None

    @property
    def current_text(self) -> str:
        return self._text

    @property
    def visible(self) -> bool:
        return bool(self._text)

    @property
    def is_final(self) -> bool:
        return self._final

    @property
    def last_error(self) -> tuple[str, str] | None:
        return self._last_error

    # Sink callbacks ---------------------------------------------------
    def on_preview(self, text: str) -> None:
        self._final = False
        self._update(text)

    def on_final(self, text: str) -> None:
        self._final = True
        self._last_error = None
        self._update(text)

    def on_error(self, kind: str, message: str) -> None:
        LOGGER.warning("Completion failed (%s): %s", kind, message)
        self._last_error = (kind, message)
        self.clear()

    # Host commands ----------------------------------------------------
    def accept(self) -> str:
        """Return the suggestion for insertion and clear it."""

        text = self._text
        self.clear()
        return text

    def dismiss(self) -> None:
        self.clear()

    def on_document_changed(self) -> None:
        self.clear()

    def clear(self) -> None:
        self._final = False
        self._update("")

    def _update(self, text: str) -> None:
        if text == self._text:
            return
        self._text = text
        if self._renderer is None:
            return
        try:
            self._renderer(text)
        except Exception:
            LOGGER.exception("Ghost text renderer failed")
