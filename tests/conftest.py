"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from ghostwire.services import telemetry


@pytest.fixture(autouse=True)
def _reset_telemetry_listeners():
    telemetry.clear_event_listeners()
    yield
    telemetry.clear_event_listeners()


@pytest.fixture
def recorder():
    events = telemetry.EventRecorder(
        "completion.request.started",
        "completion.cache_hit",
        "completion.completed",
        "completion.cancelled",
        "completion.failed",
        "completion.suppressed",
        "completion.cache_evicted",
    )
    yield events
    events.close()
