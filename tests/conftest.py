"""
tests/conftest.py — Shared fixtures for the GazeQuest input core tests.

The JSONL logger reads ``GAZEQUEST_LOG_DIR`` once, on first use, so it is
pointed at a throwaway directory before any ``gazequest`` module is imported.
"""

from __future__ import annotations

import os
import tempfile

os.environ.setdefault("GAZEQUEST_LOG_DIR", tempfile.mkdtemp(prefix="gq-test-logs-"))

import pytest  # noqa: E402

from gazequest.core.interfaces import (  # noqa: E402
    InMemorySettingsStore,
    LogAnnouncer,
    StaticTargetEnvironment,
)
from gazequest.core.models import InputEvent, TargetRef  # noqa: E402
from gazequest.core.scheduler import ManualScheduler  # noqa: E402
from gazequest.core.session import SessionContext  # noqa: E402


# ──────────────────────────────────────────────────────────────
# Board layout used across tests: three 200×200 targets in a row
# ──────────────────────────────────────────────────────────────

START = TargetRef("start", "Start")
MAP = TargetRef("map", "Map")
QUIT = TargetRef("quit", "Quit")

#: Centre of each target.
CENTRES = {
    START: (240.0, 300.0),
    MAP: (640.0, 300.0),
    QUIT: (1040.0, 300.0),
}

#: A point on the surface that hits no target.
EMPTY_SPOT = (640.0, 600.0)


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture()
def env() -> StaticTargetEnvironment:
    board = StaticTargetEnvironment()
    board.add(START, (140.0, 200.0, 200.0, 200.0))
    board.add(MAP, (540.0, 200.0, 200.0, 200.0))
    board.add(QUIT, (940.0, 200.0, 200.0, 200.0))
    return board


@pytest.fixture()
def settings() -> InMemorySettingsStore:
    return InMemorySettingsStore()


@pytest.fixture()
def announcer() -> LogAnnouncer:
    return LogAnnouncer()


@pytest.fixture()
def session() -> SessionContext:
    return SessionContext()


@pytest.fixture()
def events() -> list[InputEvent]:
    """Plain list used as an emit sink (``events.append``)."""
    return []
