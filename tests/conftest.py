"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import pytest

from agent_protocol_runtime.events import (
    BaseEvent,
    RunFinishedEvent,
    RunStartedEvent,
    StateDeltaEvent,
    StateSnapshotEvent,
    TextMessageContentEvent,
    TextMessageEndEvent,
    TextMessageStartEvent,
)
from agent_protocol_runtime.types import RunAgentInput

THREAD_ID = "thread_1"
RUN_ID = "run_1"


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def run_input() -> RunAgentInput:
    """Minimal run input matching the ids used by the event fixtures."""
    return RunAgentInput(thread_id=THREAD_ID, run_id=RUN_ID)


@pytest.fixture
def hello_run() -> list[BaseEvent]:
    """A complete, legal run: one message and a state update."""
    return [
        RunStartedEvent(thread_id=THREAD_ID, run_id=RUN_ID, timestamp=1700000000000),
        StateSnapshotEvent(snapshot={"count": 0}),
        TextMessageStartEvent(message_id="m1"),
        TextMessageContentEvent(message_id="m1", delta="Hel"),
        TextMessageContentEvent(message_id="m1", delta="lo"),
        TextMessageEndEvent(message_id="m1"),
        StateDeltaEvent(delta=[{"op": "replace", "path": "/count", "value": 1}]),
        RunFinishedEvent(thread_id=THREAD_ID, run_id=RUN_ID, result={"ok": True}),
    ]
