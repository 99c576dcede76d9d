"""Producer-side contract.

An agent is anything with ``run(input) -> async iterator of events``. The
returned stream must satisfy the run state machine; producers are
responsible for emitting protocol-correct sequences.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Protocol, runtime_checkable

from .events import BaseEvent
from .types import RunAgentInput


@runtime_checkable
class Agent(Protocol):
    """Protocol every event producer implements."""

    def run(self, input: RunAgentInput) -> AsyncIterator[BaseEvent]:
        """Start a run and yield its events in order."""
        ...


class FunctionAgent:
    """Adapt an async generator function to the Agent protocol.

    Usage:
        async def echo(input: RunAgentInput):
            yield RunStartedEvent(thread_id=input.thread_id, run_id=input.run_id)
            ...

        agent = FunctionAgent(echo)
    """

    def __init__(
        self,
        fn: Callable[[RunAgentInput], AsyncIterator[BaseEvent]],
        name: str | None = None,
    ) -> None:
        self._fn = fn
        self.name = name or getattr(fn, "__name__", "agent")

    def run(self, input: RunAgentInput) -> AsyncIterator[BaseEvent]:
        return self._fn(input)

    def __repr__(self) -> str:
        return f"FunctionAgent({self.name!r})"
