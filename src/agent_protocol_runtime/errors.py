"""Error taxonomy for the agent protocol runtime.

Four kinds of failure can happen while a run is being consumed:
- Transport errors: connection failure, HTTP status, read timeout, bad frames
- Protocol violations: an event arrived where the run state machine forbids it
- Synchronization errors: a state delta could not be applied
- Incomplete runs: the stream ended without a terminal event

Transport, protocol and incomplete-run errors are fatal to the run and are
surfaced to consumers as a single synthesized RUN_ERROR event. Synchronization
errors are recoverable; the authoritative state keeps its last committed value.

Cancellation is not an error and has no exception here (see CancellationAck).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .events import BaseEvent


class AgentProtocolError(Exception):
    """Base exception for all runtime errors.

    Every subclass carries a machine-readable ``code`` that is used as the
    ``code`` of the RUN_ERROR event synthesized from it.
    """

    code = "AGENT_PROTOCOL_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class TransportError(AgentProtocolError):
    """Connection failure, HTTP failure or read timeout."""

    code = "TRANSPORT_ERROR"


class DecodeError(TransportError):
    """A frame could not be decoded into an event."""

    code = "DECODE_ERROR"


class IncompleteRunError(TransportError):
    """The transport closed before a terminal event was received."""

    code = "INCOMPLETE_RUN"


class ProtocolViolationError(AgentProtocolError):
    """An event arrived in a position the run state machine does not allow.

    Attributes:
        event: The offending event
        expected: Human-readable descriptions of what would have been legal
        state: Snapshot of the state machine at the time of the violation
    """

    code = "PROTOCOL_VIOLATION"

    def __init__(
        self,
        message: str,
        *,
        event: BaseEvent,
        expected: tuple[str, ...] = (),
        state: Any = None,
    ) -> None:
        super().__init__(message)
        self.event = event
        self.expected = expected
        self.state = state

    def __str__(self) -> str:
        detail = self.message
        if self.expected:
            detail += f" (expected: {', '.join(self.expected)})"
        return detail


class StateSyncError(AgentProtocolError):
    """A state delta was rejected; the state is left unchanged."""

    code = "STATE_SYNC_ERROR"

    def __init__(
        self,
        message: str,
        *,
        delta: list[dict[str, Any]] | None = None,
        index: int | None = None,
    ) -> None:
        super().__init__(message)
        self.delta = delta or []
        self.index = index


class AgentRunError(AgentProtocolError):
    """The run ended with a RUN_ERROR event.

    Passed to ``on_error`` for both producer-sent and synthesized errors.
    ``cause`` holds the local exception when the error was synthesized.
    """

    code = "AGENT_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        cause: AgentProtocolError | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.cause = cause

    @property
    def synthesized(self) -> bool:
        """True when the runtime produced the error rather than the agent."""
        return self.cause is not None
