"""Run state machine.

Enforces the legal ordering of events within a single run:

- The first event must be RUN_STARTED
- Exactly one terminal event (RUN_FINISHED or RUN_ERROR), nothing after it
- Steps do not nest: STEP_FINISHED must name the open step
- At most one text message open; content/end only for the open message id
- At most one tool call open; args/end only for the open tool call id
- At most one thinking block open; thinking text only inside it
- State, snapshot, raw and custom events are legal anywhere in between

Every violation raises ProtocolViolationError carrying the offending event,
the acceptable alternatives and a snapshot of the machine. The validator
never drops or rewrites events.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from .errors import ProtocolViolationError
from .events import (
    BaseEvent,
    EventType,
    RunStartedEvent,
    StepFinishedEvent,
    StepStartedEvent,
    TextMessageContentEvent,
    TextMessageEndEvent,
    TextMessageStartEvent,
    ToolCallArgsEvent,
    ToolCallEndEvent,
    ToolCallResultEvent,
    ToolCallStartEvent,
)

logger = logging.getLogger(__name__)

# Legal at any point between RUN_STARTED and the terminal event
UNCONSTRAINED_EVENT_TYPES = frozenset(
    {
        EventType.STATE_SNAPSHOT,
        EventType.STATE_DELTA,
        EventType.MESSAGES_SNAPSHOT,
        EventType.RAW,
        EventType.CUSTOM,
    }
)


@dataclass(frozen=True)
class RunPhase:
    """Point-in-time view of a run state machine."""

    started: bool = False
    terminated: bool = False
    thread_id: str | None = None
    run_id: str | None = None
    open_step: str | None = None
    open_message_id: str | None = None
    open_tool_call_id: str | None = None
    thinking: bool = False
    thinking_message_open: bool = False

    def describe(self) -> str:
        """Short human-readable summary used in error messages."""
        if not self.started:
            return "not started"
        if self.terminated:
            return "terminated"
        parts = ["running"]
        if self.open_step is not None:
            parts.append(f"step={self.open_step}")
        if self.open_message_id is not None:
            parts.append(f"message={self.open_message_id}")
        if self.open_tool_call_id is not None:
            parts.append(f"tool_call={self.open_tool_call_id}")
        if self.thinking:
            parts.append("thinking")
        return ", ".join(parts)


class RunValidator:
    """Legality checker for one run's event stream.

    Usage:
        validator = RunValidator()
        for event in events:
            validator.validate(event)  # raises ProtocolViolationError
    """

    def __init__(self, thread_id: str | None = None, run_id: str | None = None) -> None:
        """Initialize the validator.

        Args:
            thread_id: If given, RUN_STARTED must carry this thread id
            run_id: If given, RUN_STARTED must carry this run id
        """
        self._expected_thread_id = thread_id
        self._expected_run_id = run_id
        self._phase = RunPhase()
        self._count = 0

    @property
    def phase(self) -> RunPhase:
        """Current state of the machine."""
        return self._phase

    @property
    def terminated(self) -> bool:
        return self._phase.terminated

    @property
    def event_count(self) -> int:
        """Number of events accepted so far."""
        return self._count

    def validate(self, event: BaseEvent) -> BaseEvent:
        """Check ``event`` against the current state and advance.

        Returns:
            The same event, unchanged

        Raises:
            ProtocolViolationError: If the event is illegal here
        """
        phase = self._phase

        if phase.terminated:
            self._violation(event, "Event received after the run terminated", ("nothing",))

        if not phase.started:
            if not isinstance(event, RunStartedEvent):
                self._violation(
                    event,
                    f"First event must be RUN_STARTED, got {event.type.value}",
                    (EventType.RUN_STARTED.value,),
                )
            self._check_run_ids(event)
            self._advance(event, started=True, thread_id=event.thread_id, run_id=event.run_id)
            return event

        handler = _HANDLERS.get(event.type)
        if handler is not None:
            handler(self, event)
        elif event.type not in UNCONSTRAINED_EVENT_TYPES:
            self._violation(
                event,
                f"{event.type.value} must be expanded before validation",
                ("an explicit lifecycle event",),
            )
        else:
            self._advance(event)
        return event

    def close(self) -> None:
        """Release open message/tool-call bookkeeping."""
        self._phase = RunPhase(
            started=self._phase.started,
            terminated=True,
            thread_id=self._phase.thread_id,
            run_id=self._phase.run_id,
        )

    # =========================================================================
    # Rule handlers
    # =========================================================================

    def _on_run_started(self, event: BaseEvent) -> None:
        self._violation(event, "RUN_STARTED received twice", ("any event but RUN_STARTED",))

    def _on_run_finished(self, event: BaseEvent) -> None:
        phase = self._phase
        still_open = []
        if phase.open_message_id is not None:
            still_open.append(f"TEXT_MESSAGE_END({phase.open_message_id})")
        if phase.open_tool_call_id is not None:
            still_open.append(f"TOOL_CALL_END({phase.open_tool_call_id})")
        if phase.open_step is not None:
            still_open.append(f"STEP_FINISHED({phase.open_step})")
        if phase.thinking:
            still_open.append(EventType.THINKING_END.value)
        if still_open:
            self._violation(event, "RUN_FINISHED while lifecycles are still open", tuple(still_open))
        self._advance(event, terminated=True)

    def _on_run_error(self, event: BaseEvent) -> None:
        self._advance(event, terminated=True)

    def _on_step_started(self, event: StepStartedEvent) -> None:
        if self._phase.open_step is not None:
            self._violation(
                event,
                f"Step {event.step_name!r} started while step {self._phase.open_step!r} is open",
                (f"STEP_FINISHED({self._phase.open_step})",),
            )
        self._advance(event, open_step=event.step_name)

    def _on_step_finished(self, event: StepFinishedEvent) -> None:
        if self._phase.open_step != event.step_name:
            expected = (
                (f"STEP_FINISHED({self._phase.open_step})",)
                if self._phase.open_step is not None
                else (EventType.STEP_STARTED.value,)
            )
            self._violation(event, f"Step {event.step_name!r} is not open", expected)
        self._advance(event, open_step=None)

    def _on_message_start(self, event: TextMessageStartEvent) -> None:
        open_id = self._phase.open_message_id
        if open_id is not None:
            self._violation(
                event,
                f"Message {event.message_id!r} started while message {open_id!r} is open",
                (f"TEXT_MESSAGE_END({open_id})",),
            )
        self._advance(event, open_message_id=event.message_id)

    def _on_message_content(self, event: TextMessageContentEvent) -> None:
        self._require_open_message(event)
        self._advance(event)

    def _on_message_end(self, event: TextMessageEndEvent) -> None:
        self._require_open_message(event)
        self._advance(event, open_message_id=None)

    def _on_tool_call_start(self, event: ToolCallStartEvent) -> None:
        open_id = self._phase.open_tool_call_id
        if open_id is not None:
            self._violation(
                event,
                f"Tool call {event.tool_call_id!r} started while tool call {open_id!r} is open",
                (f"TOOL_CALL_END({open_id})",),
            )
        self._advance(event, open_tool_call_id=event.tool_call_id)

    def _on_tool_call_args(self, event: ToolCallArgsEvent) -> None:
        self._require_open_tool_call(event)
        self._advance(event)

    def _on_tool_call_end(self, event: ToolCallEndEvent) -> None:
        self._require_open_tool_call(event)
        self._advance(event, open_tool_call_id=None)

    def _on_tool_call_result(self, event: ToolCallResultEvent) -> None:
        if self._phase.open_tool_call_id == event.tool_call_id:
            self._violation(
                event,
                f"Result for tool call {event.tool_call_id!r} before it ended",
                (f"TOOL_CALL_END({event.tool_call_id})",),
            )
        self._advance(event)

    def _on_thinking_start(self, event: BaseEvent) -> None:
        if self._phase.thinking:
            self._violation(event, "Thinking started twice", (EventType.THINKING_END.value,))
        self._advance(event, thinking=True)

    def _on_thinking_end(self, event: BaseEvent) -> None:
        if not self._phase.thinking:
            self._violation(event, "No thinking block is open", (EventType.THINKING_START.value,))
        if self._phase.thinking_message_open:
            self._violation(
                event,
                "Thinking ended while its text message is open",
                (EventType.THINKING_TEXT_MESSAGE_END.value,),
            )
        self._advance(event, thinking=False)

    def _on_thinking_message_start(self, event: BaseEvent) -> None:
        if not self._phase.thinking:
            self._violation(
                event, "Thinking text outside a thinking block", (EventType.THINKING_START.value,)
            )
        if self._phase.thinking_message_open:
            self._violation(
                event,
                "Thinking text message already open",
                (EventType.THINKING_TEXT_MESSAGE_END.value,),
            )
        self._advance(event, thinking_message_open=True)

    def _on_thinking_message_content(self, event: BaseEvent) -> None:
        if not self._phase.thinking_message_open:
            self._violation(
                event,
                "No thinking text message is open",
                (EventType.THINKING_TEXT_MESSAGE_START.value,),
            )
        self._advance(event)

    def _on_thinking_message_end(self, event: BaseEvent) -> None:
        if not self._phase.thinking_message_open:
            self._violation(
                event,
                "No thinking text message is open",
                (EventType.THINKING_TEXT_MESSAGE_START.value,),
            )
        self._advance(event, thinking_message_open=False)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_open_message(self, event: TextMessageContentEvent | TextMessageEndEvent) -> None:
        open_id = self._phase.open_message_id
        if open_id != event.message_id:
            expected = (
                (f"{event.type.value}({open_id})",)
                if open_id is not None
                else (f"TEXT_MESSAGE_START({event.message_id})",)
            )
            self._violation(event, f"Message {event.message_id!r} is not open", expected)

    def _require_open_tool_call(self, event: ToolCallArgsEvent | ToolCallEndEvent) -> None:
        open_id = self._phase.open_tool_call_id
        if open_id != event.tool_call_id:
            expected = (
                (f"{event.type.value}({open_id})",)
                if open_id is not None
                else (f"TOOL_CALL_START({event.tool_call_id})",)
            )
            self._violation(event, f"Tool call {event.tool_call_id!r} is not open", expected)

    def _check_run_ids(self, event: RunStartedEvent) -> None:
        if self._expected_thread_id is not None and event.thread_id != self._expected_thread_id:
            self._violation(
                event,
                f"RUN_STARTED for thread {event.thread_id!r}, "
                f"expected {self._expected_thread_id!r}",
                (f"RUN_STARTED(threadId={self._expected_thread_id})",),
            )
        if self._expected_run_id is not None and event.run_id != self._expected_run_id:
            self._violation(
                event,
                f"RUN_STARTED for run {event.run_id!r}, expected {self._expected_run_id!r}",
                (f"RUN_STARTED(runId={self._expected_run_id})",),
            )

    def _advance(self, event: BaseEvent, **changes: object) -> None:
        if changes:
            self._phase = replace(self._phase, **changes)
        self._count += 1
        logger.debug(f"Accepted {event.type.value} ({self._phase.describe()})")

    def _violation(self, event: BaseEvent, message: str, expected: tuple[str, ...]) -> None:
        phase = self._phase
        logger.warning(f"Protocol violation at event #{self._count + 1}: {message}")
        raise ProtocolViolationError(
            f"{message} [state: {phase.describe()}]",
            event=event,
            expected=expected,
            state=phase,
        )


_HANDLERS = {
    EventType.RUN_STARTED: RunValidator._on_run_started,
    EventType.RUN_FINISHED: RunValidator._on_run_finished,
    EventType.RUN_ERROR: RunValidator._on_run_error,
    EventType.STEP_STARTED: RunValidator._on_step_started,
    EventType.STEP_FINISHED: RunValidator._on_step_finished,
    EventType.TEXT_MESSAGE_START: RunValidator._on_message_start,
    EventType.TEXT_MESSAGE_CONTENT: RunValidator._on_message_content,
    EventType.TEXT_MESSAGE_END: RunValidator._on_message_end,
    EventType.TOOL_CALL_START: RunValidator._on_tool_call_start,
    EventType.TOOL_CALL_ARGS: RunValidator._on_tool_call_args,
    EventType.TOOL_CALL_END: RunValidator._on_tool_call_end,
    EventType.TOOL_CALL_RESULT: RunValidator._on_tool_call_result,
    EventType.THINKING_START: RunValidator._on_thinking_start,
    EventType.THINKING_END: RunValidator._on_thinking_end,
    EventType.THINKING_TEXT_MESSAGE_START: RunValidator._on_thinking_message_start,
    EventType.THINKING_TEXT_MESSAGE_CONTENT: RunValidator._on_thinking_message_content,
    EventType.THINKING_TEXT_MESSAGE_END: RunValidator._on_thinking_message_end,
}
