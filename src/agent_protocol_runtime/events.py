"""Event definitions for the agent protocol.

Every run produces an ordered stream of events. Each event:
- Has a ``type`` from the fixed EventType enumeration
- Has an optional ``timestamp`` (integer milliseconds since the epoch)
- Has an optional ``raw_event`` carrying the producer's original payload

Events are immutable once constructed. The set of event shapes is closed
(the ``Event`` tagged union) with two open variants: RawEvent, which carries
an arbitrary opaque payload, and CustomEvent, for application signals.

Example (wire form):
    {"type": "TEXT_MESSAGE_CONTENT", "messageId": "m1", "delta": "Hello"}
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .errors import DecodeError
from .types import Message

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """All event types in the protocol."""

    # Run lifecycle
    RUN_STARTED = "RUN_STARTED"
    RUN_FINISHED = "RUN_FINISHED"
    RUN_ERROR = "RUN_ERROR"
    STEP_STARTED = "STEP_STARTED"
    STEP_FINISHED = "STEP_FINISHED"

    # Text messages
    TEXT_MESSAGE_START = "TEXT_MESSAGE_START"
    TEXT_MESSAGE_CONTENT = "TEXT_MESSAGE_CONTENT"
    TEXT_MESSAGE_END = "TEXT_MESSAGE_END"
    TEXT_MESSAGE_CHUNK = "TEXT_MESSAGE_CHUNK"

    # Tool calls
    TOOL_CALL_START = "TOOL_CALL_START"
    TOOL_CALL_ARGS = "TOOL_CALL_ARGS"
    TOOL_CALL_END = "TOOL_CALL_END"
    TOOL_CALL_CHUNK = "TOOL_CALL_CHUNK"
    TOOL_CALL_RESULT = "TOOL_CALL_RESULT"

    # Thinking/reasoning
    THINKING_START = "THINKING_START"
    THINKING_END = "THINKING_END"
    THINKING_TEXT_MESSAGE_START = "THINKING_TEXT_MESSAGE_START"
    THINKING_TEXT_MESSAGE_CONTENT = "THINKING_TEXT_MESSAGE_CONTENT"
    THINKING_TEXT_MESSAGE_END = "THINKING_TEXT_MESSAGE_END"

    # State synchronization
    STATE_SNAPSHOT = "STATE_SNAPSHOT"
    STATE_DELTA = "STATE_DELTA"
    MESSAGES_SNAPSHOT = "MESSAGES_SNAPSHOT"

    # Escape hatches
    RAW = "RAW"
    CUSTOM = "CUSTOM"


TERMINAL_EVENT_TYPES = frozenset({EventType.RUN_FINISHED, EventType.RUN_ERROR})

# Timestamps travel as signed 64-bit integers in the binary codec
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


def now_ms() -> int:
    """Current time in integer milliseconds, the timestamp resolution on the wire."""
    return int(time.time() * 1000)


class BaseEvent(BaseModel):
    """Fields shared by every event."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    type: EventType
    timestamp: int | None = Field(default=None, ge=INT64_MIN, le=INT64_MAX)
    raw_event: Any = None

    def is_terminal(self) -> bool:
        """Check if this event ends the run."""
        return self.type in TERMINAL_EVENT_TYPES

    def to_wire(self) -> dict[str, Any]:
        """Dump to a JSON-compatible dict using wire field names.

        ``type`` is always the first key. Optional fields left at ``None``
        are omitted; required fields are always present, even when ``None``.
        """
        wire: dict[str, Any] = {"type": self.type.value}
        for _, key, value in self.wire_fields():
            wire[key] = value
        return wire

    def wire_fields(self) -> list[tuple[str, str, Any]]:
        """``(field name, wire key, JSON value)`` for every field on the wire.

        Nested models (messages, tool calls) drop their own ``None`` fields.
        Opaque payloads such as snapshots are written as given.
        """
        fields: list[tuple[str, str, Any]] = []
        for name, info in type(self).model_fields.items():
            if name == "type":
                continue
            value = getattr(self, name)
            if value is None and not info.is_required():
                continue
            fields.append((name, info.alias or name, _wire_value(value)))
        return fields


_json_adapter: TypeAdapter[Any] = TypeAdapter(Any)


def _wire_value(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(value, list) and any(isinstance(item, BaseModel) for item in value):
        return [_wire_value(item) for item in value]
    return _json_adapter.dump_python(value, mode="json")


# =============================================================================
# Run lifecycle
# =============================================================================


class RunStartedEvent(BaseEvent):
    """First event of every run."""

    type: Literal[EventType.RUN_STARTED] = EventType.RUN_STARTED
    thread_id: str
    run_id: str


class RunFinishedEvent(BaseEvent):
    """Successful end of a run. ``result`` is an optional opaque value."""

    type: Literal[EventType.RUN_FINISHED] = EventType.RUN_FINISHED
    thread_id: str
    run_id: str
    result: Any = None


class RunErrorEvent(BaseEvent):
    """Failed end of a run."""

    type: Literal[EventType.RUN_ERROR] = EventType.RUN_ERROR
    message: str
    code: str | None = None


class StepStartedEvent(BaseEvent):
    type: Literal[EventType.STEP_STARTED] = EventType.STEP_STARTED
    step_name: str


class StepFinishedEvent(BaseEvent):
    type: Literal[EventType.STEP_FINISHED] = EventType.STEP_FINISHED
    step_name: str


# =============================================================================
# Text messages
# =============================================================================


class TextMessageStartEvent(BaseEvent):
    type: Literal[EventType.TEXT_MESSAGE_START] = EventType.TEXT_MESSAGE_START
    message_id: str
    role: Literal["assistant"] = "assistant"


class TextMessageContentEvent(BaseEvent):
    """A fragment of an open message's text. Empty fragments are rejected."""

    type: Literal[EventType.TEXT_MESSAGE_CONTENT] = EventType.TEXT_MESSAGE_CONTENT
    message_id: str
    delta: str

    @field_validator("delta")
    @classmethod
    def _delta_not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("delta must not be an empty string")
        return value


class TextMessageEndEvent(BaseEvent):
    type: Literal[EventType.TEXT_MESSAGE_END] = EventType.TEXT_MESSAGE_END
    message_id: str


class TextMessageChunkEvent(BaseEvent):
    """Shorthand that the client expands into start/content/end events."""

    type: Literal[EventType.TEXT_MESSAGE_CHUNK] = EventType.TEXT_MESSAGE_CHUNK
    message_id: str | None = None
    role: Literal["assistant"] | None = None
    delta: str | None = None


# =============================================================================
# Tool calls
# =============================================================================


class ToolCallStartEvent(BaseEvent):
    type: Literal[EventType.TOOL_CALL_START] = EventType.TOOL_CALL_START
    tool_call_id: str
    tool_call_name: str
    parent_message_id: str | None = None


class ToolCallArgsEvent(BaseEvent):
    type: Literal[EventType.TOOL_CALL_ARGS] = EventType.TOOL_CALL_ARGS
    tool_call_id: str
    delta: str


class ToolCallEndEvent(BaseEvent):
    type: Literal[EventType.TOOL_CALL_END] = EventType.TOOL_CALL_END
    tool_call_id: str


class ToolCallChunkEvent(BaseEvent):
    """Shorthand that the client expands into start/args/end events."""

    type: Literal[EventType.TOOL_CALL_CHUNK] = EventType.TOOL_CALL_CHUNK
    tool_call_id: str | None = None
    tool_call_name: str | None = None
    parent_message_id: str | None = None
    delta: str | None = None


class ToolCallResultEvent(BaseEvent):
    """Output of a finished tool call, recorded as a tool message."""

    type: Literal[EventType.TOOL_CALL_RESULT] = EventType.TOOL_CALL_RESULT
    message_id: str
    tool_call_id: str
    content: str
    role: Literal["tool"] = "tool"


# =============================================================================
# Thinking
# =============================================================================


class ThinkingStartEvent(BaseEvent):
    type: Literal[EventType.THINKING_START] = EventType.THINKING_START
    title: str | None = None


class ThinkingEndEvent(BaseEvent):
    type: Literal[EventType.THINKING_END] = EventType.THINKING_END


class ThinkingTextMessageStartEvent(BaseEvent):
    type: Literal[EventType.THINKING_TEXT_MESSAGE_START] = EventType.THINKING_TEXT_MESSAGE_START


class ThinkingTextMessageContentEvent(BaseEvent):
    type: Literal[EventType.THINKING_TEXT_MESSAGE_CONTENT] = (
        EventType.THINKING_TEXT_MESSAGE_CONTENT
    )
    delta: str


class ThinkingTextMessageEndEvent(BaseEvent):
    type: Literal[EventType.THINKING_TEXT_MESSAGE_END] = EventType.THINKING_TEXT_MESSAGE_END


# =============================================================================
# State synchronization
# =============================================================================


class StateSnapshotEvent(BaseEvent):
    """Full replacement of the application state."""

    type: Literal[EventType.STATE_SNAPSHOT] = EventType.STATE_SNAPSHOT
    snapshot: Any


class StateDeltaEvent(BaseEvent):
    """Ordered RFC 6902 patch operations against the current state."""

    type: Literal[EventType.STATE_DELTA] = EventType.STATE_DELTA
    delta: list[dict[str, Any]]


class MessagesSnapshotEvent(BaseEvent):
    """Full replacement of the message log."""

    type: Literal[EventType.MESSAGES_SNAPSHOT] = EventType.MESSAGES_SNAPSHOT
    messages: list[Message]


# =============================================================================
# Escape hatches
# =============================================================================


class RawEvent(BaseEvent):
    """Opaque producer payload, passed through without structural validation.

    Unknown event types decode into this event with ``source`` set to
    ``"unknown:<type>"`` so that newer producers do not break older clients.
    """

    type: Literal[EventType.RAW] = EventType.RAW
    event: Any
    source: str | None = None


class CustomEvent(BaseEvent):
    """Application-defined signal identified by ``name``."""

    type: Literal[EventType.CUSTOM] = EventType.CUSTOM
    name: str
    value: Any


Event = Annotated[
    RunStartedEvent
    | RunFinishedEvent
    | RunErrorEvent
    | StepStartedEvent
    | StepFinishedEvent
    | TextMessageStartEvent
    | TextMessageContentEvent
    | TextMessageEndEvent
    | TextMessageChunkEvent
    | ToolCallStartEvent
    | ToolCallArgsEvent
    | ToolCallEndEvent
    | ToolCallChunkEvent
    | ToolCallResultEvent
    | ThinkingStartEvent
    | ThinkingEndEvent
    | ThinkingTextMessageStartEvent
    | ThinkingTextMessageContentEvent
    | ThinkingTextMessageEndEvent
    | StateSnapshotEvent
    | StateDeltaEvent
    | MessagesSnapshotEvent
    | RawEvent
    | CustomEvent,
    Field(discriminator="type"),
]

EVENT_CLASSES: dict[EventType, type[BaseEvent]] = {
    cls.model_fields["type"].default: cls
    for cls in (
        RunStartedEvent,
        RunFinishedEvent,
        RunErrorEvent,
        StepStartedEvent,
        StepFinishedEvent,
        TextMessageStartEvent,
        TextMessageContentEvent,
        TextMessageEndEvent,
        TextMessageChunkEvent,
        ToolCallStartEvent,
        ToolCallArgsEvent,
        ToolCallEndEvent,
        ToolCallChunkEvent,
        ToolCallResultEvent,
        ThinkingStartEvent,
        ThinkingEndEvent,
        ThinkingTextMessageStartEvent,
        ThinkingTextMessageContentEvent,
        ThinkingTextMessageEndEvent,
        StateSnapshotEvent,
        StateDeltaEvent,
        MessagesSnapshotEvent,
        RawEvent,
        CustomEvent,
    )
}

_event_adapter: TypeAdapter[Event] = TypeAdapter(Event)
_KNOWN_TYPES = frozenset(t.value for t in EventType)


def parse_event(data: dict[str, Any]) -> BaseEvent:
    """Validate one wire dict into an event.

    Unknown ``type`` values become a RawEvent instead of failing.

    Raises:
        DecodeError: If the dict has no type or fails validation
    """
    if not isinstance(data, dict):
        raise DecodeError(f"Event must be an object, got {type(data).__name__}")

    event_type = data.get("type")
    if not isinstance(event_type, str):
        raise DecodeError("Event is missing its 'type' discriminator")

    if event_type not in _KNOWN_TYPES:
        logger.debug(f"Unknown event type {event_type!r}, decoding as RAW")
        return RawEvent(
            event=data,
            source=f"unknown:{event_type}",
            timestamp=data.get("timestamp") if isinstance(data.get("timestamp"), int) else None,
        )

    try:
        return _event_adapter.validate_python(data)
    except ValidationError as e:
        raise DecodeError(f"Invalid {event_type} event: {e}") from e
