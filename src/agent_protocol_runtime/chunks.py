"""Expansion of chunk events into explicit lifecycle events.

Producers may send TEXT_MESSAGE_CHUNK and TOOL_CALL_CHUNK instead of the
start/content/end triples. The client expands them before validation so
that the run state machine only ever sees the explicit form:

    TEXT_MESSAGE_CHUNK(m1, "He")      -> TEXT_MESSAGE_START(m1), CONTENT(m1, "He")
    TEXT_MESSAGE_CHUNK(m1, "llo")     -> CONTENT(m1, "llo")
    RUN_FINISHED                      -> TEXT_MESSAGE_END(m1), RUN_FINISHED

A pending chunk-opened message or tool call is closed when a chunk for a
different id arrives or when any non-chunk event arrives.
"""

from __future__ import annotations

from .errors import DecodeError
from .events import (
    BaseEvent,
    EventType,
    TextMessageChunkEvent,
    TextMessageContentEvent,
    TextMessageEndEvent,
    TextMessageStartEvent,
    ToolCallArgsEvent,
    ToolCallChunkEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
)


class ChunkExpander:
    """Stateful chunk-to-lifecycle transformer for a single run."""

    def __init__(self) -> None:
        self._message_id: str | None = None
        self._tool_call_id: str | None = None

    @property
    def pending(self) -> bool:
        """True if a chunk-opened message or tool call is still open."""
        return self._message_id is not None or self._tool_call_id is not None

    def expand(self, event: BaseEvent) -> list[BaseEvent]:
        """Return the explicit events that replace ``event``.

        Raises:
            DecodeError: If the first chunk of a message or tool call lacks its id
        """
        if isinstance(event, TextMessageChunkEvent):
            return self._expand_text(event)
        if isinstance(event, ToolCallChunkEvent):
            return self._expand_tool_call(event)
        if event.type in (EventType.RAW, EventType.CUSTOM):
            return [event]
        return [*self.flush(), event]

    def flush(self) -> list[BaseEvent]:
        """Close whatever the chunks left open."""
        closing: list[BaseEvent] = []
        if self._message_id is not None:
            closing.append(TextMessageEndEvent(message_id=self._message_id))
            self._message_id = None
        if self._tool_call_id is not None:
            closing.append(ToolCallEndEvent(tool_call_id=self._tool_call_id))
            self._tool_call_id = None
        return closing

    def _expand_text(self, chunk: TextMessageChunkEvent) -> list[BaseEvent]:
        out: list[BaseEvent] = []
        message_id = chunk.message_id or self._message_id
        if message_id is None:
            raise DecodeError("First TEXT_MESSAGE_CHUNK must carry a messageId")

        if message_id != self._message_id:
            out.extend(self.flush())
            out.append(
                TextMessageStartEvent(
                    message_id=message_id,
                    timestamp=chunk.timestamp,
                    raw_event=chunk.raw_event,
                )
            )
            self._message_id = message_id

        if chunk.delta:
            out.append(
                TextMessageContentEvent(
                    message_id=message_id,
                    delta=chunk.delta,
                    timestamp=chunk.timestamp,
                    raw_event=chunk.raw_event,
                )
            )
        return out

    def _expand_tool_call(self, chunk: ToolCallChunkEvent) -> list[BaseEvent]:
        out: list[BaseEvent] = []
        tool_call_id = chunk.tool_call_id or self._tool_call_id
        if tool_call_id is None:
            raise DecodeError("First TOOL_CALL_CHUNK must carry a toolCallId")

        if tool_call_id != self._tool_call_id:
            if chunk.tool_call_name is None:
                raise DecodeError("First TOOL_CALL_CHUNK must carry a toolCallName")
            out.extend(self.flush())
            out.append(
                ToolCallStartEvent(
                    tool_call_id=tool_call_id,
                    tool_call_name=chunk.tool_call_name,
                    parent_message_id=chunk.parent_message_id,
                    timestamp=chunk.timestamp,
                    raw_event=chunk.raw_event,
                )
            )
            self._tool_call_id = tool_call_id

        if chunk.delta:
            out.append(
                ToolCallArgsEvent(
                    tool_call_id=tool_call_id,
                    delta=chunk.delta,
                    timestamp=chunk.timestamp,
                    raw_event=chunk.raw_event,
                )
            )
        return out
