"""Unit tests for chunk expansion."""

from __future__ import annotations

import pytest

from agent_protocol_runtime.chunks import ChunkExpander
from agent_protocol_runtime.errors import DecodeError
from agent_protocol_runtime.events import (
    CustomEvent,
    RunFinishedEvent,
    TextMessageChunkEvent,
    TextMessageContentEvent,
    TextMessageEndEvent,
    TextMessageStartEvent,
    ToolCallArgsEvent,
    ToolCallChunkEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
)


class TestChunkExpander:
    """Tests for ChunkExpander."""

    def test_text_chunks_expand(self) -> None:
        """The first chunk opens the message; later ones only add content."""
        expander = ChunkExpander()

        assert expander.expand(TextMessageChunkEvent(message_id="m1", delta="He")) == [
            TextMessageStartEvent(message_id="m1"),
            TextMessageContentEvent(message_id="m1", delta="He"),
        ]
        assert expander.expand(TextMessageChunkEvent(delta="llo")) == [
            TextMessageContentEvent(message_id="m1", delta="llo"),
        ]
        assert expander.pending

    def test_non_chunk_event_closes_message(self) -> None:
        """Any other event closes the chunk-opened message first."""
        expander = ChunkExpander()
        expander.expand(TextMessageChunkEvent(message_id="m1", delta="Hi"))

        finished = RunFinishedEvent(thread_id="t", run_id="r")
        assert expander.expand(finished) == [TextMessageEndEvent(message_id="m1"), finished]
        assert not expander.pending

    def test_new_message_id_closes_previous(self) -> None:
        """A chunk for a different message ends the current one."""
        expander = ChunkExpander()
        expander.expand(TextMessageChunkEvent(message_id="m1", delta="a"))

        assert expander.expand(TextMessageChunkEvent(message_id="m2", delta="b")) == [
            TextMessageEndEvent(message_id="m1"),
            TextMessageStartEvent(message_id="m2"),
            TextMessageContentEvent(message_id="m2", delta="b"),
        ]

    def test_empty_delta_only_opens(self) -> None:
        """A chunk with no text opens the message without content."""
        expander = ChunkExpander()
        assert expander.expand(TextMessageChunkEvent(message_id="m1")) == [
            TextMessageStartEvent(message_id="m1"),
        ]

    def test_first_text_chunk_needs_id(self) -> None:
        """Without an open message the chunk must name one."""
        with pytest.raises(DecodeError, match="messageId"):
            ChunkExpander().expand(TextMessageChunkEvent(delta="x"))

    def test_tool_call_chunks_expand(self) -> None:
        """Tool call chunks expand to start/args/end."""
        expander = ChunkExpander()

        assert expander.expand(
            ToolCallChunkEvent(tool_call_id="tc1", tool_call_name="search", delta='{"q":')
        ) == [
            ToolCallStartEvent(tool_call_id="tc1", tool_call_name="search"),
            ToolCallArgsEvent(tool_call_id="tc1", delta='{"q":'),
        ]
        assert expander.expand(ToolCallChunkEvent(delta='"x"}')) == [
            ToolCallArgsEvent(tool_call_id="tc1", delta='"x"}'),
        ]
        assert expander.flush() == [ToolCallEndEvent(tool_call_id="tc1")]

    def test_first_tool_chunk_needs_name(self) -> None:
        """A new tool call must be named."""
        with pytest.raises(DecodeError, match="toolCallName"):
            ChunkExpander().expand(ToolCallChunkEvent(tool_call_id="tc1", delta="{}"))

    def test_custom_events_do_not_close(self) -> None:
        """RAW and CUSTOM pass through without closing pending chunks."""
        expander = ChunkExpander()
        expander.expand(TextMessageChunkEvent(message_id="m1", delta="a"))

        custom = CustomEvent(name="progress", value=1)
        assert expander.expand(custom) == [custom]
        assert expander.pending

    def test_explicit_events_pass_through(self) -> None:
        """Without pending chunks, events are returned unchanged."""
        event = TextMessageStartEvent(message_id="m1")
        assert ChunkExpander().expand(event) == [event]
