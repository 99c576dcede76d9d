"""Integration tests for the WebSocket server adapter.

Verifies:
- Run input as the first text message
- One event per message, text or binary by ?encoding=
- Socket closed by the server after the terminal event
- Close codes for unknown encodings and invalid input
"""

from __future__ import annotations

import json
from typing import Any

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from agent_protocol_runtime.config import ServerConfig
from agent_protocol_runtime.encoding import BinaryEventCodec, TextEventCodec
from agent_protocol_runtime.events import (
    BaseEvent,
    RunFinishedEvent,
    RunStartedEvent,
    StateSnapshotEvent,
)
from agent_protocol_runtime.server import create_app
from agent_protocol_runtime.types import RunAgentInput

RUN_BODY = {"threadId": "thread_1", "runId": "run_1", "state": {"count": 3}}


async def state_agent(input: RunAgentInput):
    yield RunStartedEvent(thread_id=input.thread_id, run_id=input.run_id)
    yield StateSnapshotEvent(snapshot={"count": input.state["count"] + 1})
    yield RunFinishedEvent(thread_id=input.thread_id, run_id=input.run_id)


def receive_until_closed(ws: Any) -> tuple[list[Any], dict[str, Any]]:
    """Collect raw messages until the server closes the socket."""
    frames: list[Any] = []
    while True:
        message = ws.receive()
        if message["type"] == "websocket.close":
            return frames, message
        frames.append(message["bytes"] if message.get("bytes") is not None else message["text"])


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app(state_agent))


# =============================================================================
# Tests: Streaming
# =============================================================================


class TestWebSocketStreaming:
    """Test event streaming over WebSocket."""

    def test_text_encoding(self, client: TestClient):
        """Text encoding sends one SSE record per text message."""
        with client.websocket_connect("/ws?encoding=text") as ws:
            ws.send_text(json.dumps(RUN_BODY))
            frames, close = receive_until_closed(ws)

        assert close["code"] == 1000
        assert all(isinstance(frame, str) for frame in frames)
        events: list[BaseEvent] = []
        for frame in frames:
            events.extend(TextEventCodec().decode_all(frame.encode("utf-8")))
        assert [e.type.value for e in events] == ["RUN_STARTED", "STATE_SNAPSHOT", "RUN_FINISHED"]
        assert events[1].snapshot == {"count": 4}

    def test_binary_encoding(self, client: TestClient):
        """Binary encoding sends one binary frame per message."""
        with client.websocket_connect("/ws?encoding=binary") as ws:
            ws.send_text(json.dumps(RUN_BODY))
            frames, _ = receive_until_closed(ws)

        assert len(frames) == 3
        decoded = [BinaryEventCodec().decode_all(frame) for frame in frames]
        assert all(len(events) == 1 for events in decoded)
        assert isinstance(decoded[-1][0], RunFinishedEvent)

    def test_default_encoding(self):
        """Without ?encoding= the server default applies."""
        client = TestClient(create_app(state_agent, ServerConfig(default_encoding="binary")))
        with client.websocket_connect("/ws") as ws:
            ws.send_text(json.dumps(RUN_BODY))
            frames, _ = receive_until_closed(ws)

        assert all(isinstance(frame, bytes) for frame in frames)

    def test_route_follows_path(self):
        """The WebSocket route lives under ServerConfig.path."""
        client = TestClient(create_app(state_agent, ServerConfig(path="/agent")))
        with client.websocket_connect("/agent/ws") as ws:
            ws.send_text(json.dumps(RUN_BODY))
            frames, _ = receive_until_closed(ws)

        assert len(frames) == 3


# =============================================================================
# Tests: Rejections
# =============================================================================


class TestWebSocketRejections:
    """Test close codes for bad requests."""

    def test_unknown_encoding(self, client: TestClient):
        """An unknown encoding closes with 1003."""
        with client.websocket_connect("/ws?encoding=xml") as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()

        assert exc_info.value.code == 1003

    def test_invalid_input(self, client: TestClient):
        """An input that fails validation closes with 1007."""
        with client.websocket_connect("/ws") as ws:
            ws.send_text(json.dumps({"threadId": "thread_1"}))
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()

        assert exc_info.value.code == 1007

    def test_malformed_json(self, client: TestClient):
        """Non-JSON input is rejected the same way."""
        with client.websocket_connect("/ws") as ws:
            ws.send_text("{not json")
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()

        assert exc_info.value.code == 1007

    def test_binary_input_message(self, client: TestClient):
        """A binary first message closes with 1003."""
        with client.websocket_connect("/ws") as ws:
            ws.send_bytes(b"{}")
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()

        assert exc_info.value.code == 1003
