"""Unit tests for client transports.

Tests:
- Base state machine and error wrapping
- HTTP transport against httpx.MockTransport
- WebSocket transport with a patched connection
- Local and mock transports
- Transport factory
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from agent_protocol_runtime.agent import FunctionAgent
from agent_protocol_runtime.client.transport import (
    HTTPAgentTransport,
    LocalAgentTransport,
    MockAgentTransport,
    TransportState,
    WebSocketAgentTransport,
    create_transport,
)
from agent_protocol_runtime.config import TransportConfig
from agent_protocol_runtime.encoding import (
    BINARY_MEDIA_TYPE,
    BinaryEventCodec,
    TextEventCodec,
)
from agent_protocol_runtime.errors import DecodeError, TransportError
from agent_protocol_runtime.events import (
    BaseEvent,
    RunFinishedEvent,
    RunStartedEvent,
    TextMessageContentEvent,
)
from agent_protocol_runtime.types import RunAgentInput


async def collect(transport, run_input: RunAgentInput) -> list[BaseEvent]:
    await transport.open(run_input)
    try:
        return [event async for event in transport.events()]
    finally:
        await transport.close()


# =============================================================================
# HTTP Transport Tests
# =============================================================================


class TestHTTPAgentTransport:
    """Tests for HTTPAgentTransport."""

    @pytest.mark.asyncio
    async def test_posts_input_and_decodes_text(
        self, run_input: RunAgentInput, hello_run: list[BaseEvent]
    ) -> None:
        """The input is POSTed as camelCase JSON; the SSE body is decoded."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=TextEventCodec().encode_all(hello_run),
            )

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = HTTPAgentTransport(TransportConfig(url="http://agent/run"), client=client)

        events = await collect(transport, run_input)

        assert events == hello_run
        request = seen[0]
        assert request.method == "POST"
        assert request.headers["accept"] == "text/event-stream"
        assert json.loads(request.content)["threadId"] == "thread_1"
        assert transport.state == TransportState.CLOSED
        await client.aclose()

    @pytest.mark.asyncio
    async def test_binary_negotiated_by_content_type(
        self, run_input: RunAgentInput, hello_run: list[BaseEvent]
    ) -> None:
        """The response Content-Type selects the binary decoder."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["accept"].startswith(BINARY_MEDIA_TYPE)
            return httpx.Response(
                200,
                headers={"content-type": BINARY_MEDIA_TYPE},
                content=BinaryEventCodec().encode_all(hello_run),
            )

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = HTTPAgentTransport(TransportConfig(encoding="binary"), client=client)

        assert await collect(transport, run_input) == hello_run
        assert isinstance(transport.codec, BinaryEventCodec)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_text_fallback_from_binary_client(
        self, run_input: RunAgentInput, hello_run: list[BaseEvent]
    ) -> None:
        """A server that only speaks text is still understood."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=TextEventCodec().encode_all(hello_run),
            )

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = HTTPAgentTransport(TransportConfig(encoding="binary"), client=client)

        assert await collect(transport, run_input) == hello_run
        await client.aclose()

    @pytest.mark.asyncio
    async def test_http_error_status(self, run_input: RunAgentInput) -> None:
        """A 4xx/5xx response fails open() with the status and body."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="overloaded")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = HTTPAgentTransport(client=client)

        with pytest.raises(TransportError, match="HTTP 503: overloaded"):
            await transport.open(run_input)
        assert transport.state == TransportState.CLOSED
        await client.aclose()

    @pytest.mark.asyncio
    async def test_connection_failure(self, run_input: RunAgentInput) -> None:
        """Network errors become TransportError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = HTTPAgentTransport(client=client)

        with pytest.raises(TransportError, match="not reachable"):
            await transport.open(run_input)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_wrong_content_type(self, run_input: RunAgentInput) -> None:
        """A JSON response is not an event stream."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"hello": "world"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = HTTPAgentTransport(client=client)

        with pytest.raises(TransportError, match="content type"):
            await transport.open(run_input)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_truncated_body(self, run_input: RunAgentInput) -> None:
        """A body ending mid-frame is a decode error."""

        def handler(request: httpx.Request) -> httpx.Response:
            frame = BinaryEventCodec().encode(RunStartedEvent(thread_id="t", run_id="r"))
            return httpx.Response(
                200, headers={"content-type": BINARY_MEDIA_TYPE}, content=frame[:-1]
            )

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = HTTPAgentTransport(client=client)
        await transport.open(run_input)

        with pytest.raises(DecodeError):
            async for _ in transport.events():
                pass
        await transport.close()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_extra_headers_sent(self, run_input: RunAgentInput) -> None:
        """Configured headers are added to the request."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["authorization"] == "Bearer abc"
            return httpx.Response(200, headers={"content-type": "text/event-stream"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        config = TransportConfig(headers={"Authorization": "Bearer abc"})
        assert await collect(HTTPAgentTransport(config, client=client), run_input) == []
        await client.aclose()


# =============================================================================
# WebSocket Transport Tests
# =============================================================================


class FakeConnection:
    """Stand-in for a websockets client connection."""

    def __init__(self, messages: list[str | bytes]) -> None:
        self.messages = messages
        self.sent: list[str] = []
        self.close = AsyncMock()

    async def send(self, data: str) -> None:
        self.sent.append(data)

    async def __aiter__(self) -> AsyncIterator[str | bytes]:
        for message in self.messages:
            yield message


class TestWebSocketAgentTransport:
    """Tests for WebSocketAgentTransport."""

    def test_ws_url(self) -> None:
        """http(s) URLs map to ws(s) with the encoding query parameter."""
        transport = WebSocketAgentTransport(
            TransportConfig(mode="websocket", url="https://agents.example/run", encoding="binary")
        )
        assert transport._ws_url() == "wss://agents.example/run?encoding=binary"

    def test_ws_url_existing_query(self) -> None:
        """An existing query string is extended."""
        transport = WebSocketAgentTransport(
            TransportConfig(mode="websocket", url="http://host/run?tenant=a")
        )
        assert transport._ws_url() == "ws://host/run?tenant=a&encoding=text"

    @pytest.mark.asyncio
    async def test_sends_input_and_decodes_messages(
        self, run_input: RunAgentInput, hello_run: list[BaseEvent]
    ) -> None:
        """Text messages carry SSE frames; bytes messages binary frames."""
        text, binary = TextEventCodec(), BinaryEventCodec()
        messages: list[str | bytes] = [
            text.encode(hello_run[0]).decode(),
            *(binary.encode(event) for event in hello_run[1:]),
        ]
        connection = FakeConnection(messages)

        with patch("websockets.connect", AsyncMock(return_value=connection)) as connect:
            transport = WebSocketAgentTransport(TransportConfig(mode="websocket"))
            events = await collect(transport, run_input)

        assert events == hello_run
        assert json.loads(connection.sent[0])["runId"] == "run_1"
        assert connect.call_args.kwargs["ping_interval"] == 30
        connection.close.assert_awaited_once()


# =============================================================================
# Local and Mock Transport Tests
# =============================================================================


class TestLocalAgentTransport:
    """Tests for LocalAgentTransport."""

    @pytest.mark.asyncio
    async def test_direct_events(self, run_input: RunAgentInput, hello_run: list[BaseEvent]) -> None:
        """Events flow straight from the agent."""

        async def agent(input: RunAgentInput):
            for event in hello_run:
                yield event

        transport = LocalAgentTransport(FunctionAgent(agent))
        assert await collect(transport, run_input) == hello_run

    @pytest.mark.asyncio
    async def test_wire_faithful_mode(self, run_input: RunAgentInput) -> None:
        """With a codec, events pass through encode/decode."""

        produced = [RunStartedEvent(thread_id="t", run_id="r", timestamp=42, raw_event={"a": 1})]

        async def agent(input: RunAgentInput):
            for event in produced:
                yield event

        transport = LocalAgentTransport(FunctionAgent(agent), codec=BinaryEventCodec())
        events = await collect(transport, run_input)

        assert events == produced
        assert events[0] is not produced[0]

    @pytest.mark.asyncio
    async def test_unserializable_event_fails(self, run_input: RunAgentInput) -> None:
        """An event the codec cannot encode is a transport error."""

        async def agent(input: RunAgentInput):
            yield RunStartedEvent(thread_id="t", run_id="r", raw_event=object())

        transport = LocalAgentTransport(FunctionAgent(agent), codec=TextEventCodec())
        with pytest.raises(TransportError):
            await collect(transport, run_input)

    @pytest.mark.asyncio
    async def test_dict_events_parsed(self, run_input: RunAgentInput) -> None:
        """Agents may yield wire dicts."""

        async def agent(input: RunAgentInput):
            yield {"type": "RUN_STARTED", "threadId": "t", "runId": "r"}

        events = await collect(LocalAgentTransport(FunctionAgent(agent)), run_input)
        assert events == [RunStartedEvent(thread_id="t", run_id="r")]

    @pytest.mark.asyncio
    async def test_agent_exception_wrapped(self, run_input: RunAgentInput) -> None:
        """Producer exceptions become TransportError."""

        async def agent(input: RunAgentInput):
            yield RunStartedEvent(thread_id="t", run_id="r")
            raise RuntimeError("model crashed")

        transport = LocalAgentTransport(FunctionAgent(agent))
        await transport.open(run_input)
        with pytest.raises(TransportError, match="model crashed"):
            async for _ in transport.events():
                pass
        await transport.close()


class TestMockAgentTransport:
    """Tests for MockAgentTransport and the base state machine."""

    @pytest.mark.asyncio
    async def test_records_input(self, run_input: RunAgentInput) -> None:
        """open() records the run input."""
        transport = MockAgentTransport.from_events([])
        await collect(transport, run_input)

        assert transport.recorded_inputs == [run_input]
        assert transport.closed

    @pytest.mark.asyncio
    async def test_single_use(self, run_input: RunAgentInput) -> None:
        """A transport cannot be opened twice."""
        transport = MockAgentTransport.from_events([])
        await transport.open(run_input)
        with pytest.raises(TransportError, match="already used"):
            await transport.open(run_input)

    @pytest.mark.asyncio
    async def test_events_requires_open(self) -> None:
        """Reading before open() fails."""
        transport = MockAgentTransport.from_events([])
        with pytest.raises(TransportError, match="not connected"):
            async for _ in transport.events():
                pass

    @pytest.mark.asyncio
    async def test_pull_driven_reads(self, run_input: RunAgentInput) -> None:
        """Chunks are only read as events are requested."""
        events = [
            RunStartedEvent(thread_id="t", run_id="r"),
            TextMessageContentEvent(message_id="m", delta="x"),
            RunFinishedEvent(thread_id="t", run_id="r"),
        ]
        transport = MockAgentTransport.from_events(events)
        await transport.open(run_input)

        stream = transport.events()
        await stream.__anext__()
        assert transport.chunks_read == 1
        await stream.aclose()
        await transport.close()

    @pytest.mark.asyncio
    async def test_close_idempotent(self, run_input: RunAgentInput) -> None:
        """close() can be called repeatedly."""
        transport = MockAgentTransport.from_events([])
        async with transport:
            await transport.open(run_input)
        await transport.close()
        assert transport.state == TransportState.CLOSED


# =============================================================================
# Factory Tests
# =============================================================================


class TestCreateTransport:
    """Tests for create_transport."""

    def test_http(self) -> None:
        """mode=http builds an HTTP transport."""
        assert isinstance(create_transport(TransportConfig(mode="http")), HTTPAgentTransport)

    def test_websocket(self) -> None:
        """mode=websocket builds a WebSocket transport."""
        transport = create_transport(TransportConfig(mode="websocket"))
        assert isinstance(transport, WebSocketAgentTransport)

    def test_local_requires_agent(self) -> None:
        """mode=local needs an agent."""
        with pytest.raises(ValueError, match="requires an agent"):
            create_transport(TransportConfig(mode="local"))

    def test_local(self) -> None:
        """mode=local wraps the agent."""

        async def agent(input: RunAgentInput):
            yield RunStartedEvent(thread_id="t", run_id="r")

        transport = create_transport(TransportConfig(mode="local"), FunctionAgent(agent))
        assert isinstance(transport, LocalAgentTransport)
