"""Client-side transports for agent runs.

A transport opens one run against an agent and yields the decoded events
in arrival order. Reading is pull-driven: the next frame is only read from
the wire when the consumer asks for the next event, so a slow consumer
pauses the transport instead of letting frames pile up in memory.

Implementations:
- HTTPAgentTransport: POST the run input, stream the response body
- WebSocketAgentTransport: send the run input, one frame per message
- LocalAgentTransport: invoke an in-process agent, optionally looping
  every event through a codec
- MockAgentTransport: scripted wire bytes, for tests
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable
from enum import Enum
from typing import Any

import httpx

from ..agent import Agent
from ..config import TransportConfig
from ..encoding import (
    BinaryEventCodec,
    EventCodec,
    TextEventCodec,
    accept_header,
    codec_for_content_type,
    get_codec,
)
from ..errors import AgentProtocolError, TransportError
from ..events import BaseEvent, parse_event
from ..types import RunAgentInput

logger = logging.getLogger(__name__)


class TransportState(str, Enum):
    """Connection state machine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


class BaseAgentTransport(ABC):
    """Base class for run transports.

    Provides:
    - State management
    - Error wrapping (anything unexpected becomes TransportError)
    - Async context manager support

    A transport instance serves exactly one run.
    """

    def __init__(self, config: TransportConfig) -> None:
        self.config = config
        self._state = TransportState.DISCONNECTED
        self._lock = asyncio.Lock()

    @property
    def state(self) -> TransportState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == TransportState.CONNECTED

    async def open(self, input: RunAgentInput) -> None:
        """Start the run on the agent side.

        Raises:
            TransportError: If the connection or request fails
        """
        async with self._lock:
            if self._state != TransportState.DISCONNECTED:
                raise TransportError(f"Transport already used (state: {self._state.value})")

            self._state = TransportState.CONNECTING
            try:
                await self._do_open(input)
            except AgentProtocolError:
                self._state = TransportState.CLOSED
                await self._safe_close()
                raise
            except Exception as e:
                self._state = TransportState.CLOSED
                await self._safe_close()
                raise TransportError(f"Failed to open run: {e}") from e

            self._state = TransportState.CONNECTED
            logger.info(f"{self.__class__.__name__} opened run {input.run_id}")

    async def events(self) -> AsyncIterator[BaseEvent]:
        """Yield decoded events until the agent side closes the stream.

        Raises:
            TransportError: On connection failure
            DecodeError: On malformed frames
        """
        if not self.is_connected:
            raise TransportError("Transport not connected")

        try:
            async for event in self._receive_events():
                yield event
        except AgentProtocolError:
            raise
        except Exception as e:
            if self._state == TransportState.CLOSED:
                # Closed underneath us (cancellation); end quietly
                return
            logger.error(f"{self.__class__.__name__} receive error: {e}")
            raise TransportError(f"Transport error: {e}") from e

    async def close(self) -> None:
        """Release the connection. Safe to call more than once."""
        if self._state == TransportState.CLOSED:
            return
        self._state = TransportState.CLOSED
        await self._safe_close()
        logger.debug(f"{self.__class__.__name__} closed")

    async def _safe_close(self) -> None:
        try:
            await self._do_close()
        except Exception as e:
            logger.warning(f"Error while closing {self.__class__.__name__}: {e}")

    # Abstract methods for subclasses
    @abstractmethod
    async def _do_open(self, input: RunAgentInput) -> None:
        """Implementation-specific connection and request logic."""
        ...

    @abstractmethod
    def _receive_events(self) -> AsyncIterator[BaseEvent]:
        """Implementation-specific receive logic. Must be an async generator."""
        ...

    @abstractmethod
    async def _do_close(self) -> None:
        """Implementation-specific cleanup logic."""
        ...

    async def __aenter__(self) -> BaseAgentTransport:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


class HTTPAgentTransport(BaseAgentTransport):
    """Run over HTTP: POST the input, stream the encoded events back.

    The request's Accept header announces the preferred encoding; the
    response's Content-Type selects the decoder.
    """

    def __init__(
        self,
        config: TransportConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(config or TransportConfig(mode="http"))
        self._client = client
        self._owns_client = client is None
        self._response: httpx.Response | None = None
        self._codec: EventCodec | None = None

    @property
    def codec(self) -> EventCodec | None:
        """Codec selected from the response, once open."""
        return self._codec

    async def _do_open(self, input: RunAgentInput) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout, read=None),
            )

        headers = {"Accept": accept_header(self.config.encoding), **self.config.headers}
        request = self._client.build_request(
            "POST",
            self.config.url,
            json=input.to_wire(),
            headers=headers,
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.RequestError as e:
            raise TransportError(f"Agent not reachable at {self.config.url}: {e}") from e

        self._response = response
        if response.status_code >= 400:
            body = (await response.aread()).decode("utf-8", errors="replace")
            raise TransportError(f"Agent returned HTTP {response.status_code}: {body[:200]}")

        self._codec = codec_for_content_type(response.headers.get("content-type"))
        logger.debug(f"Decoding {self._codec.name} stream from {self.config.url}")

    async def _receive_events(self) -> AsyncIterator[BaseEvent]:
        if self._response is None or self._codec is None:
            raise TransportError("HTTP response not open")

        decoder = self._codec.decoder()
        async for chunk in self._response.aiter_bytes():
            for event in decoder.feed(chunk):
                yield event
        decoder.finish()

    async def _do_close(self) -> None:
        if self._response is not None:
            await self._response.aclose()
            self._response = None
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class WebSocketAgentTransport(BaseAgentTransport):
    """Run over WebSocket.

    Wire format:
    - Client sends the run input as one JSON text message
    - Server sends one frame per message: text messages carry SSE records,
      binary messages carry length-prefixed binary frames
    - Server closes the socket after the terminal event
    """

    def __init__(self, config: TransportConfig | None = None) -> None:
        super().__init__(config or TransportConfig(mode="websocket"))
        self._ws: Any = None  # websockets ClientConnection

    def _ws_url(self) -> str:
        url = self.config.url.replace("http://", "ws://").replace("https://", "wss://")
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}encoding={self.config.encoding}"

    async def _do_open(self, input: RunAgentInput) -> None:
        import websockets

        self._ws = await websockets.connect(
            self._ws_url(),
            additional_headers=self.config.headers or None,
            open_timeout=self.config.timeout,
            ping_interval=30,
            ping_timeout=10,
        )
        await self._ws.send(json.dumps(input.to_wire()))

    async def _receive_events(self) -> AsyncIterator[BaseEvent]:
        if self._ws is None:
            raise TransportError("WebSocket not connected")

        text_decoder = TextEventCodec().decoder()
        binary_decoder = BinaryEventCodec().decoder()
        async for message in self._ws:
            if isinstance(message, str):
                events = text_decoder.feed(message.encode("utf-8"))
            else:
                events = binary_decoder.feed(message)
            for event in events:
                yield event
        text_decoder.finish()
        binary_decoder.finish()

    async def _do_close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None


class LocalAgentTransport(BaseAgentTransport):
    """Invoke an in-process agent directly.

    With a codec, every produced event is encoded and decoded again so the
    run sees exactly what a remote client would (wire-faithful mode).
    """

    def __init__(
        self,
        agent: Agent,
        config: TransportConfig | None = None,
        codec: EventCodec | None = None,
    ) -> None:
        super().__init__(config or TransportConfig(mode="local"))
        self._agent = agent
        self._codec = codec
        self._stream: AsyncIterator[BaseEvent] | None = None

    async def _do_open(self, input: RunAgentInput) -> None:
        self._stream = self._agent.run(input)

    async def _receive_events(self) -> AsyncIterator[BaseEvent]:
        if self._stream is None:
            raise TransportError("Agent run not started")

        decoder = self._codec.decoder() if self._codec else None
        async for produced in self._stream:
            event = produced if isinstance(produced, BaseEvent) else parse_event(produced)
            if decoder is None:
                yield event
                continue
            for decoded in decoder.feed(self._codec.encode(event)):
                yield decoded
        if decoder is not None:
            decoder.finish()

    async def _do_close(self) -> None:
        stream, self._stream = self._stream, None
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()


class MockAgentTransport(BaseAgentTransport):
    """Scripted transport for testing.

    Feeds predefined wire chunks through a codec. No actual I/O.

    Usage:
        codec = TextEventCodec()
        transport = MockAgentTransport(codec, [codec.encode(e) for e in events])
        run = run_agent(input, transport=transport)

        assert transport.recorded_inputs[0].run_id == input.run_id
    """

    def __init__(
        self,
        codec: EventCodec,
        chunks: Iterable[bytes],
        *,
        hang: bool = False,
        chunk_delay: float = 0.0,
    ) -> None:
        """Initialize the mock.

        Args:
            codec: Codec used to decode the chunks
            chunks: Raw wire bytes, delivered one chunk per read
            hang: After the last chunk, block forever instead of closing
            chunk_delay: Seconds to wait before each chunk
        """
        super().__init__(TransportConfig(mode="local"))
        self._codec = codec
        self._chunks = list(chunks)
        self._hang = hang
        self._chunk_delay = chunk_delay
        self._recorded_inputs: list[RunAgentInput] = []
        self.chunks_read = 0
        self.closed = False

    @classmethod
    def from_events(
        cls,
        events: Iterable[BaseEvent],
        codec: EventCodec | None = None,
        **kwargs: Any,
    ) -> MockAgentTransport:
        """Script one frame per event."""
        codec = codec or get_codec("text")
        return cls(codec, [codec.encode(event) for event in events], **kwargs)

    @property
    def recorded_inputs(self) -> list[RunAgentInput]:
        """Inputs passed to open()."""
        return self._recorded_inputs.copy()

    async def _do_open(self, input: RunAgentInput) -> None:
        self._recorded_inputs.append(input)

    async def _receive_events(self) -> AsyncIterator[BaseEvent]:
        decoder = self._codec.decoder()
        for chunk in self._chunks:
            if self._chunk_delay:
                await asyncio.sleep(self._chunk_delay)
            self.chunks_read += 1
            for event in decoder.feed(chunk):
                yield event
        if self._hang:
            await asyncio.Event().wait()
        decoder.finish()

    async def _do_close(self) -> None:
        self.closed = True


def create_transport(
    config: TransportConfig,
    agent: Agent | None = None,
    **kwargs: Any,
) -> BaseAgentTransport:
    """Create the transport selected by ``config.mode``.

    Args:
        config: Transport configuration
        agent: In-process agent (required for "local" mode)
        **kwargs: Passed to the transport constructor

    Raises:
        ValueError: If "local" mode is requested without an agent
    """
    if config.mode == "http":
        return HTTPAgentTransport(config, **kwargs)
    if config.mode == "websocket":
        return WebSocketAgentTransport(config, **kwargs)
    if agent is None:
        raise ValueError("Local transport mode requires an agent")
    return LocalAgentTransport(agent, config, **kwargs)


__all__ = [
    "BaseAgentTransport",
    "HTTPAgentTransport",
    "LocalAgentTransport",
    "MockAgentTransport",
    "TransportState",
    "WebSocketAgentTransport",
    "create_transport",
]
