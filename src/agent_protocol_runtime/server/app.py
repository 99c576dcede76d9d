"""Server-side adapter: expose an agent over HTTP and WebSocket.

Routes (``path`` from ServerConfig, "/" by default):
- POST <path>       - run input as JSON body, event stream as response
- WebSocket <path>/ws?encoding=text|binary - run input as first message
- GET /health       - liveness check

The response encoding is negotiated from the request's ``Accept`` header.
With ``validate_output`` enabled every produced event is checked by the run
state machine before it is written; a producer that breaks the protocol or
raises gets its stream ended with a RUN_ERROR instead.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from ..agent import Agent, FunctionAgent
from ..chunks import ChunkExpander
from ..config import ServerConfig
from ..encoding import CODECS, EventCodec, TextEventCodec, get_codec, negotiate
from ..errors import AgentProtocolError
from ..events import BaseEvent, RunErrorEvent, RunStartedEvent, now_ms, parse_event
from ..types import RunAgentInput
from ..verify import RunValidator

logger = logging.getLogger(__name__)

AGENT_ERROR_CODE = "AGENT_ERROR"

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


async def stream_run(
    agent: Agent,
    input: RunAgentInput,
    *,
    validate_output: bool = True,
) -> AsyncIterator[BaseEvent]:
    """Run ``agent`` and yield its events, guarding the protocol.

    Producer exceptions and (when validating) protocol violations end the
    stream with a RUN_ERROR. A RUN_STARTED is emitted first if the producer
    failed before sending one, so the stream stays legal.
    """
    validator = RunValidator(thread_id=input.thread_id, run_id=input.run_id)
    expander = ChunkExpander()
    started = False

    def fail(message: str, code: str) -> list[BaseEvent]:
        events: list[BaseEvent] = []
        if not started:
            events.append(RunStartedEvent(thread_id=input.thread_id, run_id=input.run_id))
        events.append(RunErrorEvent(message=message, code=code, timestamp=now_ms()))
        return events

    stream = agent.run(input)
    try:
        async for produced in stream:
            try:
                event = produced if isinstance(produced, BaseEvent) else parse_event(produced)
                if validate_output:
                    for expanded in expander.expand(event):
                        validator.validate(expanded)
            except AgentProtocolError as e:
                logger.error(f"Agent produced an invalid stream for run {input.run_id}: {e}")
                for failure in fail(str(e), e.code):
                    yield failure
                return

            started = started or isinstance(event, RunStartedEvent)
            yield event
            if event.is_terminal():
                return
    except Exception as e:
        logger.exception(f"Agent failed during run {input.run_id}: {e}")
        for failure in fail(str(e) or e.__class__.__name__, AGENT_ERROR_CODE):
            yield failure
        return
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()

    if validate_output:
        for failure in fail("Agent stream ended before RUN_FINISHED or RUN_ERROR", "INCOMPLETE_RUN"):
            yield failure


def _select_codec(accept: str | None, config: ServerConfig) -> EventCodec:
    if not accept or accept.strip() == "*/*":
        return get_codec(config.default_encoding)
    return negotiate(accept)


def _invalid_input(error: ValidationError) -> dict[str, Any]:
    return {"error": "Invalid run input", "detail": json.loads(error.json(include_url=False))}


class AgentEndpoint:
    """Request handlers bound to one agent."""

    def __init__(self, agent: Agent, config: ServerConfig) -> None:
        self.agent = agent
        self.config = config

    async def run_http(self, request: Request) -> Response:
        """Start a run and stream its events.

        POST <path>
        """
        try:
            body = await request.json()
        except ValueError:
            return JSONResponse({"error": "Request body must be JSON"}, status_code=400)

        try:
            run_input = RunAgentInput.model_validate(body)
        except ValidationError as e:
            return JSONResponse(_invalid_input(e), status_code=422)

        codec = _select_codec(request.headers.get("accept"), self.config)
        logger.info(f"Run {run_input.run_id} started over HTTP ({codec.name})")

        async def body_stream() -> AsyncIterator[bytes]:
            async for event in stream_run(
                self.agent, run_input, validate_output=self.config.validate_output
            ):
                yield codec.encode(event)
            logger.info(f"Run {run_input.run_id} stream closed")

        return StreamingResponse(
            body_stream(),
            media_type=codec.media_type,
            headers=STREAM_HEADERS,
        )

    async def run_websocket(self, websocket: WebSocket) -> None:
        """Start a run over WebSocket.

        WebSocket <path>/ws?encoding=text|binary

        The first client message is the run input (JSON text). Each event
        is sent as one message; the socket is closed after the last one.
        """
        encoding = websocket.query_params.get("encoding", self.config.default_encoding)
        await websocket.accept()
        if encoding not in CODECS:
            await websocket.close(code=1003, reason=f"Unknown encoding {encoding!r}")
            return
        codec = get_codec(encoding)

        try:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                await websocket.close(code=1003, reason="Run input must be a text message")
                return
            try:
                run_input = RunAgentInput.model_validate_json(raw)
            except ValidationError as e:
                logger.warning(f"Rejected WebSocket run input: {e}")
                await websocket.close(code=1007, reason="Invalid run input")
                return

            logger.info(f"Run {run_input.run_id} started over WebSocket ({codec.name})")
            async for event in stream_run(
                self.agent, run_input, validate_output=self.config.validate_output
            ):
                frame = codec.encode(event)
                if isinstance(codec, TextEventCodec):
                    await websocket.send_text(frame.decode("utf-8"))
                else:
                    await websocket.send_bytes(frame)
            await websocket.close()
        except WebSocketDisconnect:
            logger.info("WebSocket client disconnected")


async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse({"status": "ok"})


def create_app(
    agent: Agent | Callable[[RunAgentInput], AsyncIterator[Any]],
    config: ServerConfig | None = None,
) -> Starlette:
    """Create the ASGI application serving ``agent``.

    Args:
        agent: An Agent, or an async generator function taking RunAgentInput
        config: Server configuration

    Returns:
        Configured Starlette application
    """
    config = config or ServerConfig()
    if not isinstance(agent, Agent):
        agent = FunctionAgent(agent)

    endpoint = AgentEndpoint(agent, config)
    ws_path = config.path.rstrip("/") + "/ws"

    routes = [
        Route("/health", health_check, methods=["GET"]),
        Route(config.path, endpoint.run_http, methods=["POST"]),
        WebSocketRoute(ws_path, endpoint.run_websocket),
    ]

    app = Starlette(routes=routes)
    app.state.endpoint = endpoint
    return app
