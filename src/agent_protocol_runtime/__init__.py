"""Agent Protocol Runtime - streaming event protocol for agent runs.

A producer (agent) emits an ordered stream of typed events; a consumer
(client) receives them over HTTP, WebSocket or in-process, validates them
against the run state machine and keeps application state in sync.

Quick start:

    from agent_protocol_runtime import RunAgentInput, TransportConfig, run_agent

    config = TransportConfig(url="http://localhost:8000/agent", encoding="binary")
    async for event in run_agent(RunAgentInput(thread_id="t1", run_id="r1"), config):
        print(event.type)
"""

from .agent import Agent, FunctionAgent
from .chunks import ChunkExpander
from .client import (
    AgentRun,
    BaseAgentTransport,
    CallbackSubscriber,
    CancellationAck,
    HTTPAgentTransport,
    LocalAgentTransport,
    MockAgentTransport,
    RunStatus,
    RunSubscriber,
    TransportState,
    WebSocketAgentTransport,
    create_transport,
    run_agent,
)
from .config import (
    RuntimeConfig,
    ServerConfig,
    TransportConfig,
    configure_logging,
    load_config,
)
from .encoding import BinaryEventCodec, EventCodec, TextEventCodec, get_codec, negotiate
from .errors import (
    AgentProtocolError,
    AgentRunError,
    DecodeError,
    IncompleteRunError,
    ProtocolViolationError,
    StateSyncError,
    TransportError,
)
from .events import (
    BaseEvent,
    CustomEvent,
    Event,
    EventType,
    MessagesSnapshotEvent,
    RawEvent,
    RunErrorEvent,
    RunFinishedEvent,
    RunStartedEvent,
    StateDeltaEvent,
    StateSnapshotEvent,
    StepFinishedEvent,
    StepStartedEvent,
    TextMessageChunkEvent,
    TextMessageContentEvent,
    TextMessageEndEvent,
    TextMessageStartEvent,
    ThinkingEndEvent,
    ThinkingStartEvent,
    ThinkingTextMessageContentEvent,
    ThinkingTextMessageEndEvent,
    ThinkingTextMessageStartEvent,
    ToolCallArgsEvent,
    ToolCallChunkEvent,
    ToolCallEndEvent,
    ToolCallResultEvent,
    ToolCallStartEvent,
    parse_event,
)
from .state import StateSyncEngine
from .types import (
    AssistantMessage,
    Context,
    DeveloperMessage,
    Message,
    RunAgentInput,
    SystemMessage,
    Tool,
    ToolCall,
    ToolMessage,
    UserMessage,
)
from .verify import RunPhase, RunValidator

__version__ = "0.1.0"

__all__ = [
    # Client
    "AgentRun",
    "CallbackSubscriber",
    "CancellationAck",
    "RunStatus",
    "RunSubscriber",
    "run_agent",
    # Transports
    "BaseAgentTransport",
    "HTTPAgentTransport",
    "LocalAgentTransport",
    "MockAgentTransport",
    "TransportState",
    "WebSocketAgentTransport",
    "create_transport",
    # Producer side
    "Agent",
    "FunctionAgent",
    # Configuration
    "RuntimeConfig",
    "ServerConfig",
    "TransportConfig",
    "configure_logging",
    "load_config",
    # Encoding
    "BinaryEventCodec",
    "EventCodec",
    "TextEventCodec",
    "get_codec",
    "negotiate",
    # Validation and state
    "ChunkExpander",
    "RunPhase",
    "RunValidator",
    "StateSyncEngine",
    # Errors
    "AgentProtocolError",
    "AgentRunError",
    "DecodeError",
    "IncompleteRunError",
    "ProtocolViolationError",
    "StateSyncError",
    "TransportError",
    # Events
    "BaseEvent",
    "CustomEvent",
    "Event",
    "EventType",
    "MessagesSnapshotEvent",
    "RawEvent",
    "RunErrorEvent",
    "RunFinishedEvent",
    "RunStartedEvent",
    "StateDeltaEvent",
    "StateSnapshotEvent",
    "StepFinishedEvent",
    "StepStartedEvent",
    "TextMessageChunkEvent",
    "TextMessageContentEvent",
    "TextMessageEndEvent",
    "TextMessageStartEvent",
    "ThinkingEndEvent",
    "ThinkingStartEvent",
    "ThinkingTextMessageContentEvent",
    "ThinkingTextMessageEndEvent",
    "ThinkingTextMessageStartEvent",
    "ToolCallArgsEvent",
    "ToolCallChunkEvent",
    "ToolCallEndEvent",
    "ToolCallResultEvent",
    "ToolCallStartEvent",
    "parse_event",
    # Types
    "AssistantMessage",
    "Context",
    "DeveloperMessage",
    "Message",
    "RunAgentInput",
    "SystemMessage",
    "Tool",
    "ToolCall",
    "ToolMessage",
    "UserMessage",
]
