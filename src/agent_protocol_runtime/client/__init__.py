"""Client runtime: transports and run driver."""

from .run import (
    AgentRun,
    CallbackSubscriber,
    CancellationAck,
    RunStatus,
    RunSubscriber,
    run_agent,
)
from .transport import (
    BaseAgentTransport,
    HTTPAgentTransport,
    LocalAgentTransport,
    MockAgentTransport,
    TransportState,
    WebSocketAgentTransport,
    create_transport,
)

__all__ = [
    "AgentRun",
    "BaseAgentTransport",
    "CallbackSubscriber",
    "CancellationAck",
    "HTTPAgentTransport",
    "LocalAgentTransport",
    "MockAgentTransport",
    "RunStatus",
    "RunSubscriber",
    "TransportState",
    "WebSocketAgentTransport",
    "create_transport",
    "run_agent",
]
