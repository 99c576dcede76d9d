"""Server-side adapter (Starlette ASGI app)."""

from .app import AGENT_ERROR_CODE, AgentEndpoint, create_app, stream_run

__all__ = [
    "AGENT_ERROR_CODE",
    "AgentEndpoint",
    "create_app",
    "stream_run",
]
