"""Message, tool and run input models.

These are the structured values carried inside events (MESSAGES_SNAPSHOT)
and sent to the agent when a run is invoked (RunAgentInput).

Wire names are camelCase (``toolCallId``, ``forwardedProps``); Python
attributes are snake_case. Both are accepted on input.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ConfiguredBaseModel(BaseModel):
    """Immutable base model with camelCase wire aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        """Dump to a JSON-compatible dict using wire field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Tool calls
# =============================================================================


class FunctionCall(ConfiguredBaseModel):
    """Name and JSON-encoded arguments of a function invocation."""

    name: str
    arguments: str


class ToolCall(ConfiguredBaseModel):
    """A tool call recorded on an assistant message."""

    id: str
    type: Literal["function"] = "function"
    function: FunctionCall


# =============================================================================
# Messages
# =============================================================================


class BaseMessage(ConfiguredBaseModel):
    id: str
    role: str
    content: str | None = None
    name: str | None = None


class DeveloperMessage(BaseMessage):
    role: Literal["developer"] = "developer"
    content: str


class SystemMessage(BaseMessage):
    role: Literal["system"] = "system"
    content: str


class AssistantMessage(BaseMessage):
    """Assistant output, optionally carrying the tool calls it issued."""

    role: Literal["assistant"] = "assistant"
    tool_calls: list[ToolCall] | None = None


class UserMessage(BaseMessage):
    role: Literal["user"] = "user"
    content: str


class ToolMessage(ConfiguredBaseModel):
    """Result of a tool call, linked back through ``tool_call_id``."""

    id: str
    role: Literal["tool"] = "tool"
    content: str
    tool_call_id: str
    error: str | None = None


Message = Annotated[
    DeveloperMessage | SystemMessage | AssistantMessage | UserMessage | ToolMessage,
    Field(discriminator="role"),
]

Role = Literal["developer", "system", "assistant", "user", "tool"]


# =============================================================================
# Run input
# =============================================================================


class Tool(ConfiguredBaseModel):
    """A tool the agent may call. ``parameters`` is a JSON schema."""

    name: str
    description: str
    parameters: Any = None


class Context(ConfiguredBaseModel):
    """A piece of contextual data forwarded to the agent."""

    description: str
    value: str


class RunAgentInput(ConfiguredBaseModel):
    """Everything the agent receives when a run is invoked.

    Example:
        {
            "threadId": "thread_1",
            "runId": "run_1",
            "state": {},
            "messages": [{"id": "m1", "role": "user", "content": "Hi"}],
            "tools": [],
            "context": [],
            "forwardedProps": {}
        }
    """

    thread_id: str
    run_id: str
    state: Any = None
    messages: list[Message] = Field(default_factory=list)
    tools: list[Tool] = Field(default_factory=list)
    context: list[Context] = Field(default_factory=list)
    forwarded_props: Any = None
