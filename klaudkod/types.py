"""Core data structures -- conversation messages, tool calls, stream events."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

Role = Literal["system", "user", "assistant", "tool"]
PermissionMode = Literal["ask", "auto"]

EVENT_CHUNK = "chunk"
EVENT_TOOL_CALL = "tool_call"
EVENT_TOOL_RESULT = "tool_result"
EVENT_ERROR = "error"
EVENT_DONE = "done"


@dataclass
class ToolCall:
    """Tool invocation request from the model. ``arguments`` is still JSON-encoded."""

    id: str
    name: str
    arguments: str = ""


@dataclass
class Message:
    """One conversation turn."""

    role: Role
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str = ""

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str = "", tool_calls: list[ToolCall] | None = None) -> Message:
        return cls(role="assistant", content=content, tool_calls=list(tool_calls or []))

    @classmethod
    def tool(cls, content: str, tool_call_id: str) -> Message:
        return cls(role="tool", content=content, tool_call_id=tool_call_id)


@dataclass
class ToolResult:
    """Tool execution result. Failures are results too, never exceptions."""

    content: str
    is_error: bool = False
    tool_call_id: str = ""


@dataclass
class ToolContext:
    """Execution context passed to every tool invocation."""

    working_dir: Path
    session_id: str = ""


@dataclass
class StreamEvent:
    """Unit of the event sequence produced by the agent loop.

    A sequence always ends with exactly one ``done`` or ``error`` event.
    """

    type: str
    content: str = ""
    tool_call: ToolCall | None = None
    error: str = ""
    is_error: bool = False
    tool_call_id: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.type in (EVENT_DONE, EVENT_ERROR)

    @classmethod
    def chunk(cls, content: str) -> StreamEvent:
        return cls(type=EVENT_CHUNK, content=content)

    @classmethod
    def call(cls, tool_call: ToolCall) -> StreamEvent:
        return cls(type=EVENT_TOOL_CALL, tool_call=tool_call)

    @classmethod
    def result(cls, content: str, is_error: bool, tool_call_id: str = "") -> StreamEvent:
        return cls(type=EVENT_TOOL_RESULT, content=content, is_error=is_error, tool_call_id=tool_call_id)

    @classmethod
    def failure(cls, error: str) -> StreamEvent:
        return cls(type=EVENT_ERROR, error=error)

    @classmethod
    def done(cls) -> StreamEvent:
        return cls(type=EVENT_DONE)
