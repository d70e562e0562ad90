"""klaudkod - WebSocket server for an agentic coding assistant."""

from klaudkod.types import Message, StreamEvent, ToolCall, ToolContext, ToolResult
from klaudkod.registry import Tool, ToolRegistry
from klaudkod.agent import AgentLoop
from klaudkod.session import Session, SessionManager
from klaudkod.app import Klaudkod

__all__ = [
    "Klaudkod",
    "AgentLoop",
    "Session",
    "SessionManager",
    "Tool",
    "ToolRegistry",
    "Message",
    "StreamEvent",
    "ToolCall",
    "ToolContext",
    "ToolResult",
]
