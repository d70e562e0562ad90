"""Client wire protocol -- one JSON object per text frame."""

from __future__ import annotations

from pydantic import BaseModel, ValidationError

from klaudkod.types import (
    EVENT_CHUNK,
    EVENT_DONE,
    EVENT_ERROR,
    EVENT_TOOL_CALL,
    EVENT_TOOL_RESULT,
    StreamEvent,
)


class IncomingFrame(BaseModel):
    """Inbound message from the client: ``prompt`` or ``cancel``."""

    type: str
    content: str = ""
    session_id: str = ""


class ToolCallFrame(BaseModel):
    id: str
    name: str
    arguments: str


class ToolResultFrame(BaseModel):
    tool_call_id: str | None = None
    content: str
    is_error: bool


class OutgoingFrame(BaseModel):
    """Outbound event to the client."""

    type: str
    content: str | None = None
    error: str | None = None
    tool_call: ToolCallFrame | None = None
    tool_result: ToolResultFrame | None = None

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)

    @classmethod
    def failure(cls, error: str) -> OutgoingFrame:
        return cls(type=EVENT_ERROR, error=error)


def parse_incoming(raw: str | bytes) -> IncomingFrame | None:
    """Decode a client frame; None when it is not a JSON object with a string ``type``."""
    try:
        return IncomingFrame.model_validate_json(raw)
    except ValidationError:
        return None


def event_to_frame(event: StreamEvent) -> OutgoingFrame:
    if event.type == EVENT_CHUNK:
        return OutgoingFrame(type=EVENT_CHUNK, content=event.content)
    if event.type == EVENT_TOOL_CALL and event.tool_call is not None:
        tc = event.tool_call
        return OutgoingFrame(
            type=EVENT_TOOL_CALL,
            tool_call=ToolCallFrame(id=tc.id, name=tc.name, arguments=tc.arguments),
        )
    if event.type == EVENT_TOOL_RESULT:
        return OutgoingFrame(
            type=EVENT_TOOL_RESULT,
            tool_result=ToolResultFrame(
                tool_call_id=event.tool_call_id or None,
                content=event.content,
                is_error=event.is_error,
            ),
        )
    if event.type == EVENT_ERROR:
        return OutgoingFrame.failure(event.error)
    if event.type == EVENT_DONE:
        return OutgoingFrame(type=EVENT_DONE)
    raise ValueError(f"unknown stream event type: {event.type!r}")
