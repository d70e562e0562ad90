"""Agent loop -- stream model output, run requested tools, re-submit until the model stops."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from klaudkod.log import logger
from klaudkod.provider import LLMProvider, ToolCallDelta
from klaudkod.types import Message, StreamEvent, ToolCall

# (tool name, JSON arguments) -> (content, is_error)
ToolExecutor = Callable[[str, str], Awaitable[tuple[str, bool]]]


def to_provider_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Translate conversation messages to OpenAI chat-completion parameters."""
    out: list[dict[str, Any]] = []
    for msg in messages:
        if msg.role == "assistant" and msg.tool_calls:
            out.append({
                "role": "assistant",
                "content": msg.content or None,
                "tool_calls": [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": tc.arguments},
                    }
                    for tc in msg.tool_calls
                ],
            })
        elif msg.role == "tool":
            out.append({"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content})
        elif msg.role in ("system", "user", "assistant"):
            out.append({"role": msg.role, "content": msg.content})
        else:
            out.append({"role": "user", "content": msg.content})
    return out


class ToolCallAccumulator:
    """Reassemble streamed tool-call fragments into complete calls.

    A fragment carrying a new id starts a new call; fragments without an id (or
    with the current id) extend the call in progress. Calls whose arguments never
    arrived are dropped.
    """

    def __init__(self) -> None:
        self._calls: list[ToolCall] = []
        self._current: ToolCall | None = None

    def add(self, delta: ToolCallDelta) -> None:
        if self._current is None or (delta.id and delta.id != self._current.id):
            self._seal()
            self._current = ToolCall(id=delta.id, name=delta.name)
        if delta.name:
            self._current.name = delta.name
        if delta.arguments:
            self._current.arguments += delta.arguments

    def _seal(self) -> None:
        if self._current is not None and self._current.arguments:
            self._calls.append(self._current)
        self._current = None

    def finish(self) -> list[ToolCall]:
        self._seal()
        return self._calls


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class AgentLoop:
    """Drive one prompt against the provider and emit a typed event sequence.

    Every sequence ends with exactly one ``done`` or ``error`` event. Messages the
    loop appends to its working history are mirrored into ``transcript`` when given,
    so the caller can commit them to the conversation.
    """

    def __init__(self, provider: LLMProvider, max_iterations: int = 0) -> None:
        self.provider = provider
        self.max_iterations = max_iterations

    async def stream(
        self,
        messages: list[Message],
        transcript: list[Message] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Single completion without tools."""
        parts: list[str] = []
        try:
            async for delta in self.provider.chat_stream(to_provider_messages(messages)):
                if delta.content:
                    parts.append(delta.content)
                    yield StreamEvent.chunk(delta.content)
        except Exception as e:
            logger.error(f"LLM stream failed: {e}")
            yield StreamEvent.failure(_describe(e))
            return
        if transcript is not None and parts:
            transcript.append(Message.assistant("".join(parts)))
        yield StreamEvent.done()

    async def stream_with_tools(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]],
        executor: ToolExecutor,
        transcript: list[Message] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Agentic loop: keep calling the model until a turn requests no tools."""
        history = list(messages)

        def record(msg: Message) -> None:
            history.append(msg)
            if transcript is not None:
                transcript.append(msg)

        iteration = 0
        while True:
            if self.max_iterations and iteration >= self.max_iterations:
                logger.warning(f"Agent loop stopped after {iteration} iterations")
                yield StreamEvent.failure(
                    f"Stopped after {iteration} model turns without a final answer"
                )
                return
            iteration += 1

            parts: list[str] = []
            calls = ToolCallAccumulator()
            try:
                async for delta in self.provider.chat_stream(to_provider_messages(history), tools or None):
                    if delta.content:
                        parts.append(delta.content)
                        yield StreamEvent.chunk(delta.content)
                    for fragment in delta.tool_calls:
                        calls.add(fragment)
            except Exception as e:
                logger.error(f"LLM stream failed (iteration {iteration}): {e}")
                yield StreamEvent.failure(_describe(e))
                return

            tool_calls = calls.finish()
            if parts or tool_calls:
                record(Message.assistant("".join(parts), tool_calls))
            if not tool_calls:
                yield StreamEvent.done()
                return

            for call in tool_calls:
                yield StreamEvent.call(call)
                try:
                    content, is_error = await executor(call.name, call.arguments)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Tool executor raised for {call.name}: {e!r}")
                    content, is_error = f"Error: {_describe(e)}", True
                yield StreamEvent.result(content, is_error, call.id)
                record(Message.tool(content, call.id))
