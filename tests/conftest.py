"""Shared test fixtures for the klaudkod test suite."""
from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import pytest

from klaudkod.config import ServerConfig
from klaudkod.provider import ChatDelta, LLMProvider, ToolCallDelta
from klaudkod.registry import Tool, ToolRegistry
from klaudkod.session import ConnectionClosed
from klaudkod.tools import build_registry
from klaudkod.types import ToolContext


# ---- Scripted model turns ----


def text_turn(*chunks: str) -> list[ChatDelta]:
    return [ChatDelta(content=c) for c in chunks]


def tool_turn(call_id: str, name: str, arguments: dict[str, Any] | str, text: str = "") -> list[ChatDelta]:
    """A model turn that requests one tool, arguments split across two fragments."""
    args = arguments if isinstance(arguments, str) else json.dumps(arguments)
    half = len(args) // 2
    turn = [ChatDelta(content=text)] if text else []
    turn.append(ChatDelta(tool_calls=[ToolCallDelta(index=0, id=call_id, name=name, arguments=args[:half])]))
    turn.append(ChatDelta(tool_calls=[ToolCallDelta(index=0, arguments=args[half:])]))
    return turn


# ---- Fakes ----


class FakeProvider(LLMProvider):
    """Streams pre-configured turns in order.

    A turn is a list of ChatDelta; an asyncio.Event inside a turn pauses the stream
    until it is set. An exception in place of a turn is raised when that turn starts.
    """

    def __init__(self, turns: list[Any] | None = None) -> None:
        self.turns: list[Any] = list(turns or [])
        self.calls: list[tuple[list[dict[str, Any]], list[dict[str, Any]] | None]] = []

    async def chat_stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[ChatDelta]:
        self.calls.append(([dict(m) for m in messages], tools))
        if not self.turns:
            yield ChatDelta(content="(no more responses)")
            return
        turn = self.turns.pop(0)
        if isinstance(turn, BaseException):
            raise turn
        for item in turn:
            if isinstance(item, asyncio.Event):
                await item.wait()
            elif isinstance(item, BaseException):
                raise item
            else:
                yield item


_EOF = object()


class FakeConnection:
    """In-memory text-frame transport. Frames sent by the server land in ``sent``."""

    def __init__(self, send_gate: asyncio.Event | None = None) -> None:
        self.inbound: asyncio.Queue[Any] = asyncio.Queue()
        self.sent: list[str] = []
        self.closed = False
        self.send_gate = send_gate

    def feed(self, frame: dict[str, Any] | str) -> None:
        self.inbound.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def disconnect(self) -> None:
        self.inbound.put_nowait(_EOF)

    async def receive_text(self) -> str:
        if self.closed:
            raise ConnectionClosed()
        item = await self.inbound.get()
        if item is _EOF:
            raise ConnectionClosed()
        return item

    async def send_text(self, data: str) -> None:
        if self.closed:
            raise ConnectionClosed()
        if self.send_gate is not None:
            await self.send_gate.wait()
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        # Like a real socket, closing does not wake a pending receive_text.
        self.closed = True

    @property
    def frames(self) -> list[dict[str, Any]]:
        return [json.loads(s) for s in self.sent]

    def count(self, frame_type: str) -> int:
        return sum(1 for f in self.frames if f["type"] == frame_type)


async def wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


class EchoTool(Tool):
    """Simple tool that echoes its input."""

    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Echo the input"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        }

    async def execute(self, ctx: ToolContext, **kwargs: Any) -> str:
        return f"echo: {kwargs.get('text', '')}"


class FailTool(Tool):
    """Tool that always raises an exception."""

    requires_permission = True

    @property
    def name(self) -> str:
        return "fail_tool"

    @property
    def description(self) -> str:
        return "Always fails"

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, ctx: ToolContext, **kwargs: Any) -> str:
        raise RuntimeError("intentional failure")


# ---- Fixtures ----


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    ws = tmp_path / "workspace"
    ws.mkdir()
    return ws.resolve()


@pytest.fixture
def ctx(workspace: Path) -> ToolContext:
    return ToolContext(working_dir=workspace)


@pytest.fixture
def config(workspace: Path) -> ServerConfig:
    return ServerConfig(_env_file=None, working_dir=str(workspace), llm_api_key="test-key")


@pytest.fixture
def registry(config: ServerConfig) -> ToolRegistry:
    return build_registry(config)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()
