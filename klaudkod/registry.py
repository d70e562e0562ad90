"""Tool ABC and ToolRegistry."""

from __future__ import annotations

import asyncio
import json
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from klaudkod.errors import BadArguments, PermissionRequired, UnknownTool
from klaudkod.log import logger, session_context
from klaudkod.types import PermissionMode, ToolContext, ToolResult

# (tool name, parsed arguments, context) -> approved?
Approver = Callable[[str, dict[str, Any], ToolContext], Awaitable[bool]]


class Tool(ABC):
    """Base class for all tools. Tools are stateless; context arrives per call."""

    # Side-effecting tools go through the registry's permission hook in "ask" mode.
    requires_permission: bool = False

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema format parameter definition."""
        ...

    @abstractmethod
    async def execute(self, ctx: ToolContext, **kwargs: Any) -> str | ToolResult:
        """Execute the tool. Return text (or a full ToolResult); raise ToolError on failure."""
        ...

    def to_schema(self) -> dict[str, Any]:
        """Convert to OpenAI function calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolRegistry:
    """Name-indexed tool set bound to one confinement root."""

    def __init__(
        self,
        working_dir: Path | str,
        permission_mode: PermissionMode = "auto",
        approver: Approver | None = None,
    ) -> None:
        self._tools: dict[str, Tool] = {}
        self._working_dir = Path(working_dir).expanduser().resolve()
        self._permission_mode = permission_mode
        self._approver = approver

    @property
    def working_dir(self) -> Path:
        return self._working_dir

    @property
    def permission_mode(self) -> PermissionMode:
        return self._permission_mode

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return list(self._tools)

    def schemas(self) -> list[dict[str, Any]]:
        """Tool definitions in OpenAI function-calling format, in registration order."""
        return [t.to_schema() for t in self._tools.values()]

    def context(self, session_id: str = "") -> ToolContext:
        return ToolContext(working_dir=self._working_dir, session_id=session_id)

    async def execute(self, ctx: ToolContext, name: str, arguments: str) -> ToolResult:
        """Dispatch a call by name. Never raises except on task cancellation."""
        if ctx.session_id:
            with session_context(ctx.session_id):
                return await self._execute(ctx, name, arguments)
        return await self._execute(ctx, name, arguments)

    async def _execute(self, ctx: ToolContext, name: str, arguments: str) -> ToolResult:
        t0 = time.monotonic()
        try:
            tool = self._tools.get(name)
            if tool is None:
                raise UnknownTool(f"tool '{name}' not found")
            args = _parse_arguments(arguments)
            await self._check_permission(tool, args, ctx)
            result = await tool.execute(ctx, **args)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            duration_ms = (time.monotonic() - t0) * 1000
            logger.info(f"Tool {name} failed in {duration_ms:.0f}ms: {e}")
            return ToolResult(content=f"Error: {e}", is_error=True)

        duration_ms = (time.monotonic() - t0) * 1000
        if isinstance(result, str):
            result = ToolResult(content=result)
        logger.info(f"Tool {name} finished in {duration_ms:.0f}ms (error={result.is_error})")
        return result

    async def _check_permission(self, tool: Tool, args: dict[str, Any], ctx: ToolContext) -> None:
        if self._permission_mode == "auto" or not tool.requires_permission:
            return
        if self._approver is None or not await self._approver(tool.name, args, ctx):
            raise PermissionRequired(f"access denied: '{tool.name}' requires user approval")


def _parse_arguments(arguments: str) -> dict[str, Any]:
    if not arguments or not arguments.strip():
        return {}
    try:
        args = json.loads(arguments)
    except json.JSONDecodeError as e:
        raise BadArguments(f"failed to parse arguments: {e}") from e
    if not isinstance(args, dict):
        raise BadArguments(f"arguments must be a JSON object, got {type(args).__name__}")
    return args
