"""Built-in tools and the default registry."""

from __future__ import annotations

from typing import TYPE_CHECKING

from klaudkod.registry import Approver, ToolRegistry
from klaudkod.sandbox import SandboxConfig
from klaudkod.tools.exec_tool import BashTool
from klaudkod.tools.file_tools import ReadTool, WriteTool
from klaudkod.tools.search_tools import GlobTool, GrepTool

if TYPE_CHECKING:
    from klaudkod.config import ServerConfig

__all__ = ["BashTool", "GlobTool", "GrepTool", "ReadTool", "WriteTool", "build_registry"]


def build_registry(config: ServerConfig, approver: Approver | None = None) -> ToolRegistry:
    """Registry with read, write, glob, grep and bash bound to the configured working dir."""
    registry = ToolRegistry(config.workspace, config.permission_mode, approver=approver)
    registry.register(ReadTool())
    registry.register(WriteTool())
    registry.register(GlobTool())
    registry.register(GrepTool())
    registry.register(BashTool(
        timeout_ms=config.command_timeout,
        confine_workdir=config.confine_bash_workdir,
        sandbox=SandboxConfig(
            sanitize_env=config.sanitize_command_env,
            allowed_env=list(config.command_env),
        ),
    ))
    return registry
