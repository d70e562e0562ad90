"""Shell execution tool with deadline, output cap and environment sanitization."""

from __future__ import annotations

import signal
from pathlib import Path
from typing import Any

from klaudkod.errors import BadArguments
from klaudkod.registry import Tool
from klaudkod.sandbox import CommandResult, SandboxConfig, resolve_path, run_command
from klaudkod.types import ToolContext, ToolResult

DEFAULT_TIMEOUT_MS = 120_000
MAX_OUTPUT_LENGTH = 30_000


class BashTool(Tool):
    requires_permission = True

    def __init__(
        self,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_output: int = MAX_OUTPUT_LENGTH,
        confine_workdir: bool = False,
        sandbox: SandboxConfig | None = None,
    ) -> None:
        self._timeout_ms = timeout_ms
        self._max_output = max_output
        self._confine_workdir = confine_workdir
        self._sandbox = sandbox or SandboxConfig()

    @property
    def name(self) -> str:
        return "bash"

    @property
    def description(self) -> str:
        return (
            "Execute shell commands with optional timeout and working directory. "
            f"Timeout defaults to {self._timeout_ms // 1000} seconds."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "The shell command to execute"},
                "description": {
                    "type": "string",
                    "description": (
                        "Clear, concise description of what this command does in 5-10 words. "
                        "Examples:\nInput: ls\nOutput: Lists files in current directory\n\n"
                        "Input: git status\nOutput: Shows working tree status"
                    ),
                },
                "timeout": {"type": "integer", "description": "Optional timeout in milliseconds"},
                "workdir": {
                    "type": "string",
                    "description": "The working directory to run the command in. Defaults to the project root. Use this instead of 'cd' commands.",
                },
            },
            "required": ["command", "description"],
        }

    async def execute(self, ctx: ToolContext, **kwargs: Any) -> ToolResult:
        command = kwargs.get("command")
        if not isinstance(command, str) or not command.strip():
            raise BadArguments("command is required and must be a string")
        if not isinstance(kwargs.get("description"), str):
            raise BadArguments("description is required and must be a string")

        timeout_ms = kwargs.get("timeout")
        if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, (int, float)) or timeout_ms <= 0:
            timeout_ms = self._timeout_ms
        workdir = self._workdir(kwargs.get("workdir"), ctx.working_dir)

        try:
            result = await run_command(command, workdir, timeout_ms / 1000, self._sandbox)
        except OSError as e:
            return ToolResult(content=f"Command failed: {e}", is_error=True)

        output = result.stdout
        if result.stderr:
            if output and not output.endswith("\n"):
                output += "\n"
            output += "[stderr]\n" + result.stderr

        notes: list[str] = []
        if len(output) > self._max_output:
            output = output[: self._max_output]
            notes.append(f"bash tool truncated output as it exceeded {self._max_output} char limit")
        if result.timed_out:
            notes.append(f"bash tool terminated command after exceeding timeout {_format_ms(timeout_ms)}")
        if notes:
            output += "\n\n<bash_metadata>\n" + "\n".join(notes) + "\n</bash_metadata>"

        failed = result.timed_out or result.returncode != 0
        if failed:
            output = f"Command failed: {_describe_exit(result)}\n\n{output}"
        return ToolResult(content=output, is_error=failed)

    def _workdir(self, raw: Any, workspace: Path) -> Path:
        if raw is None or raw == "":
            return workspace
        if not isinstance(raw, str):
            raise BadArguments("workdir must be a string")
        if self._confine_workdir:
            return resolve_path(raw, workspace)
        p = Path(raw).expanduser()
        return p if p.is_absolute() else workspace / p


def _describe_exit(result: CommandResult) -> str:
    if result.timed_out:
        return "command timed out"
    if result.returncode < 0:
        try:
            return f"signal: {signal.Signals(-result.returncode).name}"
        except ValueError:
            return f"signal {-result.returncode}"
    return f"exit status {result.returncode}"


def _format_ms(ms: float) -> str:
    if ms >= 1000 and ms % 1000 == 0:
        return f"{int(ms // 1000)}s"
    return f"{ms:g}ms"
