"""File system tools -- read, write."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any

from klaudkod.errors import AccessDenied, BadArguments, BinaryFile, IsDirectory, NotFound
from klaudkod.registry import Tool
from klaudkod.sandbox import has_binary_extension, is_credential_file, resolve_path
from klaudkod.types import ToolContext

DEFAULT_READ_LIMIT = 2000
MAX_LINE_LENGTH = 2000


def _require_str(kwargs: dict[str, Any], key: str) -> str:
    value = kwargs.get(key)
    if not isinstance(value, str):
        raise BadArguments(f"{key} is required and must be a string")
    return value


def _optional_int(kwargs: dict[str, Any], key: str, default: int) -> int:
    value = kwargs.get(key)
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    raise BadArguments(f"{key} must be an integer")


class ReadTool(Tool):
    @property
    def name(self) -> str:
        return "read"

    @property
    def description(self) -> str:
        return (
            "Read the contents of a file. Supports pagination with offset and limit "
            "parameters. Returns file content with line numbers."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "filePath": {"type": "string", "description": "The path to the file to read"},
                "offset": {"type": "integer", "description": "The line number to start reading from (0-based)"},
                "limit": {"type": "integer", "description": f"The number of lines to read (defaults to {DEFAULT_READ_LIMIT})"},
            },
            "required": ["filePath"],
        }

    async def execute(self, ctx: ToolContext, **kwargs: Any) -> str:
        path = resolve_path(_require_str(kwargs, "filePath"), ctx.working_dir)
        if not path.exists():
            raise NotFound(f"file not found: {path}")
        if path.is_dir():
            raise IsDirectory(f"cannot read directory: {path}")
        if is_credential_file(path.name):
            raise AccessDenied("access denied: cannot read .env files")
        if has_binary_extension(path):
            raise BinaryFile(f"cannot read binary file: {path}")

        data = path.read_bytes()
        if b"\x00" in data:
            raise BinaryFile(f"cannot read binary file: {path}")
        lines = data.decode("utf-8", errors="replace").split("\n")

        total = len(lines)
        offset = min(max(_optional_int(kwargs, "offset", 0), 0), total)
        limit = max(_optional_int(kwargs, "limit", DEFAULT_READ_LIMIT), 0)
        selected = lines[offset : offset + limit]

        out = ["<file>"]
        for i, line in enumerate(selected):
            if len(line) > MAX_LINE_LENGTH:
                line = line[:MAX_LINE_LENGTH] + "..."
            out.append(f"{offset + i + 1:05d}| {line}")

        last_read = offset + len(selected)
        if last_read < total:
            out.append(f"\n(File has more lines. Use 'offset' parameter to read beyond line {last_read})")
        else:
            out.append(f"\n(End of file - total {total} lines)")
        out.append("</file>")
        return "\n".join(out)


class WriteTool(Tool):
    requires_permission = True

    @property
    def name(self) -> str:
        return "write"

    @property
    def description(self) -> str:
        return (
            "Write content to a file, creating it if it doesn't exist or overwriting it "
            "if it does. Parent directories are created as needed."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "filePath": {"type": "string", "description": "The path to the file to write"},
                "content": {"type": "string", "description": "The content to write to the file"},
            },
            "required": ["filePath", "content"],
        }

    async def execute(self, ctx: ToolContext, **kwargs: Any) -> str:
        path = resolve_path(_require_str(kwargs, "filePath"), ctx.working_dir)
        content = _require_str(kwargs, "content")
        if path.is_dir():
            raise IsDirectory(f"cannot write to directory: {path}")

        existed = path.exists()
        path.parent.mkdir(parents=True, exist_ok=True)
        data = content.encode("utf-8")
        _atomic_write(path, data)

        action = "overwritten" if existed else "created"
        return f"File {action} successfully ({len(data)} bytes written)"


def _atomic_write(path: Path, data: bytes) -> None:
    """Write to a sibling temp file and rename it over ``path``."""
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        if path.exists():
            os.chmod(tmp, path.stat().st_mode & 0o7777)
        else:
            os.chmod(tmp, 0o644)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
