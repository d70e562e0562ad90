"""Tool error kinds. The registry turns every one of them into an error result."""

from __future__ import annotations


class ToolError(Exception):
    """Base class for failures a tool reports back to the model."""


class UnknownTool(ToolError):
    pass


class BadArguments(ToolError, ValueError):
    pass


class NotFound(ToolError, FileNotFoundError):
    pass


class IsDirectory(ToolError, IsADirectoryError):
    pass


class BinaryFile(ToolError):
    pass


class BadPattern(ToolError, ValueError):
    pass


class AccessDenied(ToolError, PermissionError):
    """Sandbox refusal (credential file, path escape, missing approval)."""


class PathEscape(AccessDenied):
    pass


class PermissionRequired(AccessDenied):
    pass
