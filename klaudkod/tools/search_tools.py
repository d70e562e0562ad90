"""Search tools -- glob (file names) and grep (file contents)."""

from __future__ import annotations

import asyncio
import os
import re
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any

from klaudkod.errors import BadArguments, BadPattern, NotFound
from klaudkod.registry import Tool
from klaudkod.sandbox import is_credential_file, resolve_path, sniff_binary
from klaudkod.types import ToolContext

MAX_GLOB_RESULTS = 1000
MAX_GREP_MATCHES = 100
SKIP_DIRS = frozenset({".git", "node_modules", "vendor", "__pycache__", ".venv"})


def match_glob(pattern: str, path: str) -> bool:
    """Match a slash-separated relative path against a glob pattern.

    Each segment matches like ``fnmatch`` (``*`` never crosses ``/``); a ``**``
    segment matches zero or more whole path segments.
    """
    return _match_parts(pattern.split("/"), path.split("/"))


def _match_parts(pattern: list[str], parts: list[str]) -> bool:
    if not pattern:
        return not parts
    if not parts:
        return all(p == "**" for p in pattern)
    head = pattern[0]
    if head == "**":
        return _match_parts(pattern[1:], parts) or _match_parts(pattern, parts[1:])
    if fnmatchcase(parts[0], head):
        return _match_parts(pattern[1:], parts[1:])
    return False


def _search_root(kwargs: dict[str, Any], workspace: Path) -> Path:
    raw = kwargs.get("path")
    if raw is None or raw == "":
        return workspace
    if not isinstance(raw, str):
        raise BadArguments("path must be a string")
    root = resolve_path(raw, workspace)
    if not root.exists():
        raise NotFound(f"path not found: {root}")
    return root


def _relative(path: Path, workspace: Path) -> str:
    try:
        return path.relative_to(workspace).as_posix()
    except ValueError:
        return str(path)


class GlobTool(Tool):
    @property
    def name(self) -> str:
        return "glob"

    @property
    def description(self) -> str:
        return "Find files matching a glob pattern. Supports ** for recursive matching (e.g., '**/*.py', 'src/**/*.ts')"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Glob pattern to match files (e.g., '**/*.py', 'src/**/*.ts')"},
                "path": {"type": "string", "description": "Directory to search in (defaults to working directory)"},
            },
            "required": ["pattern"],
        }

    async def execute(self, ctx: ToolContext, **kwargs: Any) -> str:
        pattern = kwargs.get("pattern")
        if not isinstance(pattern, str) or not pattern:
            raise BadArguments("pattern is required and must be a string")
        root = _search_root(kwargs, ctx.working_dir)
        if not root.is_dir():
            raise BadArguments(f"path is not a directory: {root}")

        matches = await asyncio.to_thread(_walk_glob, root, pattern)
        total = len(matches)
        shown = matches[:MAX_GLOB_RESULTS]

        out = ["<glob_results>"]
        out.extend(_relative(p, ctx.working_dir) for p in shown)
        summary = f"\nFound {total} matches"
        if total > MAX_GLOB_RESULTS:
            summary += f" (showing first {MAX_GLOB_RESULTS} results)"
        out.append(summary)
        out.append("</glob_results>")
        return "\n".join(out)


def _walk_glob(root: Path, pattern: str) -> list[Path]:
    matches: list[Path] = []
    for dirpath, _dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        for fname in filenames:
            full = base / fname
            if match_glob(pattern, full.relative_to(root).as_posix()):
                matches.append(full)
    matches.sort(key=lambda p: p.as_posix())
    return matches


@dataclass
class _GrepOutcome:
    matches: list[tuple[Path, int, str]] = field(default_factory=list)
    total_matches: int = 0
    files_searched: int = 0


class GrepTool(Tool):
    @property
    def name(self) -> str:
        return "grep"

    @property
    def description(self) -> str:
        return "Search for regex patterns in file contents. Supports file inclusion patterns and line-by-line matching"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Regex pattern to search for"},
                "path": {"type": "string", "description": "Directory or file to search in (defaults to working directory)"},
                "include": {"type": "string", "description": "Glob pattern for files to include (e.g. '*.py')"},
            },
            "required": ["pattern"],
        }

    async def execute(self, ctx: ToolContext, **kwargs: Any) -> str:
        pattern = kwargs.get("pattern")
        if not isinstance(pattern, str) or not pattern:
            raise BadArguments("pattern is required and must be a string")
        try:
            regex = re.compile(pattern)
        except re.error as e:
            raise BadPattern(f"invalid regex pattern: {e}") from e
        include = kwargs.get("include") or ""
        if not isinstance(include, str):
            raise BadArguments("include must be a string")
        root = _search_root(kwargs, ctx.working_dir)

        outcome = await asyncio.to_thread(_walk_grep, root, regex, include)

        out = ["<grep_results>"]
        for path, lineno, text in outcome.matches:
            out.append(f"{_relative(path, ctx.working_dir)}:{lineno}:{text}")
        summary = f"\nFound {outcome.total_matches} matches in {outcome.files_searched} files"
        if outcome.total_matches > MAX_GREP_MATCHES:
            summary += f" (showing first {MAX_GREP_MATCHES} results)"
        out.append(summary)
        out.append("</grep_results>")
        return "\n".join(out)


def _walk_grep(root: Path, regex: re.Pattern[str], include: str) -> _GrepOutcome:
    outcome = _GrepOutcome()
    if root.is_file():
        candidates = iter([root])
    else:
        candidates = _iter_files(root)
    for path in candidates:
        if include and not fnmatchcase(path.name, include):
            continue
        if is_credential_file(path.name) or sniff_binary(path):
            continue
        outcome.files_searched += 1
        _scan_file(path, regex, outcome)
    return outcome


def _iter_files(root: Path):
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        base = Path(dirpath)
        for fname in sorted(filenames):
            yield base / fname


def _scan_file(path: Path, regex: re.Pattern[str], outcome: _GrepOutcome) -> None:
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.rstrip("\r\n")
                if not regex.search(line):
                    continue
                outcome.total_matches += 1
                if len(outcome.matches) < MAX_GREP_MATCHES:
                    outcome.matches.append((path, lineno, line))
    except OSError:
        return
