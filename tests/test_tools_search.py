"""Search tools tests -- glob matching and caps, grep filtering and caps."""
from __future__ import annotations

from pathlib import Path

import pytest

from klaudkod.errors import BadPattern, PathEscape
from klaudkod.tools.search_tools import GlobTool, GrepTool, match_glob
from klaudkod.types import ToolContext


def _touch(root: Path, rel: str, content: str = "") -> Path:
    p = root / rel
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(content, encoding="utf-8")
    return p


def _result_lines(output: str) -> list[str]:
    """Path/match lines between the opening tag and the summary."""
    body = output.split("\n")[1:]
    return [line for line in body if line and not line.startswith(("Found ", "</"))]


@pytest.mark.parametrize("pattern,path,expected", [
    ("*.py", "a.py", True),
    ("*.py", "pkg/a.py", False),
    ("**/*.py", "a.py", True),
    ("**/*.py", "pkg/sub/a.py", True),
    ("src/**/*.ts", "src/x/y/z.ts", True),
    ("src/**/*.ts", "lib/x.ts", False),
    ("pkg/*", "pkg/a.go", True),
    ("pkg/*", "pkg/sub/a.go", False),
    ("**", "any/thing/at/all", True),
])
def test_match_glob(pattern: str, path: str, expected: bool) -> None:
    assert match_glob(pattern, path) is expected


class TestGlobTool:

    @pytest.mark.asyncio
    async def test_recursive_pattern(self, workspace: Path, ctx: ToolContext) -> None:
        for rel in ("a.go", "pkg/b.go", "pkg/sub/c.go", "README.md", "pkg/notes.txt"):
            _touch(workspace, rel)
        result = await GlobTool().execute(ctx, pattern="**/*.go")
        assert result.startswith("<glob_results>\n")
        assert result.endswith("\nFound 3 matches\n</glob_results>")
        assert _result_lines(result) == ["a.go", "pkg/b.go", "pkg/sub/c.go"]

    @pytest.mark.asyncio
    async def test_every_result_matches_pattern(self, workspace: Path, ctx: ToolContext) -> None:
        for rel in ("x.py", "src/y.py", "src/deep/z.py", "src/y.pyc", "doc/readme.rst"):
            _touch(workspace, rel)
        result = await GlobTool().execute(ctx, pattern="src/**/*.py")
        lines = _result_lines(result)
        assert lines == ["src/deep/z.py", "src/y.py"]
        assert all(match_glob("src/**/*.py", line) for line in lines)

    @pytest.mark.asyncio
    async def test_path_argument_scopes_search(self, workspace: Path, ctx: ToolContext) -> None:
        _touch(workspace, "a/one.txt")
        _touch(workspace, "b/two.txt")
        result = await GlobTool().execute(ctx, pattern="*.txt", path="b")
        assert _result_lines(result) == ["b/two.txt"]

    @pytest.mark.asyncio
    async def test_no_matches(self, ctx: ToolContext) -> None:
        result = await GlobTool().execute(ctx, pattern="**/*.rs")
        assert "Found 0 matches" in result

    @pytest.mark.asyncio
    async def test_result_cap(self, workspace: Path, ctx: ToolContext) -> None:
        for i in range(1500):
            _touch(workspace, f"files/f{i:04d}.txt")
        result = await GlobTool().execute(ctx, pattern="**/*.txt")
        assert len(_result_lines(result)) == 1000
        assert "Found 1500 matches (showing first 1000 results)" in result

    @pytest.mark.asyncio
    async def test_escape_denied(self, ctx: ToolContext) -> None:
        with pytest.raises(PathEscape):
            await GlobTool().execute(ctx, pattern="*", path="..")


class TestGrepTool:

    @pytest.mark.asyncio
    async def test_finds_matches_with_line_numbers(self, workspace: Path, ctx: ToolContext) -> None:
        _touch(workspace, "main.go", "package main\nfunc main() {}\n")
        _touch(workspace, "util/helper.go", "package util\n\nfunc Help() {}\n")
        result = await GrepTool().execute(ctx, pattern=r"func \w+")
        assert _result_lines(result) == ["main.go:2:func main() {}", "util/helper.go:3:func Help() {}"]
        assert "Found 2 matches in 2 files" in result

    @pytest.mark.asyncio
    async def test_include_filter(self, workspace: Path, ctx: ToolContext) -> None:
        _touch(workspace, "a.py", "TODO: fix\n")
        _touch(workspace, "b.js", "TODO: fix\n")
        result = await GrepTool().execute(ctx, pattern="TODO", include="*.py")
        assert _result_lines(result) == ["a.py:1:TODO: fix"]
        assert "in 1 files" in result

    @pytest.mark.asyncio
    async def test_skips_vcs_and_dependency_dirs(self, workspace: Path, ctx: ToolContext) -> None:
        _touch(workspace, ".git/config", "needle\n")
        _touch(workspace, "node_modules/lib/index.js", "needle\n")
        _touch(workspace, "vendor/x.go", "needle\n")
        _touch(workspace, "src/app.js", "needle\n")
        result = await GrepTool().execute(ctx, pattern="needle")
        assert _result_lines(result) == ["src/app.js:1:needle"]

    @pytest.mark.asyncio
    async def test_skips_binary_and_credential_files(self, workspace: Path, ctx: ToolContext) -> None:
        (workspace / "blob.txt").write_bytes(b"needle\x00\x01")
        _touch(workspace, ".env", "needle=secret\n")
        _touch(workspace, "ok.txt", "needle\n")
        result = await GrepTool().execute(ctx, pattern="needle")
        assert _result_lines(result) == ["ok.txt:1:needle"]
        assert "secret" not in result

    @pytest.mark.asyncio
    async def test_match_cap_reports_true_total(self, workspace: Path, ctx: ToolContext) -> None:
        _touch(workspace, "many.txt", "\n".join("hit" for _ in range(150)))
        result = await GrepTool().execute(ctx, pattern="hit")
        assert len(_result_lines(result)) == 100
        assert "Found 150 matches in 1 files (showing first 100 results)" in result

    @pytest.mark.asyncio
    async def test_single_file_path(self, workspace: Path, ctx: ToolContext) -> None:
        _touch(workspace, "one.txt", "alpha\nbeta\n")
        _touch(workspace, "two.txt", "alpha\n")
        result = await GrepTool().execute(ctx, pattern="alpha", path="one.txt")
        assert _result_lines(result) == ["one.txt:1:alpha"]

    @pytest.mark.asyncio
    async def test_no_matches(self, workspace: Path, ctx: ToolContext) -> None:
        _touch(workspace, "a.txt", "nothing here\n")
        result = await GrepTool().execute(ctx, pattern="absent")
        assert "Found 0 matches in 1 files" in result

    @pytest.mark.asyncio
    async def test_invalid_regex(self, ctx: ToolContext) -> None:
        with pytest.raises(BadPattern, match="invalid regex"):
            await GrepTool().execute(ctx, pattern="(unclosed")
