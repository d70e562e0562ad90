"""Sandbox policy -- path confinement, credential blocklist, bounded subprocess execution."""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from dataclasses import dataclass, field
from pathlib import Path

from klaudkod.errors import PathEscape
from klaudkod.log import logger

# Extensions the read tool refuses without looking at the content.
BINARY_EXTENSIONS = frozenset({
    ".zip", ".tar", ".gz", ".7z", ".exe", ".dll", ".so", ".class", ".jar", ".war",
    ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".odt", ".ods", ".odp",
    ".bin", ".dat", ".obj", ".o", ".a", ".lib", ".wasm", ".pyc", ".pyo",
})

# Suffixes that mark a template rather than a real secret file.
CREDENTIAL_WHITELIST = (".env.sample", ".env.example", ".env.template", ".example")

SNIFF_BYTES = 512

# Seconds to wait for output pipes after a timed-out command is killed.
KILL_GRACE = 2.0


def resolve_path(path: str, workspace: Path) -> Path:
    """Resolve ``path`` against ``workspace``; deny anything that lands outside it.

    ``workspace`` must already be absolute and canonical.
    """
    p = Path(path).expanduser()
    if not p.is_absolute():
        p = workspace / p
    p = p.resolve()
    if not p.is_relative_to(workspace):
        raise PathEscape(f"access denied: path {p} is outside working directory {workspace}")
    return p


def is_credential_file(name: str) -> bool:
    """True for .env-style files: ``.env``, ``.env.<x>`` and ``<x>.env`` (case-insensitive).

    Template suffixes such as ``.env.example`` are allowed. ``.envrc`` is not a match.
    """
    lower = name.lower()
    if lower.endswith(CREDENTIAL_WHITELIST):
        return False
    if lower.startswith(".env") and (len(lower) == 4 or lower[4] == "."):
        return True
    return lower.endswith(".env")


def has_binary_extension(path: Path) -> bool:
    return path.suffix.lower() in BINARY_EXTENSIONS


def sniff_binary(path: Path) -> bool:
    """Read the first bytes of ``path``; NUL means binary. Unreadable files count as binary."""
    try:
        with open(path, "rb") as f:
            head = f.read(SNIFF_BYTES)
    except OSError:
        return True
    return b"\x00" in head


@dataclass
class CommandResult:
    stdout: str
    stderr: str
    returncode: int
    timed_out: bool = False


@dataclass
class SandboxConfig:
    """Limits and environment policy for shell commands."""

    sanitize_env: bool = True
    allowed_env: list[str] = field(
        default_factory=lambda: ["PATH", "HOME", "LANG", "TERM", "USER", "SHELL",
                                 "PYTHONPATH", "PYTHONIOENCODING"]
    )


def _sanitize_env(allowed: list[str]) -> dict[str, str]:
    """Build a minimal environment from allowed variable names."""
    env = {}
    for key in allowed:
        val = os.environ.get(key)
        if val is not None:
            env[key] = val
    env.setdefault("PYTHONIOENCODING", "utf-8")
    return env


def _kill_group(proc: asyncio.subprocess.Process) -> None:
    """Kill the command and everything it spawned."""
    try:
        if sys.platform == "win32":
            if proc.returncode is None:
                proc.kill()
        else:
            # The group can outlive the shell that leads it.
            os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


async def _drain(stream: asyncio.StreamReader | None, buf: bytearray) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(65536)
        if not chunk:
            return
        buf.extend(chunk)


async def run_command(
    command: str,
    cwd: Path,
    timeout: float,
    config: SandboxConfig | None = None,
) -> CommandResult:
    """Run ``command`` through the shell with a deadline of ``timeout`` seconds.

    On timeout or cancellation the whole process group is killed. Output collected
    before the kill is still returned, waiting at most KILL_GRACE seconds for pipes
    held open by escaped children. Spawn failures raise OSError.
    """
    cfg = config or SandboxConfig()
    env = _sanitize_env(cfg.allowed_env) if cfg.sanitize_env else None

    proc = await asyncio.create_subprocess_shell(
        command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        stdin=asyncio.subprocess.DEVNULL,
        cwd=str(cwd),
        env=env,
        start_new_session=sys.platform != "win32",
    )
    stdout, stderr = bytearray(), bytearray()
    collect = asyncio.ensure_future(asyncio.gather(
        _drain(proc.stdout, stdout), _drain(proc.stderr, stderr), proc.wait(),
    ))
    timed_out = False
    try:
        await asyncio.wait_for(asyncio.shield(collect), timeout=timeout)
    except asyncio.TimeoutError:
        timed_out = True
        _kill_group(proc)
        try:
            await asyncio.wait_for(collect, timeout=KILL_GRACE)
        except asyncio.TimeoutError:
            logger.warning(f"Command output still open {KILL_GRACE}s after kill, returning partial output")
    except asyncio.CancelledError:
        _kill_group(proc)
        collect.cancel()
        raise

    return CommandResult(
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        returncode=proc.returncode if proc.returncode is not None else -1,
        timed_out=timed_out,
    )
