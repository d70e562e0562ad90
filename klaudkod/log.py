"""Logging -- loguru sinks plus a per-session context carried through asyncio tasks.

Records emitted inside ``session_context(sid)`` (including from tasks created there)
carry ``extra["session"]``; the default format renders it as a ``[sid]`` prefix.
"""

from __future__ import annotations

import sys
from contextlib import AbstractContextManager

from loguru import logger

DEFAULT_FORMAT = "{time:HH:mm:ss} | {level:<7} | {extra[ctx]}{message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level:<7} | {extra[ctx]}{message}"


def _session_prefix(record: dict) -> None:
    session = record["extra"].get("session")
    record["extra"]["ctx"] = f"[{session}] " if session else ""


logger.remove()
logger.configure(patcher=_session_prefix)
logger.add(sys.stderr, level="INFO", format=DEFAULT_FORMAT)


def session_context(session_id: str) -> AbstractContextManager[None]:
    """Tag every record logged in this block, and in tasks spawned from it, with ``session_id``."""
    return logger.contextualize(session=session_id)


def configure(
    level: str = "INFO",
    fmt: str = "",
    json_format: bool = False,
    file: str = "",
    rotation: str = "10 MB",
    retention: str = "7 days",
) -> None:
    """Replace every sink. Called once from Klaudkod.__init__ with the LOG__* settings."""
    logger.remove()
    if json_format:
        # Serialized records already include extra["session"].
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=fmt or DEFAULT_FORMAT)

    if file:
        if json_format:
            logger.add(file, level=level, rotation=rotation, retention=retention, serialize=True)
        else:
            logger.add(file, level=level, rotation=rotation, retention=retention, format=fmt or FILE_FORMAT)
