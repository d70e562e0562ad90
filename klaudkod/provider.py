"""LLM Provider abstraction -- LiteLLM backend."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from klaudkod.log import logger


@dataclass
class ToolCallDelta:
    """One fragment of a streamed tool call. Empty fields were absent from the delta."""

    index: int = 0
    id: str = ""
    name: str = ""
    arguments: str = ""


@dataclass
class ChatDelta:
    """One decoded streaming chunk: content text, tool-call fragments, or both."""

    content: str = ""
    tool_calls: list[ToolCallDelta] = field(default_factory=list)
    finish_reason: str | None = None


class LLMProvider(ABC):
    """Abstract streaming chat provider with OpenAI-style function calling."""

    @abstractmethod
    def chat_stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[ChatDelta]:
        """Stream deltas for one completion. Transport and decode failures raise."""
        ...


class LiteLLMProvider(LLMProvider):
    """LiteLLM-backed provider; ``api_base`` points it at any OpenAI-compatible endpoint."""

    def __init__(
        self,
        model: str,
        api_key: str = "",
        api_base: str = "",
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay

    def _model_name(self) -> str:
        # Bare model names behind a custom base URL are routed as OpenAI-compatible.
        if self.api_base and "/" not in self.model:
            return f"openai/{self.model}"
        return self.model

    async def _open(self, kwargs: dict[str, Any]) -> Any:
        """Open the stream, retrying with exponential backoff before any delta is read."""
        from litellm import acompletion

        max_attempts = max(1, self.max_retries)
        for attempt in range(max_attempts):
            try:
                return await acompletion(**kwargs)
            except Exception as e:
                if attempt == max_attempts - 1:
                    logger.error(f"LLM stream failed after {max_attempts} attempts: {e}")
                    raise
                delay = self.retry_base_delay * (2 ** attempt)
                logger.warning(f"LLM call failed (attempt {attempt + 1}/{max_attempts}): {e}, retrying in {delay}s")
                await asyncio.sleep(delay)

    async def chat_stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[ChatDelta]:
        kwargs: dict[str, Any] = {
            "model": self._model_name(),
            "messages": messages,
            "stream": True,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if tools:
            kwargs["tools"] = tools

        stream = await self._open(kwargs)
        async for chunk in stream:
            for choice in getattr(chunk, "choices", None) or []:
                yield _parse_delta(choice)


def _parse_delta(choice: Any) -> ChatDelta:
    delta = getattr(choice, "delta", None)
    tool_calls: list[ToolCallDelta] = []
    for tc in getattr(delta, "tool_calls", None) or []:
        fn = getattr(tc, "function", None)
        tool_calls.append(ToolCallDelta(
            index=getattr(tc, "index", 0) or 0,
            id=getattr(tc, "id", None) or "",
            name=getattr(fn, "name", None) or "",
            arguments=getattr(fn, "arguments", None) or "",
        ))
    return ChatDelta(
        content=getattr(delta, "content", None) or "",
        tool_calls=tool_calls,
        finish_reason=getattr(choice, "finish_reason", None),
    )
