"""Composition root -- wire everything together."""

from __future__ import annotations

import sys

from klaudkod.agent import AgentLoop
from klaudkod.config import ServerConfig, load_config, validate_startup
from klaudkod.log import logger
from klaudkod.provider import LiteLLMProvider, LLMProvider
from klaudkod.registry import Approver, ToolRegistry
from klaudkod.session import Connection, Session, SessionManager


class Klaudkod:
    """Main application. Create, configure, run."""

    def __init__(
        self,
        config: ServerConfig | None = None,
        provider: LLMProvider | None = None,
        approver: Approver | None = None,
    ) -> None:
        self.config = config or load_config()

        # Configure logging early -- before any logger.info() calls
        from klaudkod.log import configure as _configure_log
        lc = self.config.log
        _configure_log(
            level=lc.level, fmt=lc.format, json_format=lc.json_format,
            file=lc.file, rotation=lc.rotation, retention=lc.retention,
        )

        validate_startup(self.config)

        self.workspace = self.config.workspace
        self.provider: LLMProvider = provider or self._create_provider()
        self.agent = AgentLoop(self.provider, max_iterations=self.config.max_iterations)
        self.registry: ToolRegistry | None = None
        if self.config.tools_enabled:
            from klaudkod.tools import build_registry
            self.registry = build_registry(self.config, approver=approver)
        self.sessions = SessionManager()

    def _create_provider(self) -> LLMProvider:
        c = self.config
        return LiteLLMProvider(
            model=c.llm_model,
            api_key=c.llm_api_key,
            api_base=c.llm_base_url,
            max_retries=c.llm_max_retries,
            retry_base_delay=c.llm_retry_base_delay,
        )

    def open_session(self, connection: Connection) -> Session:
        """Create a session for a freshly accepted connection and track it until it closes."""
        c = self.config
        session = Session(
            connection,
            self.agent,
            self.registry,
            queue_size=c.outbound_queue_size,
            max_frame_size=c.max_frame_size,
            write_wait=c.write_wait,
            on_close=self.sessions.unregister,
        )
        self.sessions.register(session)
        return session

    async def run(self) -> None:
        from klaudkod.web import serve

        tools = ", ".join(self.registry.names()) if self.registry else "disabled"
        logger.info(f"klaudkod starting -- model={self.config.llm_model}, "
                    f"workspace={self.workspace}, tools={tools}")
        try:
            await serve(self)
        finally:
            await self.sessions.close_all()
            logger.info("klaudkod stopped")


def create(config: ServerConfig) -> Klaudkod:
    """Build the app, exiting with status 1 on invalid configuration."""
    try:
        return Klaudkod(config)
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)
