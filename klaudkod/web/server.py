"""HTTP/WebSocket front door -- ``/ws`` for sessions, ``/health`` for probes."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse

from klaudkod.log import logger
from klaudkod.session import ConnectionClosed

if TYPE_CHECKING:
    from klaudkod.app import Klaudkod


class WebSocketConnection:
    """Adapts a Starlette WebSocket to the session's text-frame transport."""

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket
        self._closed = False

    async def receive_text(self) -> str:
        if self._closed:
            raise ConnectionClosed()
        try:
            message = await self._ws.receive()
        except (WebSocketDisconnect, RuntimeError) as e:
            self._closed = True
            raise ConnectionClosed() from e
        if message["type"] == "websocket.disconnect":
            self._closed = True
            raise ConnectionClosed()
        if message.get("text") is not None:
            return message["text"]
        return (message.get("bytes") or b"").decode("utf-8", errors="replace")

    async def send_text(self, data: str) -> None:
        try:
            await self._ws.send_text(data)
        except (WebSocketDisconnect, RuntimeError) as e:
            self._closed = True
            raise ConnectionClosed() from e

    async def close(self, code: int = 1000) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._ws.close(code=code)
        except RuntimeError:
            # Already closed by the peer.
            pass


def create_app(app: Klaudkod) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await app.sessions.close_all()

    api = FastAPI(
        title="klaudkod", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None,
    )

    @api.get("/health", response_class=PlainTextResponse)
    async def health() -> str:
        return "OK"

    @api.websocket("/ws")
    async def ws_endpoint(websocket: WebSocket) -> None:
        # Any origin is accepted.
        await websocket.accept()
        client = websocket.client
        logger.debug(f"WebSocket connected from {client.host if client else 'unknown'}")
        session = app.open_session(WebSocketConnection(websocket))
        await session.run()

    return api


async def serve(app: Klaudkod) -> None:
    """Run uvicorn until it is told to stop. Keepalive pings come from uvicorn."""
    cfg = app.config
    server = uvicorn.Server(uvicorn.Config(
        create_app(app),
        host=cfg.server_host,
        port=cfg.server_port,
        ws_max_size=cfg.max_frame_size,
        ws_ping_interval=cfg.ping_interval,
        ws_ping_timeout=cfg.pong_wait - cfg.ping_interval,
        log_config=None,
        access_log=False,
    ))
    logger.info(f"Listening on {cfg.server_host}:{cfg.server_port}")
    await server.serve()
