"""Client sessions -- one per connection: read pump, write pump, prompt driver, history."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from typing import Any, Protocol

from klaudkod.agent import AgentLoop
from klaudkod.config import SECURITY_SYSTEM_PROMPT
from klaudkod.log import logger, session_context
from klaudkod.protocol import OutgoingFrame, event_to_frame, parse_incoming
from klaudkod.registry import ToolRegistry
from klaudkod.types import (
    EVENT_CHUNK,
    EVENT_TOOL_CALL,
    EVENT_TOOL_RESULT,
    Message,
    StreamEvent,
)

_CLOSE = object()  # write-pump sentinel


class ConnectionClosed(Exception):
    """The client connection is gone."""


class Connection(Protocol):
    """Full-duplex text-frame transport. ``receive_text`` raises ConnectionClosed."""

    async def receive_text(self) -> str: ...

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class Session:
    """Owns one client connection and its conversation.

    The read pump dispatches frames and never blocks on a running prompt. One
    prompt runs at a time on the driver task and at most one more may wait
    behind it; further prompts are rejected. The running prompt feeds the
    bounded outbound queue, which the write pump drains to the client. Closing
    outbound (slow client, write failure, shutdown) cancels the read pump, and
    the session then tears down the running prompt. ``history`` is only touched
    by the prompt currently running.
    """

    def __init__(
        self,
        connection: Connection,
        agent: AgentLoop,
        registry: ToolRegistry | None = None,
        *,
        session_id: str = "",
        system_prompt: str = SECURITY_SYSTEM_PROMPT,
        queue_size: int = 256,
        max_frame_size: int = 512 * 1024,
        write_wait: float = 10.0,
        on_close: Callable[[Session], None] | None = None,
    ) -> None:
        self.id = session_id or uuid.uuid4().hex[:12]
        self.history: list[Message] = []
        self._conn = connection
        self._agent = agent
        self._registry = registry
        self._system_prompt = system_prompt
        self._max_frame_size = max_frame_size
        self._write_wait = write_wait
        self._on_close = on_close
        self._outbound: asyncio.Queue[Any] = asyncio.Queue(maxsize=queue_size)
        self._outbound_closed = False
        self._prompts: asyncio.Queue[str] = asyncio.Queue(maxsize=1)
        self._turn: asyncio.Task[None] | None = None
        self._driver: asyncio.Task[None] | None = None
        self._writer: asyncio.Task[None] | None = None
        self._reader: asyncio.Task[None] | None = None

    @property
    def closed(self) -> bool:
        return self._outbound_closed

    @property
    def busy(self) -> bool:
        return self._turn is not None and not self._turn.done()

    # -- lifecycle --

    async def run(self) -> None:
        """Serve the connection until the client leaves or the session is closed."""
        with session_context(self.id):
            logger.info("Session opened")
            self._writer = asyncio.create_task(self._write_pump())
            self._driver = asyncio.create_task(self._drive())
            self._reader = asyncio.create_task(self._read_pump())
            try:
                await asyncio.wait({self._reader})
                if not self._reader.cancelled() and self._reader.exception() is not None:
                    logger.error(f"Session failed: {self._reader.exception()!r}")
            finally:
                await self._shutdown()
                logger.info(f"Session closed ({len(self.history)} messages)")

    async def _shutdown(self) -> None:
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            await asyncio.gather(self._reader, return_exceptions=True)
        if self._driver is not None:
            self._driver.cancel()
            await asyncio.gather(self._driver, return_exceptions=True)
        await self.cancel_turn()
        self.close_outbound()
        if self._writer is not None:
            await asyncio.gather(self._writer, return_exceptions=True)
        if self._on_close is not None:
            self._on_close(self)

    # -- inbound --

    async def _read_pump(self) -> None:
        while not self._outbound_closed:
            try:
                raw = await self._conn.receive_text()
            except ConnectionClosed:
                return
            if len(raw) > self._max_frame_size:
                logger.warning(f"Frame of {len(raw)} bytes exceeds limit, closing")
                return
            await self._dispatch(raw)

    async def _dispatch(self, raw: str) -> None:
        frame = parse_incoming(raw)
        if frame is None:
            logger.debug(f"Invalid frame {raw[:200]!r}")
            self.enqueue(OutgoingFrame.failure("Invalid message format"))
            return

        if frame.type == "prompt":
            if not frame.content.strip():
                self.enqueue(OutgoingFrame.failure("Empty prompt"))
                return
            await self._submit(frame.content)
        elif frame.type == "cancel":
            dropped = self._drop_waiting()
            if self.busy:
                logger.info("Cancel requested")
                await self.cancel_turn()
            for _ in range(dropped):
                self.enqueue(OutgoingFrame.failure("Request cancelled"))
        else:
            self.enqueue(OutgoingFrame.failure(f"Unknown message type: {frame.type}"))

    async def _submit(self, prompt: str) -> None:
        if not self._prompts.full():
            logger.info(f"Prompt ({len(prompt)} chars)")
            self._prompts.put_nowait(prompt)
        elif not self.busy:
            # The driver has not picked up the waiting prompt yet.
            logger.info(f"Prompt ({len(prompt)} chars)")
            await self._prompts.put(prompt)
        else:
            logger.info("Prompt rejected, one is already running and one waiting")
            self.enqueue(OutgoingFrame.failure("Prompt rejected: another prompt is already waiting"))

    def _drop_waiting(self) -> int:
        dropped = 0
        while not self._prompts.empty():
            self._prompts.get_nowait()
            dropped += 1
        return dropped

    async def cancel_turn(self) -> None:
        turn = self._turn
        if turn is None or turn.done():
            return
        turn.cancel()
        await asyncio.gather(turn, return_exceptions=True)

    # -- prompt driver --

    async def _drive(self) -> None:
        """Run queued prompts strictly one after another."""
        while True:
            prompt = await self._prompts.get()
            self._turn = asyncio.create_task(self._run_turn(prompt))
            await asyncio.gather(self._turn, return_exceptions=True)

    def _event_stream(self, transcript: list[Message]):
        messages = list(self.history)
        if self._registry is None:
            return self._agent.stream(messages, transcript=transcript)

        registry = self._registry
        ctx = registry.context(self.id)

        async def executor(name: str, arguments: str) -> tuple[str, bool]:
            result = await registry.execute(ctx, name, arguments)
            return result.content, result.is_error

        return self._agent.stream_with_tools(messages, registry.schemas(), executor, transcript=transcript)

    async def _run_turn(self, prompt: str) -> None:
        if not self.history:
            self.history.append(Message.system(self._system_prompt))
        self.history.append(Message.user(prompt))

        transcript: list[Message] = []
        pending_text: list[str] = []
        terminated = False
        events = self._event_stream(transcript)
        try:
            async for event in events:
                self._track(event, pending_text)
                terminated = terminated or event.is_terminal
                self.enqueue(event_to_frame(event))
        except asyncio.CancelledError:
            if not terminated:
                self.enqueue(event_to_frame(StreamEvent.failure("Request cancelled")))
            raise
        except Exception as e:
            logger.error(f"Prompt failed: {e!r}")
            if not terminated:
                self.enqueue(event_to_frame(StreamEvent.failure(f"Internal error: {e}")))
        finally:
            await events.aclose()
            self._commit(transcript, "".join(pending_text))

    @staticmethod
    def _track(event: StreamEvent, pending_text: list[str]) -> None:
        """Keep the text streamed since the model turn the loop last recorded."""
        if event.type == EVENT_CHUNK:
            pending_text.append(event.content)
        elif event.type in (EVENT_TOOL_CALL, EVENT_TOOL_RESULT):
            pending_text.clear()

    def _commit(self, transcript: list[Message], pending_text: str) -> None:
        """Append the turn's messages, trimming any tool round that never completed."""
        committed = _complete_prefix(transcript)
        self.history.extend(committed)
        if len(committed) < len(transcript):
            # An unanswered tool round was dropped; its text is in the dropped message.
            pending_text = transcript[len(committed)].content or pending_text
        elif committed and committed[-1].role == "assistant" and not committed[-1].tool_calls:
            pending_text = ""
        if pending_text:
            self.history.append(Message.assistant(pending_text))

    # -- outbound --

    def enqueue(self, frame: OutgoingFrame) -> bool:
        """Queue a frame for the client. A full queue means a slow client: drop it."""
        if self._outbound_closed:
            return False
        try:
            self._outbound.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning("Outbound queue full, dropping slow client")
            self.close_outbound()
            if self._writer is not None:
                self._writer.cancel()
            if self._turn is not None:
                self._turn.cancel()
            return False
        return True

    def close_outbound(self) -> None:
        """Stop accepting frames, discard queued ones, and stop both pumps."""
        if self._outbound_closed:
            return
        self._outbound_closed = True
        while not self._outbound.empty():
            self._outbound.get_nowait()
        self._outbound.put_nowait(_CLOSE)
        if self._reader is not None:
            self._reader.cancel()

    async def _write_pump(self) -> None:
        try:
            while True:
                frame = await self._outbound.get()
                if frame is _CLOSE:
                    return
                await asyncio.wait_for(self._conn.send_text(frame.to_json()), timeout=self._write_wait)
        except asyncio.TimeoutError:
            logger.warning("Write timed out")
        except (ConnectionClosed, OSError) as e:
            logger.debug(f"Write failed: {e!r}")
        finally:
            self._outbound_closed = True
            if self._reader is not None:
                self._reader.cancel()
            try:
                await self._conn.close()
            except Exception as e:
                logger.debug(f"Close failed: {e!r}")


def _complete_prefix(messages: list[Message]) -> list[Message]:
    """Longest prefix in which every assistant tool call is answered by a tool message."""
    end = 0
    i = 0
    while i < len(messages):
        msg = messages[i]
        if msg.role == "assistant" and msg.tool_calls:
            ids = [tc.id for tc in msg.tool_calls]
            answers = messages[i + 1 : i + 1 + len(ids)]
            if [m.tool_call_id for m in answers if m.role == "tool"] != ids:
                break
            i += 1 + len(ids)
        else:
            i += 1
        end = i
    return messages[:end]


class SessionManager:
    """Registry of live sessions."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def register(self, session: Session) -> None:
        self._sessions[session.id] = session

    def unregister(self, session: Session) -> None:
        self._sessions.pop(session.id, None)

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def __len__(self) -> int:
        return len(self._sessions)

    async def close_all(self) -> None:
        for session in list(self._sessions.values()):
            await session.cancel_turn()
            session.close_outbound()
