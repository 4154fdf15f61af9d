"""Session — one open WebSocket and its outbound queue.

Learn: Nothing writes to the socket directly. Responses and broadcasts
are put on a bounded outbox and a single writer task drains it, so
frames on one socket never interleave and a broadcast never waits on
a slow client.

Lifecycle: connecting → open → closing → closed. Leaving `open` removes
the session from the registry before anything awaits, so the registry
never holds a closing session.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import structlog
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from rowcast.errors import TransportError
from rowcast.messages import Outbound
from rowcast.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()


class SessionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class Session:
    """A client connection as seen by the registry and broadcaster."""

    def __init__(
        self,
        websocket: WebSocket,
        registry: ConnectionRegistry,
        queue_size: int = 256,
        flush_timeout: float = 2.0,
    ):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.registry = registry
        self.flush_timeout = flush_timeout
        self.state = SessionState.CONNECTING
        self.alive = True
        self.connected_at = datetime.now(timezone.utc)
        self._outbox: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._writer: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None
        self._closing = asyncio.Event()
        self._closed = asyncio.Event()

    def __repr__(self) -> str:
        return f"<Session {self.id} {self.state.value}>"

    # ─── State ────────────────────────────────────────────

    def open(self) -> None:
        """Register and start the writer. The socket must be accepted."""
        if self.state is not SessionState.CONNECTING:
            return
        self.state = SessionState.OPEN
        self.registry.add(self)
        self._writer = asyncio.create_task(self._write_loop(), name=f"rowcast-writer-{self.id}")

    @property
    def writable(self) -> bool:
        return (
            self.state is SessionState.OPEN
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def mark_alive(self) -> None:
        self.alive = True

    async def wait_closing(self) -> None:
        await self._closing.wait()

    # ─── Sending ──────────────────────────────────────────

    def send_text(self, text: str) -> bool:
        """Queue a frame. Returns False if the session can't take it."""
        if not self.writable:
            logger.debug("rowcast.session.dropped", session_id=self.id, state=self.state.value)
            return False
        try:
            self._outbox.put_nowait(text)
        except asyncio.QueueFull:
            logger.warning(
                "rowcast.session.slow_consumer",
                session_id=self.id,
                queued=self._outbox.qsize(),
            )
            self.terminate(code=1008, reason="Send queue overflow")
            return False
        return True

    def send(self, message: Outbound) -> bool:
        return self.send_text(message.to_json())

    async def _write_loop(self) -> None:
        while True:
            text = await self._outbox.get()
            try:
                await self.websocket.send_text(text)
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                error = TransportError(f"send failed: {e}")
                logger.info("rowcast.session.send_failed", session_id=self.id, error=error.message)
                self.terminate(code=1011, reason="Send failed")
                return
            finally:
                self._outbox.task_done()

    # ─── Closing ──────────────────────────────────────────

    def _begin_close(self) -> bool:
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            return False
        self.state = SessionState.CLOSING
        self.registry.remove(self)
        self._closing.set()
        return True

    def terminate(self, code: int = 1001, reason: str = "") -> None:
        """Deregister now, close the socket in the background."""
        if self._begin_close():
            self._close_task = asyncio.create_task(self._finish_close(code, reason, flush=False))

    async def close(self, code: int = 1000, reason: str = "", flush: bool = False) -> None:
        if self._begin_close():
            await self._finish_close(code, reason, flush)
        else:
            await self._closed.wait()

    async def _finish_close(self, code: int, reason: str, flush: bool) -> None:
        try:
            writer = self._writer
            if flush and writer is not None and not writer.done():
                try:
                    await asyncio.wait_for(self._outbox.join(), timeout=self.flush_timeout)
                except asyncio.TimeoutError:
                    logger.info("rowcast.session.flush_timeout", session_id=self.id)
            if writer is not None and writer is not asyncio.current_task():
                writer.cancel()
                try:
                    await writer
                except asyncio.CancelledError:
                    pass

            if (
                self.websocket.client_state == WebSocketState.CONNECTED
                and self.websocket.application_state == WebSocketState.CONNECTED
            ):
                try:
                    await self.websocket.close(code=code, reason=reason)
                except (WebSocketDisconnect, RuntimeError, OSError):
                    logger.debug("rowcast.session.close_failed", session_id=self.id)
        finally:
            self.state = SessionState.CLOSED
            self._closed.set()
            logger.info("rowcast.session.closed", session_id=self.id, code=code, reason=reason)
