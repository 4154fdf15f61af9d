"""Session handler — the per-connection loop.

Learn: Two concurrent tasks run per connection, like any long-lived
socket handler:
1. Reader — receives frames, dispatches requests, queues responses
2. Closing watch — completes when the session leaves `open`
   (heartbeat timeout, send failure, server shutdown)

When either finishes, the other is cancelled and the session is closed.
The session's own writer task drains responses and broadcasts in order.

Requests on one connection are handled one after another, so responses
come back in the order requests were sent.
"""

import asyncio
from typing import Any, Optional, Union

import structlog
from starlette.websockets import WebSocket, WebSocketDisconnect

from rowcast.errors import ParseError, RelayError
from rowcast.messages import (
    Handshake,
    Outbound,
    OperationError,
    PingReply,
    RequestMessage,
    Welcome,
    parse_inbound,
)
from rowcast.realtime.dispatch import RequestDispatcher
from rowcast.realtime.registry import ConnectionRegistry
from rowcast.realtime.session import Session

logger = structlog.get_logger()


class SessionHandler:
    def __init__(
        self,
        websocket: WebSocket,
        registry: ConnectionRegistry,
        dispatcher: RequestDispatcher,
        queue_size: int = 256,
    ):
        self.websocket = websocket
        self.dispatcher = dispatcher
        self.session = Session(websocket, registry, queue_size=queue_size)

    async def run(self) -> None:
        session = self.session
        structlog.contextvars.bind_contextvars(session_id=session.id)
        client = self.websocket.client
        try:
            await self.websocket.accept()
            session.open()
            logger.info(
                "rowcast.session.opened",
                client=f"{client.host}:{client.port}" if client else None,
                sessions=len(session.registry),
            )
            session.send(Welcome())

            reader = asyncio.create_task(self._read_loop())
            closing = asyncio.create_task(session.wait_closing())
            done, pending = await asyncio.wait(
                [reader, closing],
                return_when=asyncio.FIRST_COMPLETED,
            )
            for task in pending:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            if reader in done and reader.exception() is not None:
                logger.error("rowcast.session.reader_crashed", exc_info=reader.exception())
        finally:
            await session.close()
            structlog.contextvars.unbind_contextvars("session_id")

    async def _read_loop(self) -> None:
        while True:
            try:
                message = await self.websocket.receive()
            except (WebSocketDisconnect, RuntimeError):
                return
            if message["type"] == "websocket.disconnect":
                logger.info("rowcast.session.disconnected", code=message.get("code"))
                return

            raw: Optional[Union[str, bytes]] = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue

            self.session.mark_alive()
            reply = await self.handle_frame(raw)
            self.session.send(reply)

    async def handle_frame(self, raw: Union[str, bytes]) -> Outbound:
        """Turn one inbound frame into exactly one reply. Never raises."""
        operation_id: Any = None
        try:
            inbound = parse_inbound(raw)
            operation_id = inbound.operation_id
            if isinstance(inbound, RequestMessage):
                return await self.dispatcher.dispatch(inbound)
            if isinstance(inbound, Handshake):
                logger.debug("rowcast.session.ping", operation_id=operation_id)
                return PingReply(operation_id=operation_id)
            raise ParseError("Unrecognized message", operation_id=operation_id)
        except RelayError as e:
            logger.info(
                "rowcast.request.failed",
                error=e.message,
                code=e.error_code,
                error_type=type(e).__name__,
            )
            return OperationError.from_exc(e, operation_id)
        except Exception as e:
            logger.exception("rowcast.request.crashed")
            return OperationError(
                error=f"An error occurred while processing the request: {e}",
                operation_id=operation_id,
            )
