"""Relay — wires the registry, broadcaster, heartbeat and change pump.

Learn: One Relay lives on app.state for the lifetime of the process.
The FastAPI lifespan calls start() and stop(); the WebSocket endpoint
uses it to build a SessionHandler per connection.

Background tasks:
1. Change pump — iterates the change source, hands events to the broadcaster
2. Heartbeat — liveness sweep every `heartbeat_interval` seconds

If the change source fails, the pump logs it and reconnects after
`retry_seconds`. Sessions are unaffected.
"""

import asyncio
from typing import Optional

import structlog
from starlette.websockets import WebSocket

from rowcast.changes.base import ChangeSource
from rowcast.db.backend import DataBackend
from rowcast.realtime.broadcaster import Broadcaster
from rowcast.realtime.dispatch import RequestDispatcher
from rowcast.realtime.handler import SessionHandler
from rowcast.realtime.heartbeat import Heartbeat
from rowcast.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()


class Relay:
    def __init__(
        self,
        backend: DataBackend,
        change_source: Optional[ChangeSource] = None,
        heartbeat_interval: float = 30.0,
        backend_timeout: Optional[float] = 30.0,
        queue_size: int = 256,
        retry_seconds: float = 5.0,
    ):
        self.backend = backend
        self.change_source = change_source
        self.registry = ConnectionRegistry()
        self.broadcaster = Broadcaster(self.registry)
        self.dispatcher = RequestDispatcher(backend, timeout=backend_timeout)
        self.heartbeat = Heartbeat(self.registry, heartbeat_interval)
        self.queue_size = queue_size
        self.retry_seconds = retry_seconds
        self._tasks: list[asyncio.Task] = []
        self._stopping = False

    def handler(self, websocket: WebSocket) -> SessionHandler:
        return SessionHandler(websocket, self.registry, self.dispatcher, queue_size=self.queue_size)

    async def start(self) -> None:
        self._stopping = False
        if self.change_source is not None:
            self._tasks.append(asyncio.create_task(self._pump(), name="rowcast-change-pump"))
        if self.heartbeat.interval > 0:
            self._tasks.append(asyncio.create_task(self.heartbeat.run_loop(), name="rowcast-heartbeat"))
        logger.info(
            "rowcast.relay.started",
            change_source=type(self.change_source).__name__ if self.change_source else None,
            heartbeat_interval=self.heartbeat.interval,
        )

    async def _pump(self) -> None:
        """Forward change events to the broadcaster until stopped."""
        while not self._stopping:
            try:
                async for event in self.change_source.events():
                    self.broadcaster.publish(event)
                if self._stopping:
                    return
                logger.warning("rowcast.changes.stream_ended")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("rowcast.changes.failed", error=str(e), retry_in=self.retry_seconds)
            await asyncio.sleep(self.retry_seconds)

    async def stop(self, grace: float = 10.0) -> None:
        """Stop ticking, tear down the change source, close every session."""
        self._stopping = True
        self.heartbeat.stop()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

        if self.change_source is not None:
            try:
                await self.change_source.close()
            except Exception as e:
                logger.warning("rowcast.changes.close_failed", error=str(e))

        open_sessions = len(self.registry)
        try:
            await asyncio.wait_for(self.registry.close_all(), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning("rowcast.relay.close_timeout", remaining=len(self.registry))
        logger.info("rowcast.relay.stopped", closed_sessions=open_sessions)

