"""Heartbeat — pings every session and closes the ones that stopped answering.

Learn: Every tick, a session that has sent nothing since the previous
tick is terminated. Every other session has its flag cleared and is
sent a `{"type": "ping"}` message, so a client that only listens for
db_change pushes still has something to answer. Any inbound frame (a
pong, a request) sets the flag again. A client that ignores two pings
in a row is gone, and its slot in the registry is reclaimed.
"""

import asyncio

import structlog

from rowcast.messages import LivenessPing
from rowcast.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()


class Heartbeat:
    def __init__(self, registry: ConnectionRegistry, interval: float = 30.0):
        self.registry = registry
        self.interval = interval
        self._running = False

    def tick(self) -> int:
        """Run one liveness sweep. Returns how many sessions were closed."""
        dead = 0
        ping = LivenessPing().to_json()

        def visit(session) -> None:
            nonlocal dead
            if not session.alive:
                dead += 1
                logger.info("rowcast.heartbeat.timeout", session_id=session.id)
                session.terminate(code=1001, reason="Liveness check failed")
            else:
                session.alive = False
                session.send_text(ping)

        self.registry.for_each(visit)
        return dead

    async def run_loop(self) -> None:
        """Tick every `interval` seconds until stop() is called."""
        self._running = True
        logger.info("rowcast.heartbeat.started", interval=self.interval)
        while self._running:
            await asyncio.sleep(self.interval)
            if not self._running:
                break
            closed = self.tick()
            if closed:
                logger.info("rowcast.heartbeat.swept", closed=closed, remaining=len(self.registry))

    def stop(self) -> None:
        self._running = False
