"""PostgreSQL LISTEN/NOTIFY change source.

Learn: Triggers installed by `rowcast install-triggers` call pg_notify on
one channel for every row change on a watched table. This source holds a
dedicated asyncpg connection that LISTENs on that channel.

asyncpg delivers notifications through a synchronous callback, so the
callback only decodes the payload and puts it on an asyncio.Queue.
`events()` is the async iterator the change pump consumes.
"""

import asyncio
from typing import AsyncIterator, Iterable, Optional

import asyncpg
import structlog

from rowcast.changes.base import ChangeEvent, parse_notification

logger = structlog.get_logger()

# Sentinel put on the queue by close() to end events().
_CLOSED = object()


class PgNotifyChangeSource:
    """Yields ChangeEvents from a PostgreSQL notification channel."""

    def __init__(self, dsn: str, channel: str, tables: Iterable[str]):
        self.dsn = dsn
        self.channel = channel
        self.tables = frozenset(tables)
        self._conn: Optional[asyncpg.Connection] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    async def connect(self) -> None:
        self._conn = await asyncpg.connect(self.dsn)
        self._conn.add_termination_listener(self._on_terminated)
        await self._conn.add_listener(self.channel, self._on_notify)
        logger.info(
            "rowcast.changes.listening",
            source="postgres",
            channel=self.channel,
            tables=sorted(self.tables),
        )

    def _on_notify(self, conn, pid, channel, payload):
        """Called by asyncpg for every NOTIFY on our channel."""
        try:
            event = parse_notification(payload)
        except ValueError as e:
            logger.warning("rowcast.changes.bad_payload", channel=channel, error=str(e))
            return
        if event.table not in self.tables:
            logger.debug("rowcast.changes.unwatched", table=event.table)
            return
        self._queue.put_nowait(event)

    def _on_terminated(self, conn):
        if not self._closed:
            logger.warning("rowcast.changes.connection_lost", source="postgres")
            self._queue.put_nowait(ConnectionError("LISTEN connection terminated"))

    async def events(self) -> AsyncIterator[ChangeEvent]:
        if self._conn is None or self._conn.is_closed():
            await self.connect()
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._conn is not None:
            try:
                await self._conn.remove_listener(self.channel, self._on_notify)
            except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
                logger.debug("rowcast.changes.unlisten_failed", channel=self.channel)
            await self._conn.close()
            self._conn = None
        self._queue.put_nowait(_CLOSED)
