"""Redis pub/sub change source.

Learn: Redis pub/sub is fire-and-forget. If no relay is subscribed, the
change is lost. That's fine for live UI updates (clients can always
select to catch up).

Channel naming: rowcast:changes:{table}
Any process can publish a change notification with `publish_change()`
(or `rowcast publish` from the CLI) and every relay subscribed to the
table forwards it to its clients.
"""

import json
from typing import Any, AsyncIterator, Iterable, Mapping, Optional

import redis.asyncio as aioredis
import structlog

from rowcast.changes.base import ChangeEvent, parse_notification

logger = structlog.get_logger()

CHANNEL_PREFIX = "rowcast:changes:"


def channel_for(table: str) -> str:
    return f"{CHANNEL_PREFIX}{table}"


class RedisChangeSource:
    """Yields ChangeEvents published to per-table Redis channels."""

    def __init__(self, redis_url: str, tables: Iterable[str]):
        self.redis_url = redis_url
        self.tables = frozenset(tables)
        self._redis: Optional[aioredis.Redis] = None
        self._pubsub = None

    async def events(self) -> AsyncIterator[ChangeEvent]:
        # Drop whatever a previous, failed subscription left behind.
        await self.close()
        self._redis = aioredis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        self._pubsub = self._redis.pubsub()
        channels = [channel_for(t) for t in sorted(self.tables)]
        await self._pubsub.subscribe(*channels)
        logger.info("rowcast.changes.listening", source="redis", channels=channels)

        async for message in self._pubsub.listen():
            if message["type"] != "message":
                continue
            try:
                event = parse_notification(message["data"])
            except ValueError as e:
                logger.warning(
                    "rowcast.changes.bad_payload",
                    channel=message.get("channel"),
                    error=str(e),
                )
                continue
            if event.table not in self.tables:
                continue
            yield event

    async def close(self) -> None:
        if self._pubsub is not None:
            await self._pubsub.unsubscribe()
            await self._pubsub.aclose()
            self._pubsub = None
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


async def publish_change(
    redis_url: str,
    table: str,
    event: str,
    record: Optional[Mapping[str, Any]] = None,
    old_record: Optional[Mapping[str, Any]] = None,
) -> int:
    """Publish one change notification. Returns the subscriber count."""
    r = aioredis.from_url(redis_url, encoding="utf-8", decode_responses=True)
    try:
        payload = json.dumps({
            "table": table,
            "type": event.upper(),
            "record": record,
            "old_record": old_record,
        }, default=str)
        return await r.publish(channel_for(table), payload)
    finally:
        await r.aclose()
