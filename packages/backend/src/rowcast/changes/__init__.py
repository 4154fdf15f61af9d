"""Change sources — where row changes come from.

Learn: The relay only needs an async iterator of ChangeEvents. Two
adapters ship:
1. PostgreSQL LISTEN/NOTIFY (triggers on watched tables)
2. Redis pub/sub (another process publishes the changes)
"""

from typing import Optional

from rowcast.changes.base import ChangeEvent, ChangeKind, ChangeSource, parse_notification
from rowcast.config import Settings

__all__ = [
    "ChangeEvent",
    "ChangeKind",
    "ChangeSource",
    "build_change_source",
    "parse_notification",
]


def build_change_source(settings: Settings) -> Optional[ChangeSource]:
    """Pick the change source named by ROWCAST_CHANGE_SOURCE."""
    if settings.change_source == "postgres":
        from rowcast.changes.postgres import PgNotifyChangeSource

        return PgNotifyChangeSource(
            settings.asyncpg_dsn,
            settings.notify_channel,
            settings.watched_tables,
        )
    if settings.change_source == "redis":
        from rowcast.changes.redis import RedisChangeSource

        return RedisChangeSource(settings.redis_url, settings.watched_tables)
    return None
