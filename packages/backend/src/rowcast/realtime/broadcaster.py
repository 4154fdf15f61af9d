"""Broadcaster — fans one change event out to every open session.

Learn: The message is serialized once and put on each session's outbox.
publish() never awaits, so an event reaches every outbox within the
same loop iteration it was received in. Sessions that are mid-close are
skipped quietly.
"""

import structlog
from fastapi.encoders import jsonable_encoder

from rowcast.changes.base import ChangeEvent
from rowcast.messages import DbChange
from rowcast.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()


def change_message(event: ChangeEvent) -> DbChange:
    """Deletes carry no new row, so `data` falls back to the old row."""
    new = jsonable_encoder(dict(event.new)) if event.new else None
    old = jsonable_encoder(dict(event.old)) if event.old else None
    return DbChange(
        table=event.table,
        event=event.kind.value,
        data=new if new is not None else old,
        old_data=old,
        timestamp=event.timestamp.isoformat(),
    )


class Broadcaster:
    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry
        self.published = 0

    def publish(self, event: ChangeEvent) -> int:
        """Queue the change on every writable session. Returns deliveries."""
        text = change_message(event).to_json()
        delivered = 0

        def visit(session) -> None:
            nonlocal delivered
            if session.writable and session.send_text(text):
                delivered += 1

        self.registry.for_each(visit)
        self.published += 1
        logger.info(
            "rowcast.broadcast",
            table=event.table,
            event=event.kind.value,
            sessions=len(self.registry),
            delivered=delivered,
        )
        return delivered
