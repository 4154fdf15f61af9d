"""Change event model and the change-source contract."""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Mapping, Optional, Protocol

import structlog

logger = structlog.get_logger()


class ChangeKind(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    """One row-level change on a watched table."""

    table: str
    kind: ChangeKind
    new: Optional[Mapping[str, Any]] = None
    old: Optional[Mapping[str, Any]] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ChangeSource(Protocol):
    """Anything that yields ChangeEvents until closed."""

    def events(self) -> AsyncIterator[ChangeEvent]: ...

    async def close(self) -> None: ...


def parse_notification(payload: str) -> ChangeEvent:
    """Decode a JSON change notification.

    Shape: {table, type, record, old_record, schema?, commit_timestamp?}.
    Raises ValueError on anything else.
    """
    data = json.loads(payload)
    if not isinstance(data, dict):
        raise ValueError("change notification must be a JSON object")

    table = data.get("table")
    if not table or not isinstance(table, str):
        raise ValueError("change notification has no table")

    try:
        kind = ChangeKind(str(data.get("type", "")).upper())
    except ValueError:
        raise ValueError(f"unknown change type: {data.get('type')!r}")

    timestamp = datetime.now(timezone.utc)
    raw_ts = data.get("commit_timestamp")
    if raw_ts:
        try:
            timestamp = datetime.fromisoformat(str(raw_ts).replace("Z", "+00:00"))
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=timezone.utc)
        except ValueError:
            logger.debug("rowcast.changes.bad_timestamp", value=raw_ts)

    return ChangeEvent(
        table=table,
        kind=kind,
        new=data.get("record") or None,
        old=data.get("old_record") or None,
        timestamp=timestamp,
    )
