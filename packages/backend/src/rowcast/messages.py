"""Wire messages — inbound variants and the outbound shapes.

Learn: Inbound frames are parsed into exactly one of two variants:

    RequestMessage  {operation, table, operationId?, data?}
    Handshake       any other JSON object (ping / hello)

Anything that is not a JSON object raises ParseError. Outbound messages
are pydantic models serialized with `to_json()`. operationId is opaque:
whatever JSON value the client sent is echoed back untouched.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from rowcast.errors import ParseError, RelayError


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Operation(str, Enum):
    """Closed set of request operations."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    SELECT = "select"

    @classmethod
    def lookup(cls, name: str) -> Optional["Operation"]:
        try:
            return cls(name.lower())
        except ValueError:
            return None


# ─── Inbound ──────────────────────────────────────────────


class RequestMessage(BaseModel):
    operation: str
    table: str
    operation_id: Any = Field(None, alias="operationId")
    data: Any = None

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class Handshake(BaseModel):
    operation_id: Any = Field(None, alias="operationId")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


Inbound = Union[RequestMessage, Handshake]


def parse_inbound(raw: Union[str, bytes]) -> Inbound:
    """Parse one frame into a Request or a Handshake."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise ParseError("Invalid JSON format")
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        raise ParseError("Invalid JSON format")

    if not isinstance(payload, dict):
        raise ParseError("Invalid JSON format")

    operation = payload.get("operation")
    table = payload.get("table")
    if operation and table:
        if not isinstance(operation, str) or not isinstance(table, str):
            raise ParseError(
                "operation and table must be strings",
                operation_id=payload.get("operationId"),
            )
        return RequestMessage.model_validate(payload)
    return Handshake.model_validate(payload)


# ─── Outbound ─────────────────────────────────────────────


class Outbound(BaseModel):
    """Base for server → client messages."""

    # Optional fields are omitted rather than sent as null.
    exclude_none: ClassVar[bool] = True

    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=self.exclude_none)


class Welcome(Outbound):
    status: Literal["connected"] = "connected"
    message: str = "Connected to the WebSocket server."
    server_time: str = Field(default_factory=utcnow_iso)


class LivenessPing(Outbound):
    """Sent by the heartbeat. Any frame the client sends back answers it."""

    type: Literal["ping"] = "ping"
    server_time: str = Field(default_factory=utcnow_iso)


class PingReply(Outbound):
    status: Literal["success"] = "success"
    message: str = "Message received"
    operation_id: Any = Field(None, alias="operationId")
    server_time: str = Field(default_factory=utcnow_iso)


class OperationSuccess(Outbound):
    status: Literal["success"] = "success"
    success: Literal[True] = True
    operation_id: Any = Field(None, alias="operationId")
    server_time: str = Field(default_factory=utcnow_iso)
    affected_rows: Optional[int] = Field(None, alias="affectedRows")
    insert_id: Any = Field(None, alias="insertId")
    data: Optional[list[dict[str, Any]]] = None


class OperationError(Outbound):
    status: Literal["error"] = "error"
    success: Literal[False] = False
    error: str
    error_code: Optional[str] = Field(None, alias="errorCode")
    operation_id: Any = Field(None, alias="operationId")
    server_time: str = Field(default_factory=utcnow_iso)

    @classmethod
    def from_exc(cls, exc: RelayError, operation_id: Any = None) -> "OperationError":
        if operation_id is None:
            operation_id = exc.operation_id
        return cls(error=exc.message, error_code=exc.error_code, operation_id=operation_id)


class DbChange(Outbound):
    # Row bodies are sent even when null.
    exclude_none: ClassVar[bool] = False

    type: Literal["db_change"] = "db_change"
    table: str
    event: str
    data: Optional[dict[str, Any]] = None
    old_data: Optional[dict[str, Any]] = None
    timestamp: str
