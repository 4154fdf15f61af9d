"""Request dispatch — maps a client request onto the data backend.

Learn: The operation name selects one of four handlers from a closed
table. Each handler validates its own parameters, calls the backend,
and shapes the result into an OperationSuccess:

    insert → affectedRows, insertId
    update → affectedRows        (requires where)
    delete → affectedRows        (requires where)
    select → data

Errors are raised as RelayError subclasses; the session handler turns
them into error responses.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import structlog

from rowcast.db.backend import DataBackend
from rowcast.errors import BackendError, InvalidParams, MissingFilter, UnsupportedOperation
from rowcast.messages import Operation, OperationSuccess, RequestMessage

logger = structlog.get_logger()

# Clients may tag records with a schema name; tables are always resolved
# against the configured schema, so it is not a column.
SCHEMA_FIELD = "schema"


def _params(request: RequestMessage) -> dict:
    data = request.data
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidParams(f"{request.operation} expects `data` to be an object")
    return data


def _require_where(request: RequestMessage, params: dict) -> dict:
    where = params.get("where")
    if not where:
        raise MissingFilter(
            f"{request.operation.lower()} requires a where condition"
        )
    if not isinstance(where, dict):
        raise InvalidParams("`where` must be an object of column: value pairs")
    return where


def _optional_int(params: dict, name: str) -> Optional[int]:
    value = params.get(name)
    if not value:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidParams(f"`{name}` must be a non-negative integer")
    return value


class RequestDispatcher:
    """Runs client requests against a DataBackend."""

    def __init__(self, backend: DataBackend, timeout: Optional[float] = 30.0):
        self.backend = backend
        self.timeout = timeout
        self._handlers: dict[Operation, Callable[[RequestMessage], Awaitable[OperationSuccess]]] = {
            Operation.INSERT: self._insert,
            Operation.UPDATE: self._update,
            Operation.DELETE: self._delete,
            Operation.SELECT: self._select,
        }

    async def dispatch(self, request: RequestMessage) -> OperationSuccess:
        operation = Operation.lookup(request.operation)
        if operation is None:
            raise UnsupportedOperation(f"Unsupported operation: {request.operation}")

        logger.info("rowcast.request", operation=operation.value, table=request.table)
        response = await self._handlers[operation](request)
        response.operation_id = request.operation_id
        return response

    async def _call(self, awaitable: Awaitable[Any]) -> Any:
        if not self.timeout:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise BackendError("Backend operation timed out", backend_code="TIMEOUT")

    # ─── Handlers ─────────────────────────────────────────

    async def _insert(self, request: RequestMessage) -> OperationSuccess:
        data = request.data
        records = data if isinstance(data, list) else [data]
        if not records or not all(isinstance(r, dict) and r for r in records):
            raise InvalidParams("insert expects `data` to be a record or a list of records")

        cleaned = []
        for record in records:
            if SCHEMA_FIELD in record:
                logger.debug("rowcast.request.schema_stripped", table=request.table)
            cleaned.append({k: v for k, v in record.items() if k != SCHEMA_FIELD})
        if not all(cleaned):
            raise InvalidParams("insert expects at least one column per record")

        rows = await self._call(self.backend.insert(request.table, cleaned))
        return OperationSuccess(
            affected_rows=len(rows),
            insert_id=rows[0].get("id") if rows else None,
        )

    async def _update(self, request: RequestMessage) -> OperationSuccess:
        params = _params(request)
        where = _require_where(request, params)
        values = params.get("data")
        if not isinstance(values, dict) or not values:
            raise InvalidParams("update expects `data.data` to be an object of fields to set")

        rows = await self._call(self.backend.update(request.table, where, values))
        return OperationSuccess(affected_rows=len(rows))

    async def _delete(self, request: RequestMessage) -> OperationSuccess:
        params = _params(request)
        where = _require_where(request, params)

        rows = await self._call(self.backend.delete(request.table, where))
        return OperationSuccess(affected_rows=len(rows))

    async def _select(self, request: RequestMessage) -> OperationSuccess:
        params = _params(request)

        columns = params.get("columns")
        if columns is not None:
            if not isinstance(columns, list) or not all(isinstance(c, str) for c in columns):
                raise InvalidParams("`columns` must be a list of column names")
            if not columns or "*" in columns:
                columns = None

        where = params.get("where")
        if where is not None and not isinstance(where, dict):
            raise InvalidParams("`where` must be an object of column: value pairs")

        rows = await self._call(
            self.backend.select(
                request.table,
                columns=columns,
                where=where or None,
                limit=_optional_int(params, "limit"),
                offset=_optional_int(params, "offset"),
            )
        )
        return OperationSuccess(data=rows)
