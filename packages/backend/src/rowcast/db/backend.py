"""Data backend — the four table operations clients can run.

Learn: The relay never owns a schema. Tables are reflected from the
database the first time a client touches them and cached in one
MetaData. Statements are plain SQLAlchemy Core with RETURNING, so
every operation reports the rows it touched.

The statement builders are module-level functions so they can be
compiled and inspected without a database.
"""

from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

import structlog
from fastapi.encoders import jsonable_encoder
from sqlalchemy import MetaData, Table, and_, delete, insert, select, text, update
from sqlalchemy.exc import DBAPIError, NoSuchTableError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from rowcast.errors import BackendError

logger = structlog.get_logger()

Row = dict[str, Any]


class DataBackend(Protocol):
    """What the request dispatcher needs from a database."""

    async def insert(self, table: str, records: Sequence[Mapping[str, Any]]) -> list[Row]: ...

    async def update(
        self, table: str, where: Mapping[str, Any], values: Mapping[str, Any]
    ) -> list[Row]: ...

    async def delete(self, table: str, where: Mapping[str, Any]) -> list[Row]: ...

    async def select(
        self,
        table: str,
        columns: Optional[Sequence[str]] = None,
        where: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[Row]: ...

    async def ping(self) -> None: ...

    async def close(self) -> None: ...


# ─── Statement builders ─────────────────────────────────────


def _check_columns(table: Table, names: Iterable[str]) -> None:
    for name in names:
        if name not in table.c:
            raise BackendError(
                f'column "{name}" of relation "{table.name}" does not exist',
                backend_code="42703",
            )


def build_match(table: Table, where: Mapping[str, Any]):
    """Equality match on every key of `where` (None matches IS NULL)."""
    _check_columns(table, where)
    return and_(*(table.c[name] == value for name, value in where.items()))


def build_insert(table: Table, records: Sequence[Mapping[str, Any]]):
    for record in records:
        _check_columns(table, record)
    return insert(table).values(list(records)).returning(*table.c)


def build_update(table: Table, where: Mapping[str, Any], values: Mapping[str, Any]):
    _check_columns(table, values)
    return (
        update(table)
        .where(build_match(table, where))
        .values(dict(values))
        .returning(*table.c)
    )


def build_delete(table: Table, where: Mapping[str, Any]):
    return delete(table).where(build_match(table, where)).returning(*table.c)


def build_select(
    table: Table,
    columns: Optional[Sequence[str]] = None,
    where: Optional[Mapping[str, Any]] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
):
    if columns:
        _check_columns(table, columns)
        query = select(*(table.c[name] for name in columns))
    else:
        query = select(table)
    if where:
        query = query.where(build_match(table, where))
    if limit is not None:
        query = query.limit(limit)
    if offset is not None:
        query = query.offset(offset)
    return query


def backend_error_from(exc: SQLAlchemyError) -> BackendError:
    """Keep the driver's message and SQLSTATE, drop SQLAlchemy's wrapping."""
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        orig = exc.orig
        code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        cause = orig.__cause__ or orig
        message = str(cause)
        if message.startswith("<class"):
            message = message.split(": ", 1)[-1]
        return BackendError(message, backend_code=code)
    return BackendError(str(exc))


# ─── SQLAlchemy implementation ──────────────────────────────


class SqlAlchemyBackend:
    """DataBackend over an async SQLAlchemy engine (asyncpg)."""

    def __init__(self, engine: AsyncEngine, schema: Optional[str] = "public"):
        self.engine = engine
        self.schema = schema
        self.metadata = MetaData(schema=schema)
        self._tables: dict[str, Table] = {}

    async def _table(self, name: str) -> Table:
        table = self._tables.get(name)
        if table is not None:
            return table
        try:
            async with self.engine.connect() as conn:
                table = await conn.run_sync(
                    lambda sync_conn: Table(name, self.metadata, autoload_with=sync_conn)
                )
        except NoSuchTableError:
            raise BackendError(
                f'relation "{name}" does not exist', backend_code="42P01"
            )
        except SQLAlchemyError as e:
            raise backend_error_from(e)
        self._tables[name] = table
        logger.debug("rowcast.backend.reflected", table=name, columns=list(table.c.keys()))
        return table

    async def _execute(self, statement) -> list[Row]:
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(statement)
                rows = [dict(row._mapping) for row in result]
        except SQLAlchemyError as e:
            raise backend_error_from(e)
        return jsonable_encoder(rows)

    async def insert(self, table, records):
        t = await self._table(table)
        return await self._execute(build_insert(t, records))

    async def update(self, table, where, values):
        t = await self._table(table)
        return await self._execute(build_update(t, where, values))

    async def delete(self, table, where):
        t = await self._table(table)
        return await self._execute(build_delete(t, where))

    async def select(self, table, columns=None, where=None, limit=None, offset=None):
        t = await self._table(table)
        return await self._execute(build_select(t, columns, where, limit, offset))

    async def ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def close(self) -> None:
        await self.engine.dispose()
