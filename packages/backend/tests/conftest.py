"""Test fixtures — the relay with an in-memory database and change source.

Learn: create_app() accepts a backend and a change source, so tests run
the real registry / session / broadcaster / dispatch code against:

1. FakeBackend — dict-of-lists tables implementing the DataBackend calls
2. QueueChangeSource — events pushed by the test, yielded to the pump
3. FakeWebSocket — records frames for unit tests that bypass Starlette

No PostgreSQL or Redis is needed.
"""

import asyncio
import itertools
from typing import Any, Optional

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from starlette.websockets import WebSocketState

from rowcast.config import Settings
from rowcast.errors import BackendError
from rowcast.main import create_app


class FakeBackend:
    """In-memory tables. Unknown tables behave like a missing relation."""

    def __init__(self, tables: Optional[dict[str, list[dict]]] = None):
        self.tables: dict[str, list[dict]] = tables if tables is not None else {"items": []}
        self.calls: list[tuple] = []
        self.fail_with: Optional[BackendError] = None
        self.healthy = True
        self._ids = itertools.count(1)

    def _table(self, name: str) -> list[dict]:
        if self.fail_with is not None:
            raise self.fail_with
        if name not in self.tables:
            raise BackendError(f'relation "{name}" does not exist', backend_code="42P01")
        return self.tables[name]

    @staticmethod
    def _matches(row: dict, where: Optional[dict]) -> bool:
        return all(row.get(k) == v for k, v in (where or {}).items())

    async def insert(self, table, records):
        self.calls.append(("insert", table, records))
        rows = self._table(table)
        created = []
        for record in records:
            row = {"id": next(self._ids), **record}
            rows.append(row)
            created.append(dict(row))
        return created

    async def update(self, table, where, values):
        self.calls.append(("update", table, where, values))
        changed = []
        for row in self._table(table):
            if self._matches(row, where):
                row.update(values)
                changed.append(dict(row))
        return changed

    async def delete(self, table, where):
        self.calls.append(("delete", table, where))
        rows = self._table(table)
        removed = [r for r in rows if self._matches(r, where)]
        self.tables[table] = [r for r in rows if not self._matches(r, where)]
        return removed

    async def select(self, table, columns=None, where=None, limit=None, offset=None):
        self.calls.append(("select", table, columns, where, limit, offset))
        rows = [r for r in self._table(table) if self._matches(r, where)]
        rows = rows[offset or 0:]
        if limit is not None:
            rows = rows[:limit]
        if columns:
            rows = [{c: r.get(c) for c in columns} for r in rows]
        return [dict(r) for r in rows]

    async def ping(self):
        if not self.healthy:
            raise ConnectionError("database unreachable")

    async def close(self):
        pass


class QueueChangeSource:
    """Change source fed by the test through push()."""

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def push(self, event) -> None:
        self.queue.put_nowait(event)

    async def events(self):
        while True:
            event = await self.queue.get()
            if event is None:
                return
            yield event

    async def close(self):
        self.closed = True
        self.queue.put_nowait(None)


class FakeWebSocket:
    """Just enough of starlette's WebSocket for Session."""

    def __init__(self, fail_sends: bool = False, block_sends: bool = False):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[str] = []
        self.close_code: Optional[int] = None
        self.fail_sends = fail_sends
        self.block_sends = block_sends
        self.unblock = asyncio.Event()

    async def send_text(self, text: str) -> None:
        if self.fail_sends:
            raise RuntimeError("socket is gone")
        if self.block_sends:
            await self.unblock.wait()
        self.sent.append(text)

    async def close(self, code: int = 1000, reason: Any = None) -> None:
        self.close_code = code
        self.application_state = WebSocketState.DISCONNECTED
        self.client_state = WebSocketState.DISCONNECTED


async def settle(rounds: int = 5) -> None:
    """Let queued tasks (writers, closers) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture()
def test_settings():
    return Settings(
        database_url="",
        heartbeat_interval=0,
        backend_timeout_seconds=5.0,
        shutdown_grace_seconds=2.0,
        environment="development",
    )


@pytest.fixture()
def fake_backend():
    return FakeBackend()


@pytest.fixture()
def change_source():
    return QueueChangeSource()


@pytest.fixture()
def app(test_settings, fake_backend, change_source):
    return create_app(test_settings, backend=fake_backend, change_source=change_source)


@pytest.fixture()
def ws_client(app):
    """Starlette TestClient with the lifespan running (change pump live)."""
    with TestClient(app) as client:
        yield client


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client for the REST side (lifespan not started)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
