"""Broadcaster tests — fan-out to real Sessions over fake sockets."""

import json
from datetime import datetime, timezone

import pytest
from starlette.websockets import WebSocketState

from conftest import FakeWebSocket, settle
from rowcast.changes.base import ChangeEvent, ChangeKind
from rowcast.realtime.broadcaster import Broadcaster, change_message
from rowcast.realtime.registry import ConnectionRegistry
from rowcast.realtime.session import Session

TS = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def _event(kind=ChangeKind.UPDATE, new=None, old=None, table="vehicles"):
    return ChangeEvent(table=table, kind=kind, new=new, old=old, timestamp=TS)


def _open_session(registry, **ws_kwargs):
    session = Session(FakeWebSocket(**ws_kwargs), registry)
    session.open()
    return session


def _frames(session):
    return [json.loads(t) for t in session.websocket.sent]


def test_change_message_shape():
    msg = change_message(_event(new={"id": 1, "speed": 3}, old={"id": 1, "speed": 2}))
    assert msg.model_dump() == {
        "type": "db_change",
        "table": "vehicles",
        "event": "UPDATE",
        "data": {"id": 1, "speed": 3},
        "old_data": {"id": 1, "speed": 2},
        "timestamp": TS.isoformat(),
    }


def test_delete_falls_back_to_old_row():
    msg = change_message(_event(kind=ChangeKind.DELETE, old={"id": 9}))
    assert msg.data == {"id": 9}
    assert msg.old_data == {"id": 9}


@pytest.mark.asyncio
async def test_every_session_gets_the_broadcast_once():
    registry = ConnectionRegistry()
    s1, s2 = _open_session(registry), _open_session(registry)

    delivered = Broadcaster(registry).publish(_event(new={"id": 1}))
    await settle()

    assert delivered == 2
    for s in (s1, s2):
        frames = _frames(s)
        assert len(frames) == 1
        assert frames[0]["type"] == "db_change"
        assert frames[0]["table"] == "vehicles"
        assert frames[0]["event"] == "UPDATE"


@pytest.mark.asyncio
async def test_session_removed_mid_broadcast_gets_nothing(monkeypatch):
    registry = ConnectionRegistry()
    s1, s2, s3 = (_open_session(registry) for _ in range(3))
    victims = {s1, s2, s3}

    # The first session visited kills the other two mid-broadcast.
    original = Session.send_text
    first = []

    def send_and_kill(self, text):
        if not first:
            first.append(self)
            for other in victims - {self}:
                other.terminate()
        return original(self, text)

    monkeypatch.setattr(Session, "send_text", send_and_kill)
    delivered = Broadcaster(registry).publish(_event(new={"id": 1}))
    monkeypatch.undo()
    await settle()

    assert delivered == 1
    survivor = first[0]
    assert len(_frames(survivor)) == 1
    for other in victims - {survivor}:
        assert other.websocket.sent == []
        assert other not in registry


@pytest.mark.asyncio
async def test_unwritable_session_is_skipped_quietly():
    registry = ConnectionRegistry()
    healthy = _open_session(registry)
    closing = _open_session(registry)
    closing.websocket.client_state = WebSocketState.DISCONNECTED

    delivered = Broadcaster(registry).publish(_event(new={"id": 1}))
    await settle()

    assert delivered == 1
    assert len(_frames(healthy)) == 1
    assert closing.websocket.sent == []


@pytest.mark.asyncio
async def test_broadcast_with_no_sessions():
    assert Broadcaster(ConnectionRegistry()).publish(_event()) == 0
