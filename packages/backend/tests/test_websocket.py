"""End-to-end WebSocket tests through the FastAPI app.

Learn: TestClient runs the app (and its lifespan) on a background event
loop. Anything that must run on that loop, such as pushing a change
event or ticking the heartbeat, goes through `ws_client.portal.call(...)`.
"""

from datetime import datetime, timezone

import pytest
from starlette.websockets import WebSocketDisconnect

from rowcast.changes.base import ChangeEvent, ChangeKind


def test_welcome_on_connect(ws_client):
    with ws_client.websocket_connect("/ws") as ws:
        welcome = ws.receive_json()
        assert welcome["status"] == "connected"
        assert "server_time" in welcome


def test_root_path_also_serves_websocket(ws_client):
    with ws_client.websocket_connect("/") as ws:
        assert ws.receive_json()["status"] == "connected"


def test_insert_end_to_end(ws_client, fake_backend):
    fake_backend._ids = iter([42])
    with ws_client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"operation": "insert", "table": "items", "operationId": "a1", "data": {"name": "x"}})
        reply = ws.receive_json()

    assert reply["status"] == "success"
    assert reply["success"] is True
    assert reply["operationId"] == "a1"
    assert reply["affectedRows"] == 1
    assert reply["insertId"] == 42
    assert "server_time" in reply
    assert fake_backend.tables["items"] == [{"id": 42, "name": "x"}]


def test_select_end_to_end(ws_client, fake_backend):
    fake_backend.tables["items"] = [{"id": 42, "name": "x"}, {"id": 43, "name": "y"}]
    with ws_client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"operation": "select", "table": "items", "operationId": "b2", "data": {"where": {"id": 42}}})
        reply = ws.receive_json()

    assert reply["status"] == "success"
    assert reply["success"] is True
    assert reply["operationId"] == "b2"
    assert reply["data"] == [{"id": 42, "name": "x"}]


def test_malformed_message_keeps_session_open(ws_client, app):
    registry = app.state.relay.registry
    with ws_client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_text("this is not json")
        error = ws.receive_json()
        assert error["status"] == "error"
        assert error["success"] is False
        assert error["errorCode"] == "ParseError"
        assert "operationId" not in error

        ws.send_json({"operationId": "still-here"})
        pong = ws.receive_json()
        assert pong["status"] == "success"
        assert pong["operationId"] == "still-here"
        assert len(registry) == 1


def test_delete_without_where_over_the_wire(ws_client):
    with ws_client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"operation": "delete", "table": "items", "operationId": "d1", "data": {}})
        reply = ws.receive_json()

    assert reply["status"] == "error"
    assert reply["errorCode"] == "MissingFilter"
    assert reply["operationId"] == "d1"


def test_responses_follow_request_order(ws_client):
    with ws_client.websocket_connect("/ws") as ws:
        ws.receive_json()
        for i in range(5):
            ws.send_json({"operation": "select", "table": "items", "operationId": i})
        assert [ws.receive_json()["operationId"] for _ in range(5)] == [0, 1, 2, 3, 4]


def test_change_broadcast_to_all_sessions(ws_client, change_source):
    event = ChangeEvent(
        table="vehicles",
        kind=ChangeKind.UPDATE,
        new={"id": 7, "fuel": 40},
        old={"id": 7, "fuel": 55},
        timestamp=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )
    with ws_client.websocket_connect("/ws") as ws1, ws_client.websocket_connect("/ws") as ws2:
        ws1.receive_json()
        ws2.receive_json()

        ws_client.portal.call(change_source.push, event)

        for ws in (ws1, ws2):
            msg = ws.receive_json()
            assert msg == {
                "type": "db_change",
                "table": "vehicles",
                "event": "UPDATE",
                "data": {"id": 7, "fuel": 40},
                "old_data": {"id": 7, "fuel": 55},
                "timestamp": "2026-03-01T00:00:00+00:00",
            }


def test_silent_client_is_closed_by_heartbeat(ws_client, app):
    relay = app.state.relay
    with ws_client.websocket_connect("/ws") as ws:
        ws.receive_json()
        assert len(relay.registry) == 1

        ws_client.portal.call(relay.heartbeat.tick)
        assert ws.receive_json()["type"] == "ping"
        ws_client.portal.call(relay.heartbeat.tick)

        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
        assert exc.value.code == 1001
        assert len(relay.registry) == 0


def test_client_answering_pings_stays_connected(ws_client, app):
    relay = app.state.relay
    with ws_client.websocket_connect("/ws") as ws:
        ws.receive_json()

        for _ in range(3):
            ws_client.portal.call(relay.heartbeat.tick)
            assert ws.receive_json()["type"] == "ping"
            ws.send_json({"type": "pong"})
            assert ws.receive_json()["status"] == "success"

        assert len(relay.registry) == 1


def test_disconnect_deregisters(ws_client, app):
    registry = app.state.relay.registry
    with ws_client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"operationId": "sync"})
        ws.receive_json()
        assert len(registry) == 1
    # The app side processes the disconnect on its own loop.
    ws_client.portal.call(_noop)
    assert len(registry) == 0


async def _noop():
    pass


def test_shutdown_closes_change_source(app, change_source):
    from fastapi.testclient import TestClient

    with TestClient(app):
        pass
    assert change_source.closed is True
