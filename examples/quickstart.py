"""
rowcast quickstart — insert, read back, and watch the change arrive.

Prerequisites:
    rowcast install-triggers -t items
    rowcast serve

    The `items` table needs an `id` primary key and a `name` column.

Run:
    python examples/quickstart.py
"""

import asyncio
import json
import uuid

import websockets

from _common import WS_URL, check_relay


async def request(ws, operation: str, data: dict) -> dict:
    """Send one request and wait for the reply with the same operationId.

    Broadcasts can arrive in between; they are printed and skipped.
    Liveness pings are answered so the relay keeps the socket open.
    """
    op_id = uuid.uuid4().hex[:8]
    await ws.send(json.dumps({
        "operation": operation,
        "table": "items",
        "operationId": op_id,
        "data": data,
    }))
    while True:
        msg = json.loads(await ws.recv())
        if msg.get("type") == "ping":
            await ws.send(json.dumps({"type": "pong"}))
            continue
        if msg.get("type") == "db_change":
            print(f"  ← change: {msg['event']} on {msg['table']}: {msg['data']}")
            continue
        if msg.get("operationId") == op_id:
            return msg


async def main() -> None:
    check_relay()

    async with websockets.connect(WS_URL) as ws:
        welcome = json.loads(await ws.recv())
        print(f"\n{welcome['message']} (server time {welcome['server_time']})")

        # 1. Insert a row
        reply = await request(ws, "insert", {"name": "quickstart item"})
        if reply["status"] != "success":
            print(f"Insert failed: {reply['error']} ({reply.get('errorCode')})")
            return
        item_id = reply["insertId"]
        print(f"Inserted item #{item_id}")

        # 2. Read it back
        reply = await request(ws, "select", {"where": {"id": item_id}})
        print(f"Selected: {reply['data']}")

        # 3. Update and delete it
        reply = await request(ws, "update", {"where": {"id": item_id}, "data": {"name": "renamed"}})
        print(f"Updated {reply['affectedRows']} row(s)")
        reply = await request(ws, "delete", {"where": {"id": item_id}})
        print(f"Deleted {reply['affectedRows']} row(s)")

        # 4. The triggers fire one db_change per write; give them a moment.
        try:
            while True:
                msg = json.loads(await asyncio.wait_for(ws.recv(), timeout=1.0))
                if msg.get("type") != "db_change":
                    continue
                print(f"  ← change: {msg.get('event')} on {msg.get('table')}")
        except asyncio.TimeoutError:
            pass

    print("\nDone.")


if __name__ == "__main__":
    asyncio.run(main())
