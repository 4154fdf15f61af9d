"""WebSocket endpoint — one long-lived connection per client.

Learn: Clients connect to / (or /ws). The handler:
1. Accepts and registers the session, sends the welcome message
2. Answers pings and runs insert/select/update/delete requests
3. Pushes every change on a watched table as a db_change message
4. Deregisters the session on disconnect or failed liveness check
"""

from fastapi import APIRouter, WebSocket

router = APIRouter()


@router.websocket("/")
@router.websocket("/ws")
async def relay_websocket(websocket: WebSocket):
    """Serve one client until it disconnects or is closed by the server."""
    relay = websocket.app.state.relay
    await relay.handler(websocket).run()
