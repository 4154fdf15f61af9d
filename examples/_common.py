"""
Shared helpers for rowcast examples.

Checks that a relay is running before an example opens its socket.
"""

import os
import sys

import httpx

BASE = os.environ.get("ROWCAST_URL", "http://localhost:3001").rstrip("/")
WS_URL = BASE.replace("http", "ws", 1) + "/ws"


def check_relay() -> None:
    """Verify the relay is reachable and its database answers."""
    try:
        resp = httpx.get(f"{BASE}/api/v1/health", timeout=5)
    except httpx.ConnectError:
        print(f"ERROR: Relay not reachable at {BASE}")
        print("Start it with:  ROWCAST_DATABASE_URL=postgresql+asyncpg://... rowcast serve")
        sys.exit(1)

    health = resp.json()
    print("Relay health:")
    print(f"  Database: {'✓' if health['database'] == 'ok' else '✗ ' + health['database']}")
    print(f"  Sessions: {health['sessions']}")

    if health["status"] != "healthy":
        print("\nERROR: Database is not reachable from the relay.")
        sys.exit(1)
