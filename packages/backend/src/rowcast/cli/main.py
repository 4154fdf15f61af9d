"""rowcast CLI — run the relay, manage notify triggers, poke at it.

Usage:
    rowcast serve                              # Run the WebSocket relay
    rowcast install-triggers                   # NOTIFY triggers on watched tables
    rowcast install-triggers -t items          # ...or only on some tables
    rowcast drop-triggers                      # Remove them again
    rowcast health                             # Query a running relay
    rowcast publish vehicles UPDATE --record '{"id": 1}'   # Push a change via Redis
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx

from rowcast import __version__
from rowcast.config import settings
from rowcast.errors import ConfigError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

DEFAULT_RELAY_URL = "http://localhost:3001"


def _relay_url() -> str:
    return os.environ.get("ROWCAST_URL", DEFAULT_RELAY_URL).rstrip("/")


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Offloads to a thread when a loop is already running (e.g. CliRunner
    inside an async test).
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _parse_json_option(value: Optional[str], name: str) -> Optional[dict]:
    if value is None:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint=name)
    if not isinstance(parsed, dict):
        raise click.BadParameter("must be a JSON object", param_hint=name)
    return parsed


def _require_database():
    try:
        settings.require_database()
    except ConfigError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="rowcast")
def main():
    """rowcast — relay PostgreSQL changes to WebSocket clients."""


@main.command()
@click.option("--host", help="Bind address (default: ROWCAST_HOST)")
@click.option("--port", type=int, help="Bind port (default: ROWCAST_PORT)")
def serve(host: Optional[str], port: Optional[int]):
    """Run the WebSocket relay until interrupted."""
    from rowcast.server import serve as run_server

    run_server(settings, host=host, port=port)


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


def _tables(tables: tuple[str, ...]) -> list[str]:
    return list(tables) or list(settings.watched_tables)


async def _with_connection(fn):
    from rowcast.db.engine import build_engine

    engine = build_engine(settings)
    try:
        async with engine.begin() as conn:
            return await fn(conn)
    finally:
        await engine.dispose()


@main.command("install-triggers")
@click.option("--table", "-t", "tables", multiple=True, help="Table name (repeatable)")
def install_triggers_cmd(tables: tuple[str, ...]):
    """Install NOTIFY triggers on the watched tables."""
    from rowcast.changes.triggers import install_triggers

    _require_database()
    names = _tables(tables)
    installed = _run(_with_connection(
        lambda conn: install_triggers(conn, names, settings.notify_channel, settings.db_schema)
    ))
    for name in installed:
        click.secho(f"  ✓ {name}", fg="green")
    click.echo(f"Notifications go to channel '{settings.notify_channel}'.")


@main.command("drop-triggers")
@click.option("--table", "-t", "tables", multiple=True, help="Table name (repeatable)")
def drop_triggers_cmd(tables: tuple[str, ...]):
    """Remove NOTIFY triggers from the watched tables."""
    from rowcast.changes.triggers import drop_triggers

    _require_database()
    names = _tables(tables)
    dropped = _run(_with_connection(
        lambda conn: drop_triggers(conn, names, settings.db_schema)
    ))
    for name in dropped:
        click.echo(f"  - {name}")


# ---------------------------------------------------------------------------
# Health / publish
# ---------------------------------------------------------------------------


@main.command()
@click.option("--url", help="Relay base URL (default: ROWCAST_URL or localhost:3001)")
def health(url: Optional[str]):
    """Show the health of a running relay."""

    async def _impl():
        async with httpx.AsyncClient(base_url=url or _relay_url(), timeout=10.0) as c:
            r = await c.get("/api/v1/health")
            r.raise_for_status()
            return r.json()

    try:
        data = _run(_impl())
    except httpx.HTTPError as e:
        click.secho(f"Relay unreachable: {e}", fg="red", err=True)
        sys.exit(1)

    click.echo(_pretty_json(data))
    if data.get("status") != "healthy":
        sys.exit(2)


@main.command()
@click.argument("table")
@click.argument("event", type=click.Choice(["INSERT", "UPDATE", "DELETE"], case_sensitive=False))
@click.option("--record", help="New row as JSON")
@click.option("--old", "old_record", help="Old row as JSON")
def publish(table: str, event: str, record: Optional[str], old_record: Optional[str]):
    """Publish a change notification to Redis (for the redis change source)."""
    from rowcast.changes.redis import publish_change

    receivers = _run(publish_change(
        settings.redis_url,
        table,
        event,
        record=_parse_json_option(record, "--record"),
        old_record=_parse_json_option(old_record, "--old"),
    ))
    click.echo(f"Published {event.upper()} on {table} to {receivers} subscriber(s).")


if __name__ == "__main__":
    main()
