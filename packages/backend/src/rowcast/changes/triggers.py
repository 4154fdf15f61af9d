"""Notify triggers for watched tables.

Learn: PostgreSQL LISTEN/NOTIFY enables instant push notifications.
One shared plpgsql function builds a JSON payload from TG_OP / NEW / OLD
and pg_notify's it on the relay channel. Each watched table gets an
AFTER INSERT OR UPDATE OR DELETE row trigger that calls it.

NOTIFY payloads are capped at 8000 bytes. When a row is larger than
that, only the `id` columns are sent so clients still learn which row
changed.
"""

from typing import Iterable

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

logger = structlog.get_logger()

FUNCTION_NAME = "rowcast_notify_change"

_FUNCTION_SQL = """
CREATE OR REPLACE FUNCTION {schema}.{function}()
RETURNS TRIGGER AS $$
DECLARE
    payload jsonb;
    body text;
BEGIN
    payload := jsonb_build_object(
        'table', TG_TABLE_NAME,
        'schema', TG_TABLE_SCHEMA,
        'type', TG_OP,
        'record', CASE WHEN TG_OP = 'DELETE' THEN NULL ELSE to_jsonb(NEW) END,
        'old_record', CASE WHEN TG_OP = 'INSERT' THEN NULL ELSE to_jsonb(OLD) END,
        'commit_timestamp', to_char(
            clock_timestamp() AT TIME ZONE 'utc',
            'YYYY-MM-DD"T"HH24:MI:SS.US"Z"'
        )
    );
    body := payload::text;
    IF octet_length(body) > 7900 THEN
        payload := payload
            || jsonb_build_object(
                'record', CASE WHEN TG_OP = 'DELETE' THEN NULL
                          ELSE jsonb_build_object('id', to_jsonb(NEW)->'id') END,
                'old_record', CASE WHEN TG_OP = 'INSERT' THEN NULL
                              ELSE jsonb_build_object('id', to_jsonb(OLD)->'id') END
            );
        body := payload::text;
    END IF;
    PERFORM pg_notify('{channel}', body);
    RETURN NULL;
END;
$$ LANGUAGE plpgsql;
"""


def _quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def trigger_name(table: str) -> str:
    return f"{table}_rowcast_notify"


def function_sql(channel: str, schema: str = "public") -> str:
    return _FUNCTION_SQL.format(
        schema=_quote_ident(schema),
        function=FUNCTION_NAME,
        channel=channel.replace("'", "''"),
    )


def create_trigger_sql(table: str, schema: str = "public") -> list[str]:
    qualified = f"{_quote_ident(schema)}.{_quote_ident(table)}"
    trigger = _quote_ident(trigger_name(table))
    return [
        f"DROP TRIGGER IF EXISTS {trigger} ON {qualified};",
        f"CREATE TRIGGER {trigger}\n"
        f"    AFTER INSERT OR UPDATE OR DELETE ON {qualified}\n"
        f"    FOR EACH ROW\n"
        f"    EXECUTE FUNCTION {_quote_ident(schema)}.{FUNCTION_NAME}();",
    ]


def drop_trigger_sql(table: str, schema: str = "public") -> str:
    qualified = f"{_quote_ident(schema)}.{_quote_ident(table)}"
    return f"DROP TRIGGER IF EXISTS {_quote_ident(trigger_name(table))} ON {qualified};"


async def install_triggers(
    conn: AsyncConnection,
    tables: Iterable[str],
    channel: str,
    schema: str = "public",
) -> list[str]:
    """Create the notify function and one trigger per table."""
    installed = []
    await conn.execute(text(function_sql(channel, schema)))
    for table in tables:
        for statement in create_trigger_sql(table, schema):
            await conn.execute(text(statement))
        installed.append(table)
        logger.info("rowcast.triggers.installed", table=table, channel=channel)
    return installed


async def drop_triggers(
    conn: AsyncConnection,
    tables: Iterable[str],
    schema: str = "public",
) -> list[str]:
    dropped = []
    for table in tables:
        await conn.execute(text(drop_trigger_sql(table, schema)))
        dropped.append(table)
        logger.info("rowcast.triggers.dropped", table=table)
    return dropped
