from __future__ import annotations

import json
from datetime import date

from loguru import logger

from db_chat_agent.host import ConnectionInfo, HostEnvironment, TableRef

_SYSTEM_SCHEMAS = frozenset({
    "information_schema",
    "pg_catalog",
    "pg_toast",
    "sys",
    "INFORMATION_SCHEMA",
})

INSTRUCTIONS = """\
You are a database assistant embedded in a SQL client. You help the user \
explore their data, write queries and explain results. Today is {current_date}.

You are connected to a {connection_type} database named "{database_name}". \
The default schema is "{default_schema}". Read-only mode: {read_only_mode}.

Known tables (JSON): {tables}

Use the available tools to inspect tables and run queries instead of guessing \
column names. Every tool call is shown to the user, who must approve it before \
it runs; if a call is rejected, ask the user what they want to do differently.

When read-only mode is true, never attempt statements that modify data or schema. \
Prefer small result sets: add a LIMIT unless the user asks for everything.

Be concise. Show the SQL you ran when it helps the user understand the answer."""

MONGODB_INSTRUCTIONS = """\
{instructions.txt}

This connection is MongoDB. The "tables" above are collections. Queries are \
written in MongoDB shell syntax (for example db.orders.find({}).limit(5)) \
rather than SQL; use aggregation pipelines for grouping and joins."""


def format_current_date(today: date | None = None) -> str:
    today = today or date.today()
    return f"{today:%A, %B} {today.day}, {today.year}"


async def _connection_info(host: HostEnvironment) -> ConnectionInfo:
    try:
        return await host.get_connection_info()
    except Exception as ex:
        logger.warning(f"Failed to get connection info: {ex}")
        return ConnectionInfo()


async def _user_tables(host: HostEnvironment) -> list[TableRef]:
    try:
        tables = await host.get_tables()
    except Exception as ex:
        logger.warning(f"Failed to get tables: {ex}")
        return []
    return [t for t in tables or [] if t.schema not in _SYSTEM_SCHEMAS]


async def build_system_prompt(host: HostEnvironment, *, today: date | None = None) -> str:
    info = await _connection_info(host)
    tables = await _user_tables(host)

    prompt = INSTRUCTIONS
    prompt = prompt.replace("{current_date}", format_current_date(today), 1)
    prompt = prompt.replace("{connection_type}", info.connection_type or "unknown", 1)
    prompt = prompt.replace("{read_only_mode}", str(bool(info.read_only_mode)).lower(), 1)
    prompt = prompt.replace("{database_name}", info.database_name or "unknown", 1)
    prompt = prompt.replace("{default_schema}", info.default_schema or "", 1)
    prompt = prompt.replace("{tables}", json.dumps([t.to_dict() for t in tables]), 1)

    if info.connection_type == "mongodb":
        prompt = MONGODB_INSTRUCTIONS.replace("{instructions.txt}", prompt, 1)

    return prompt
