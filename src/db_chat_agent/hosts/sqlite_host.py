from __future__ import annotations

import sqlite3
from collections.abc import Callable
from pathlib import Path
from typing import Any

from loguru import logger

from db_chat_agent.host import ConnectionInfo, TableRef

_DEFAULT_SCHEMA = "main"


class SqliteHost:
    """Host environment backed by a local SQLite database file."""

    def __init__(
        self,
        database_path: str,
        *,
        read_only: bool = True,
        on_notify: Callable[[str, dict[str, Any]], None] | None = None,
    ):
        self._database_path = database_path
        self._read_only = read_only
        self._on_notify = on_notify
        self._conn = sqlite3.connect(database_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if read_only:
            self._conn.execute("PRAGMA query_only = ON")

    @property
    def read_only(self) -> bool:
        return self._read_only

    def close(self) -> None:
        self._conn.close()

    async def get_connection_info(self) -> ConnectionInfo:
        name = Path(self._database_path).stem if self._database_path != ":memory:" else "memory"
        return ConnectionInfo(
            connection_type="sqlite",
            read_only_mode=self._read_only,
            database_name=name,
            default_schema=_DEFAULT_SCHEMA,
        )

    async def get_tables(self) -> list[TableRef]:
        rows = self._conn.execute(
            """
            SELECT name FROM sqlite_master
            WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%'
            ORDER BY name
            """
        ).fetchall()
        return [TableRef(name=row["name"], schema=_DEFAULT_SCHEMA) for row in rows]

    def get_columns(self, table: str) -> list[dict[str, Any]]:
        if table not in {t["name"] for t in self._conn.execute("SELECT name FROM sqlite_master").fetchall()}:
            raise ValueError(f"Unknown table: {table}")
        rows = self._conn.execute(f'PRAGMA table_info("{table}")').fetchall()
        return [
            {
                "name": row["name"],
                "type": row["type"],
                "nullable": not row["notnull"],
                "primary_key": bool(row["pk"]),
                "default": row["dflt_value"],
            }
            for row in rows
        ]

    def run_query(self, sql: str, max_rows: int) -> dict[str, Any]:
        cursor = self._conn.execute(sql)
        if cursor.description is None:
            self._conn.commit()
            return {"columns": [], "rows": [], "row_count": cursor.rowcount, "truncated": False}

        columns = [d[0] for d in cursor.description]
        fetched = cursor.fetchmany(max_rows + 1)
        rows = [list(row) for row in fetched[:max_rows]]
        return {
            "columns": columns,
            "rows": rows,
            "row_count": len(rows),
            "truncated": len(fetched) > max_rows,
        }

    def notify(self, channel: str, payload: dict[str, Any]) -> None:
        logger.debug(f"Notify [{channel}]: {payload}")
        if self._on_notify is not None:
            self._on_notify(channel, payload)
