import sqlite3

from loguru import logger
from pydantic import BaseModel, Field

from db_chat_agent.hosts.sqlite_host import SqliteHost


class RunQueryArgs(BaseModel):
    sql: str = Field(description="A single SQL statement to execute")
    max_rows: int = Field(default=100, ge=1, le=1000, description="Maximum number of rows to return")


class RunQueryTool:
    def __init__(self, host: SqliteHost):
        self._host = host

    @property
    def name(self) -> str:
        return "run_query"

    @property
    def description(self) -> str:
        mode = "Only read statements are allowed." if self._host.read_only else "Write statements are allowed."
        return f"Execute a SQL statement against the connected database and return the result rows. {mode}"

    @property
    def args_model(self) -> type[BaseModel]:
        return RunQueryArgs

    async def execute(self, args: RunQueryArgs) -> dict | str:
        try:
            return self._host.run_query(args.sql, args.max_rows)
        except sqlite3.Error as ex:
            logger.info(f"Query failed: {ex}")
            return f"Error executing query: {ex}"
