from pydantic import BaseModel, Field

from db_chat_agent.hosts.sqlite_host import SqliteHost


class GetColumnsArgs(BaseModel):
    table: str = Field(description="Name of the table or view to describe")


class GetColumnsTool:
    def __init__(self, host: SqliteHost):
        self._host = host

    @property
    def name(self) -> str:
        return "get_columns"

    @property
    def description(self) -> str:
        return "Describe the columns of a table: name, type, nullability, primary key and default value."

    @property
    def args_model(self) -> type[BaseModel]:
        return GetColumnsArgs

    async def execute(self, args: GetColumnsArgs) -> list[dict] | str:
        try:
            return self._host.get_columns(args.table)
        except ValueError as ex:
            return f"Error: {ex}"
