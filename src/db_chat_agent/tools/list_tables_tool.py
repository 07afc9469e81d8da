from pydantic import BaseModel

from db_chat_agent.hosts.sqlite_host import SqliteHost


class ListTablesArgs(BaseModel):
    pass


class ListTablesTool:
    def __init__(self, host: SqliteHost):
        self._host = host

    @property
    def name(self) -> str:
        return "list_tables"

    @property
    def description(self) -> str:
        return "List the tables and views in the connected database."

    @property
    def args_model(self) -> type[BaseModel]:
        return ListTablesArgs

    async def execute(self, args: ListTablesArgs) -> list[dict[str, str]]:
        return [t.to_dict() for t in await self._host.get_tables()]
