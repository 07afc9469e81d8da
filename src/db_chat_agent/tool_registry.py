from __future__ import annotations

from db_chat_agent.hosts.sqlite_host import SqliteHost
from db_chat_agent.tool import Tool
from db_chat_agent.tool_gateway import ToolGateway
from db_chat_agent.tools.get_columns_tool import GetColumnsTool
from db_chat_agent.tools.list_tables_tool import ListTablesTool
from db_chat_agent.tools.run_query_tool import RunQueryTool


def get_all(host: SqliteHost) -> list[Tool]:
    return [
        ListTablesTool(host),
        GetColumnsTool(host),
        RunQueryTool(host),
    ]


def build_gateway(tools: list[Tool], *, max_result_chars: int = 40_000) -> ToolGateway:
    gateway = ToolGateway(max_result_chars=max_result_chars)
    for tool in tools:
        gateway.register_tool(tool)
    return gateway
