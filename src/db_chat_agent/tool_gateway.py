from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger
from pydantic import BaseModel, ValidationError

from db_chat_agent.errors import (
    REJECTION_MESSAGE,
    InvalidToolArgumentsError,
    NoSuchToolError,
    ToolExecutionError,
)
from db_chat_agent.tool import Tool

Approver = Callable[[str, dict[str, Any], str], Awaitable[bool]]
ToolHandler = Callable[[Any], Awaitable[Any]]


@dataclass(frozen=True)
class ToolResult:
    call_id: str
    tool_name: str
    content: str
    is_error: bool = False
    rejected: bool = False


@dataclass(frozen=True)
class _Registration:
    name: str
    description: str
    schema: type[BaseModel]
    handler: ToolHandler


def rejection_payload() -> str:
    return json.dumps({"type": "error", "message": REJECTION_MESSAGE})


class ToolGateway:
    """Runs tool handlers, but only after the approver has said yes."""

    def __init__(self, *, max_result_chars: int = 40_000):
        self._tools: dict[str, _Registration] = {}
        self._max_result_chars = max_result_chars

    def register(
        self,
        name: str,
        schema: type[BaseModel],
        handler: ToolHandler,
        description: str = "",
    ) -> None:
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        self._tools[name] = _Registration(name=name, description=description, schema=schema, handler=handler)

    def register_tool(self, tool: Tool) -> None:
        self.register(tool.name, tool.args_model, tool.execute, tool.description)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def definitions(self) -> list[dict]:
        return [
            {
                "name": reg.name,
                "description": reg.description,
                "input_schema": reg.schema.model_json_schema(),
            }
            for reg in self._tools.values()
        ]

    async def invoke(
        self,
        name: str,
        args: dict[str, Any],
        approver: Approver,
        call_id: str,
    ) -> ToolResult:
        registration = self._tools.get(name)
        if registration is None:
            raise NoSuchToolError(name, self.names)

        try:
            parsed = registration.schema.model_validate(args)
        except ValidationError as ex:
            raise InvalidToolArgumentsError(name, call_id, str(ex)) from ex

        if not await approver(name, args, call_id):
            logger.info(f"Tool call rejected: {name} (toolCallId: {call_id})")
            return ToolResult(
                call_id=call_id,
                tool_name=name,
                content=rejection_payload(),
                is_error=True,
                rejected=True,
            )

        logger.debug(f"Tool call approved: {name} (toolCallId: {call_id}) | input: {json.dumps(args, default=str)}")
        try:
            result = await registration.handler(parsed)
        except Exception as ex:
            logger.warning(f"Tool {name} failed (toolCallId: {call_id}): {ex}")
            raise ToolExecutionError(call_id, name, ex) from ex

        content = result if isinstance(result, str) else json.dumps(result, default=str)
        return ToolResult(call_id=call_id, tool_name=name, content=self._truncate(content, name))

    def _truncate(self, result: str, tool_name: str) -> str:
        if self._max_result_chars <= 0 or len(result) <= self._max_result_chars:
            return result

        original_length = len(result)
        logger.warning(
            f"{tool_name} output truncated from {original_length:,} "
            f"to {self._max_result_chars:,} chars"
        )
        return (
            result[: self._max_result_chars]
            + f"\n\n[OUTPUT TRUNCATED: Showing {self._max_result_chars:,} "
            f"of {original_length:,} characters from {tool_name}]"
        )
