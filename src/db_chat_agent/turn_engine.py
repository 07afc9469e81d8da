from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from loguru import logger

from db_chat_agent.errors import ToolExecutionError, UserRejectedError
from db_chat_agent.provider import LLMProvider
from db_chat_agent.tool_gateway import Approver, ToolGateway, ToolResult

STEP_LIMIT_MESSAGE = "Tool call not executed: the step limit for this turn was reached."


def tool_message(call_id: str, tool_name: str, content: str) -> dict:
    return {"role": "tool", "tool_call_id": call_id, "tool_name": tool_name, "content": content}


def error_payload(message: str) -> str:
    return json.dumps({"type": "error", "message": message})


class TurnEngine:
    """Drives one user turn: model call, tool round-trips, repeat until the model stops asking."""

    def __init__(
        self,
        *,
        provider: LLMProvider,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str,
        gateway: ToolGateway,
        approver: Approver,
        max_steps: int,
        on_append_message: Callable[[dict], None],
        on_text: Callable[[str], None],
        on_tool_call_requested: Callable[[str, dict[str, Any], str], None],
        on_tool_result: Callable[[str, ToolResult], None],
    ) -> None:
        self._provider = provider
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._system_prompt = system_prompt
        self._gateway = gateway
        self._approver = approver
        self._max_steps = max_steps
        self._on_append_message = on_append_message
        self._on_text = on_text
        self._on_tool_call_requested = on_tool_call_requested
        self._on_tool_result = on_tool_result

    async def run(self, *, messages: list[dict]) -> str:
        """Returns the final stop reason, or "step_limit" when the ceiling ended the turn."""
        tool_definitions = self._gateway.definitions()
        steps = 0

        while True:
            message, tool_use_blocks, stop_reason = await self._provider.stream_chat(
                self._model,
                self._max_tokens,
                self._temperature,
                self._system_prompt,
                messages,
                tool_definitions,
                on_text=self._on_text,
            )

            if message["content"]:
                self._on_append_message(message)

            if not tool_use_blocks:
                return stop_reason

            if steps >= self._max_steps:
                logger.warning(
                    f"Step limit of {self._max_steps} reached; not running "
                    f"{', '.join(b['name'] for b in tool_use_blocks)}"
                )
                for block in tool_use_blocks:
                    self._on_append_message(tool_message(block["id"], block["name"], error_payload(STEP_LIMIT_MESSAGE)))
                return "step_limit"

            steps += 1
            await self.execute_tools(tool_use_blocks)

    async def execute_tools(self, tool_use_blocks: list[dict]) -> None:
        # One at a time, in the order the model asked for them.
        for block in tool_use_blocks:
            tool_name = block["name"]
            call_id = block["id"]
            tool_input = block.get("input") or {}

            self._on_tool_call_requested(tool_name, tool_input, call_id)
            result = await self._gateway.invoke(tool_name, tool_input, self._approver, call_id)
            if result.rejected:
                raise ToolExecutionError(call_id, tool_name, UserRejectedError(tool_name))

            self._on_append_message(tool_message(call_id, tool_name, result.content))
            self._on_tool_result(call_id, result)
