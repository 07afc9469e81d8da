"""Google Gemini provider using the google-genai SDK."""

from __future__ import annotations

import uuid
from typing import Any

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from loguru import logger
from tenacity import retry

from db_chat_agent.provider import SchemaT, TextCallback
from db_chat_agent.providers.common import default_retry_kwargs, text_of

_RETRYABLE = (genai_errors.ServerError,)

_STOP_REASON_MAP = {
    "STOP": "end_turn",
    "MAX_TOKENS": "max_tokens",
}


def _to_gemini_contents(messages: list[dict]) -> list[genai_types.Content]:
    """Convert internal messages into Gemini contents.

    Tool results become ``function_response`` parts on a user turn, keyed by
    the tool name Gemini used in the matching ``function_call``.
    """
    contents: list[genai_types.Content] = []
    for msg in messages:
        role = msg["role"]
        content = msg.get("content", "")

        if role == "assistant":
            parts: list[genai_types.Part] = []
            text = text_of(content)
            if text:
                parts.append(genai_types.Part.from_text(text=text))
            if isinstance(content, list):
                for block in content:
                    if block.get("type") == "tool_use":
                        parts.append(
                            genai_types.Part(
                                function_call=genai_types.FunctionCall(
                                    id=block["id"],
                                    name=block["name"],
                                    args=block["input"],
                                )
                            )
                        )
            contents.append(genai_types.Content(role="model", parts=parts))

        elif role == "tool":
            part = genai_types.Part(
                function_response=genai_types.FunctionResponse(
                    id=msg["tool_call_id"],
                    name=msg["tool_name"],
                    response={"result": content},
                )
            )
            previous = contents[-1] if contents else None
            if previous is not None and previous.role == "user" and all(
                p.function_response is not None for p in previous.parts or []
            ):
                previous.parts.append(part)
            else:
                contents.append(genai_types.Content(role="user", parts=[part]))

        else:
            contents.append(
                genai_types.Content(role="user", parts=[genai_types.Part.from_text(text=text_of(content))])
            )
    return contents


def _to_gemini_tools(tools: list[dict]) -> list[genai_types.Tool]:
    if not tools:
        return []
    return [
        genai_types.Tool(
            function_declarations=[
                genai_types.FunctionDeclaration(
                    name=t["name"],
                    description=t.get("description", ""),
                    parameters_json_schema=t.get("input_schema", {}),
                )
                for t in tools
            ]
        )
    ]


class GoogleProvider:
    def __init__(self, api_key: str):
        self._client = genai.Client(api_key=api_key)

    @retry(**default_retry_kwargs(_RETRYABLE))
    async def stream_chat(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str,
        messages: list[dict],
        tools: list[dict],
        *,
        on_text: TextCallback | None = None,
    ) -> tuple[dict, list[dict], str]:
        config = genai_types.GenerateContentConfig(
            system_instruction=system_prompt or None,
            temperature=temperature,
            max_output_tokens=max_tokens,
            tools=_to_gemini_tools(tools) or None,
        )
        logger.debug(
            f"API request: model={model}, max_tokens={max_tokens}, "
            f"messages={len(messages)}, tools={len(tools)}"
        )

        text_content = ""
        function_calls: list[Any] = []
        finish_reason: str | None = None

        stream = await self._client.aio.models.generate_content_stream(
            model=model,
            contents=_to_gemini_contents(messages),
            config=config,
        )
        async for chunk in stream:
            for candidate in chunk.candidates or []:
                if candidate.finish_reason:
                    finish_reason = str(getattr(candidate.finish_reason, "value", candidate.finish_reason))
                parts = candidate.content.parts if candidate.content else None
                for part in parts or []:
                    if part.text:
                        if on_text is not None:
                            on_text(part.text)
                        text_content += part.text
                    if part.function_call is not None:
                        function_calls.append(part.function_call)

        assistant_content: list[dict] = []
        tool_use_blocks: list[dict] = []
        if text_content:
            assistant_content.append({"type": "text", "text": text_content})
        for call in function_calls:
            tool_block = {
                "type": "tool_use",
                "id": call.id or f"call_{uuid.uuid4().hex[:24]}",
                "name": call.name or "",
                "input": dict(call.args or {}),
            }
            assistant_content.append(tool_block)
            tool_use_blocks.append(tool_block)

        if tool_use_blocks:
            stop_reason = "tool_use"
        else:
            stop_reason = _STOP_REASON_MAP.get(finish_reason or "STOP", "end_turn")

        logger.debug(
            f"API response: stop_reason={stop_reason}, "
            f"text_len={len(text_content)}, tool_calls={len(tool_use_blocks)}"
        )
        return {"role": "assistant", "content": assistant_content}, tool_use_blocks, stop_reason

    @retry(**default_retry_kwargs(_RETRYABLE))
    async def generate_structured(
        self,
        model: str,
        schema: type[SchemaT],
        prompt: str,
    ) -> SchemaT:
        logger.debug(f"Structured API request: model={model}, schema={schema.__name__}")
        response = await self._client.aio.models.generate_content(
            model=model,
            contents=prompt,
            config=genai_types.GenerateContentConfig(
                response_mime_type="application/json",
                response_json_schema=schema.model_json_schema(),
            ),
        )
        return schema.model_validate_json(response.text or "{}")
