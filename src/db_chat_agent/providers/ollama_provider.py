from __future__ import annotations

import json
import uuid

import httpx
from loguru import logger
from tenacity import retry

from db_chat_agent.local_models import OllamaClient
from db_chat_agent.provider import SchemaT, TextCallback
from db_chat_agent.providers.common import default_retry_kwargs, parse_tool_arguments, text_of

_RETRYABLE = (httpx.ConnectError, httpx.ConnectTimeout)

_STOP_REASON_MAP = {
    "stop": "end_turn",
    "length": "max_tokens",
}


def _to_ollama_messages(system_prompt: str, messages: list[dict]) -> list[dict]:
    out: list[dict] = []
    if system_prompt:
        out.append({"role": "system", "content": system_prompt})

    for msg in messages:
        role = msg["role"]
        content = msg.get("content", "")
        if role == "assistant":
            ollama_msg: dict = {"role": "assistant", "content": text_of(content)}
            if isinstance(content, list):
                tool_calls = [
                    {"function": {"name": block["name"], "arguments": block["input"]}}
                    for block in content
                    if block.get("type") == "tool_use"
                ]
                if tool_calls:
                    ollama_msg["tool_calls"] = tool_calls
            out.append(ollama_msg)
        elif role == "tool":
            out.append({"role": "tool", "content": str(content), "tool_name": msg.get("tool_name", "")})
        else:
            out.append({"role": role, "content": text_of(content)})
    return out


def _to_ollama_tools(tools: list[dict]) -> list[dict]:
    return [
        {
            "type": "function",
            "function": {
                "name": t["name"],
                "description": t.get("description", ""),
                "parameters": t.get("input_schema", {"type": "object", "properties": {}}),
            },
        }
        for t in tools
    ]


class OllamaProvider:
    def __init__(self, server_url: str, *, client: OllamaClient | None = None):
        self._client = client or OllamaClient(server_url)

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
        payload: dict = {
            "model": model,
            "messages": _to_ollama_messages(system_prompt, messages),
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        if tools:
            payload["tools"] = _to_ollama_tools(tools)
        logger.debug(
            f"API request: model={model}, url={self._client.url('chat')}, "
            f"messages={len(payload['messages'])}, tools={len(tools)}"
        )

        text_content = ""
        tool_use_blocks: list[dict] = []
        done_reason: str | None = None

        async for chunk in self._client.stream_chat(payload):
            msg = chunk.get("message") or {}
            delta = msg.get("content") or ""
            if delta:
                if on_text is not None:
                    on_text(delta)
                text_content += delta
            for call in msg.get("tool_calls") or []:
                fn = call.get("function") or {}
                args = fn.get("arguments")
                if isinstance(args, str):
                    args = parse_tool_arguments(args)
                tool_use_blocks.append({
                    "type": "tool_use",
                    "id": call.get("id") or f"call_{uuid.uuid4().hex[:24]}",
                    "name": fn.get("name", ""),
                    "input": args if isinstance(args, dict) else {},
                })
            if chunk.get("done"):
                done_reason = chunk.get("done_reason")

        assistant_content: list[dict] = []
        if text_content:
            assistant_content.append({"type": "text", "text": text_content})
        assistant_content.extend(tool_use_blocks)

        if tool_use_blocks:
            stop_reason = "tool_use"
        else:
            stop_reason = _STOP_REASON_MAP.get(done_reason or "stop", "end_turn")

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
        response = await self._client.chat({
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "format": schema.model_json_schema(),
        })
        content = (response.get("message") or {}).get("content") or "{}"
        logger.debug(f"Structured API response: {json.dumps(content)[:200]}")
        return schema.model_validate_json(content)
