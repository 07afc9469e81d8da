from __future__ import annotations

import anthropic
from loguru import logger
from tenacity import retry

from db_chat_agent.provider import SchemaT, TextCallback
from db_chat_agent.providers.common import default_retry_kwargs

_RETRYABLE = (
    anthropic.RateLimitError,
    anthropic.APIConnectionError,
    anthropic.APITimeoutError,
)

_STRUCTURED_TOOL_NAME = "record_answer"


def _to_anthropic_messages(messages: list[dict]) -> list[dict]:
    """Fold internal tool messages into user messages carrying tool_result blocks."""
    out: list[dict] = []
    for msg in messages:
        if msg["role"] != "tool":
            content = msg["content"]
            out.append({"role": msg["role"], "content": content if isinstance(content, str) else list(content)})
            continue

        block = {
            "type": "tool_result",
            "tool_use_id": msg["tool_call_id"],
            "content": msg["content"],
        }
        previous = out[-1] if out else None
        if (
            previous is not None
            and previous["role"] == "user"
            and isinstance(previous["content"], list)
            and all(b.get("type") == "tool_result" for b in previous["content"])
        ):
            previous["content"].append(block)
        else:
            out.append({"role": "user", "content": [block]})
    return out


class AnthropicProvider:
    def __init__(self, api_key: str):
        self._client = anthropic.AsyncAnthropic(api_key=api_key)

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
        """Stream a chat response, forwarding text deltas to ``on_text``.

        Returns (message dict, tool_use blocks, stop_reason).
        """
        logger.debug(
            f"API request: model={model}, max_tokens={max_tokens}, "
            f"messages={len(messages)}, tools={len(tools)}"
        )
        async with self._client.messages.stream(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=_to_anthropic_messages(messages),
            tools=tools,
        ) as stream:
            async for event in stream:
                if event.type == "content_block_delta" and event.delta.type == "text_delta":
                    if on_text is not None:
                        on_text(event.delta.text)

            response = await stream.get_final_message()

        usage = response.usage
        logger.debug(
            f"API response: stop_reason={response.stop_reason}, "
            f"input_tokens={usage.input_tokens}, output_tokens={usage.output_tokens}"
        )

        assistant_content: list[dict] = []
        tool_use_blocks: list[dict] = []
        for block in response.content:
            if block.type == "text":
                assistant_content.append({"type": "text", "text": block.text})
            elif block.type == "tool_use":
                tool_block = {
                    "type": "tool_use",
                    "id": block.id,
                    "name": block.name,
                    "input": block.input,
                }
                assistant_content.append(tool_block)
                tool_use_blocks.append(tool_block)

        message = {"role": "assistant", "content": assistant_content}
        return message, tool_use_blocks, response.stop_reason

    @retry(**default_retry_kwargs(_RETRYABLE))
    async def generate_structured(
        self,
        model: str,
        schema: type[SchemaT],
        prompt: str,
    ) -> SchemaT:
        """Force a single tool call whose input is the structured answer."""
        logger.debug(f"Structured API request: model={model}, schema={schema.__name__}")
        response = await self._client.messages.create(
            model=model,
            max_tokens=1024,
            messages=[{"role": "user", "content": prompt}],
            tools=[
                {
                    "name": _STRUCTURED_TOOL_NAME,
                    "description": "Record the answer.",
                    "input_schema": schema.model_json_schema(),
                }
            ],
            tool_choice={"type": "tool", "name": _STRUCTURED_TOOL_NAME},
        )
        for block in response.content:
            if block.type == "tool_use":
                return schema.model_validate(block.input)
        raise ValueError(f"Model returned no structured answer for {schema.__name__}")
