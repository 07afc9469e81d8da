from __future__ import annotations

import json

from loguru import logger
from tenacity import retry_if_exception_type, stop_after_attempt, wait_exponential

_MAX_ATTEMPTS = 5


def _on_retry(retry_state) -> None:
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"{reason}. Retrying in {wait:.0f}s (attempt {attempt}/{_MAX_ATTEMPTS})...")


def default_retry_kwargs(exception_types: tuple[type[Exception], ...]) -> dict:
    return {
        "retry": retry_if_exception_type(exception_types),
        "wait": wait_exponential(multiplier=10, min=10, max=320),
        "stop": stop_after_attempt(_MAX_ATTEMPTS),
        "before_sleep": _on_retry,
        "reraise": True,
    }


def text_of(content: str | list) -> str:
    """Plain text of a message's content, ignoring tool_use blocks."""
    if isinstance(content, str):
        return content
    return "\n".join(
        block.get("text", "")
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    )


def parse_tool_arguments(raw_args: str) -> dict:
    try:
        parsed = json.loads(raw_args) if raw_args else {}
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse tool call arguments: {raw_args[:200]}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def structured_prompt(prompt: str, schema: dict) -> str:
    return (
        f"{prompt}\n\nRespond with a single JSON object matching this JSON schema "
        f"and nothing else:\n{json.dumps(schema)}"
    )
