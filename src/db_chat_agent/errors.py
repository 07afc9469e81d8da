from __future__ import annotations

import json

from loguru import logger

REJECTION_MESSAGE = "No - Tell the AI what to do differently."
UNKNOWN_ERROR_MESSAGE = "An unknown error occurred."


class ChatAgentError(Exception):
    """Base class for every error raised by the chat orchestrator."""


class UnknownProviderError(ChatAgentError):
    def __init__(self, provider_id: str):
        super().__init__(f"Unknown provider: {provider_id!r}")
        self.provider_id = provider_id


class MissingCredentialsError(ChatAgentError):
    def __init__(self, provider_id: str, setting: str):
        super().__init__(f"Missing credentials for provider {provider_id!r}: {setting} is not set.")
        self.provider_id = provider_id
        self.setting = setting


class ModelNotFoundError(ChatAgentError):
    def __init__(self, provider_id: str, model_id: str):
        super().__init__(f"Model {model_id!r} is not offered by provider {provider_id!r}")
        self.provider_id = provider_id
        self.model_id = model_id


class NoModelSelectedError(ChatAgentError):
    def __init__(self) -> None:
        super().__init__("No provider or model selected.")


class SessionBusyError(ChatAgentError):
    def __init__(self) -> None:
        super().__init__("A response is already in progress.")


class PermissionGateBusyError(ChatAgentError):
    def __init__(self, pending_call_id: str):
        super().__init__(f"A permission request is already pending (toolCallId: {pending_call_id})")
        self.pending_call_id = pending_call_id


class NoSuchToolError(ChatAgentError):
    def __init__(self, tool_name: str, available: list[str]):
        super().__init__(f"Model tried to call unavailable tool {tool_name!r}. Available tools: {', '.join(available)}")
        self.tool_name = tool_name
        self.available = available


class InvalidToolArgumentsError(ChatAgentError):
    def __init__(self, tool_name: str, call_id: str, detail: str):
        super().__init__(f"Invalid arguments for tool {tool_name!r}: {detail}")
        self.tool_name = tool_name
        self.call_id = call_id
        self.detail = detail


class UserRejectedError(ChatAgentError):
    def __init__(self, tool_name: str):
        super().__init__(f"User rejected the {tool_name} tool call.")
        self.tool_name = tool_name


class ToolExecutionError(ChatAgentError):
    def __init__(self, call_id: str, tool_name: str, cause: BaseException):
        super().__init__(f"Error executing tool {tool_name!r} (toolCallId: {call_id}): {cause}")
        self.call_id = call_id
        self.tool_name = tool_name
        self.cause = cause


class TransportError(ChatAgentError):
    """HTTP failure reported by a provider backend. ``detail`` holds the raw response text."""

    def __init__(self, provider: str, status_code: int | None, detail: str):
        prefix = f"{status_code} " if status_code is not None else ""
        super().__init__(f"{prefix}{detail}")
        self.provider = provider
        self.status_code = status_code
        self.detail = detail


_CONFIGURATION_ERRORS = (
    UnknownProviderError,
    MissingCredentialsError,
    ModelNotFoundError,
    NoModelSelectedError,
)


def rejected_tool_call_id(error: BaseException) -> str | None:
    if isinstance(error, ToolExecutionError) and isinstance(error.cause, UserRejectedError):
        return error.call_id
    return None


def error_kind(error: BaseException) -> str:
    if rejected_tool_call_id(error) is not None:
        return "tool_rejected"
    if isinstance(error, _CONFIGURATION_ERRORS):
        return "configuration"
    if isinstance(error, NoSuchToolError):
        return "no_such_tool"
    if isinstance(error, InvalidToolArgumentsError):
        return "invalid_tool_arguments"
    if isinstance(error, ToolExecutionError):
        return "tool_execution"
    if isinstance(error, TransportError):
        return "transport"
    return "unknown"


def describe_error(error: BaseException) -> str:
    """Convert any error into the single string shown to the user and the host."""
    if isinstance(error, _CONFIGURATION_ERRORS):
        return str(error)
    if isinstance(error, NoSuchToolError):
        return "The model tried to call an unknown tool."
    if isinstance(error, InvalidToolArgumentsError):
        return "The model called a tool with invalid arguments."
    if isinstance(error, ToolExecutionError):
        call_id = rejected_tool_call_id(error)
        if call_id is not None:
            return f"User rejected tool call. (toolCallId: {call_id})"
        return "An error occurred during tool execution."

    transport = error if isinstance(error, TransportError) else error.__cause__
    if isinstance(transport, TransportError):
        described = _describe_transport_error(transport)
        if described:
            return described
    return UNKNOWN_ERROR_MESSAGE


def _describe_transport_error(error: TransportError) -> str | None:
    # Best effort only: backends are free to phrase their error bodies differently.
    text = str(error)
    if "{" in text and "error" in text:
        try:
            body = json.loads(text[text.index("{"):])
        except ValueError:
            logger.debug(f"Transport error body is not JSON: {text[:200]}")
        else:
            if isinstance(body, dict) and body.get("error"):
                return f"{error.provider} API Error: {body['error']}"
    if error.status_code == 400 or "400 Bad Request" in text:
        return (
            f"The {error.provider} server returned a Bad Request error. "
            "The model might not support the requested operation."
        )
    return None
