from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel

from db_chat_agent.errors import MissingCredentialsError, UnknownProviderError
from db_chat_agent.provider_registry import ProviderId

SchemaT = TypeVar("SchemaT", bound=BaseModel)

TextCallback = Callable[[str], None]


@runtime_checkable
class LLMProvider(Protocol):
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
        """Stream a chat response, passing each text delta to ``on_text``.

        Returns (message_dict, tool_use_blocks, stop_reason) in the internal
        (Anthropic-style) format. Cancelling the awaiting task closes the
        underlying stream.
        """
        ...

    async def generate_structured(
        self,
        model: str,
        schema: type[SchemaT],
        prompt: str,
    ) -> SchemaT:
        """Non-streaming request whose answer is validated against ``schema``."""
        ...


@dataclass(frozen=True)
class ProviderCredentials:
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    google_api_key: str = ""
    ollama_server_url: str = ""

    def has_credentials(self, provider_id: ProviderId) -> bool:
        return bool(getattr(self, _CREDENTIAL_FIELDS[provider_id]))


_CREDENTIAL_FIELDS = {
    ProviderId.ANTHROPIC: "anthropic_api_key",
    ProviderId.OPENAI: "openai_api_key",
    ProviderId.GOOGLE: "google_api_key",
    ProviderId.OLLAMA: "ollama_server_url",
}


def create_provider(provider_name: str | ProviderId, credentials: ProviderCredentials) -> LLMProvider:
    """Factory: create the chat transport for a provider. Performs no network I/O."""
    provider_id = ProviderId.parse(provider_name)
    if not credentials.has_credentials(provider_id):
        raise MissingCredentialsError(provider_id.value, _CREDENTIAL_FIELDS[provider_id])

    if provider_id is ProviderId.ANTHROPIC:
        from db_chat_agent.providers.anthropic_provider import AnthropicProvider
        return AnthropicProvider(credentials.anthropic_api_key)
    if provider_id is ProviderId.OPENAI:
        from db_chat_agent.providers.openai_provider import OpenAIProvider
        return OpenAIProvider(credentials.openai_api_key)
    if provider_id is ProviderId.GOOGLE:
        from db_chat_agent.providers.google_provider import GoogleProvider
        return GoogleProvider(credentials.google_api_key)
    if provider_id is ProviderId.OLLAMA:
        from db_chat_agent.providers.ollama_provider import OllamaProvider
        return OllamaProvider(credentials.ollama_server_url)
    raise UnknownProviderError(provider_id.value)
