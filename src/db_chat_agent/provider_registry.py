from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from db_chat_agent.errors import ModelNotFoundError, UnknownProviderError


class ProviderId(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GOOGLE = "google"
    OLLAMA = "ollama"

    @classmethod
    def parse(cls, value: str | ProviderId) -> ProviderId:
        if isinstance(value, ProviderId):
            return value
        name = str(value).strip().lower()
        name = _ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            raise UnknownProviderError(str(value)) from None

    @property
    def is_local(self) -> bool:
        return self is ProviderId.OLLAMA


_ALIASES = {"local": "ollama"}


@dataclass(frozen=True)
class ModelDescriptor:
    id: str
    display_name: str


@dataclass(frozen=True)
class ProviderConfig:
    id: ProviderId
    display_name: str
    models: tuple[ModelDescriptor, ...]


def _models(*pairs: tuple[str, str]) -> tuple[ModelDescriptor, ...]:
    return tuple(ModelDescriptor(id=model_id, display_name=name) for model_id, name in pairs)


# https://docs.anthropic.com/en/docs/about-claude/models/overview
# https://ai.google.dev/gemini-api/docs/models
PROVIDER_CONFIGS: dict[ProviderId, ProviderConfig] = {
    ProviderId.ANTHROPIC: ProviderConfig(
        id=ProviderId.ANTHROPIC,
        display_name="Anthropic",
        models=_models(
            ("claude-opus-4-0", "Claude Opus 4"),
            ("claude-sonnet-4-0", "Claude Sonnet 4"),
            ("claude-3-7-sonnet-latest", "Claude Sonnet 3.7"),
            ("claude-3-5-haiku-latest", "Claude Haiku 3.5"),
            ("claude-3-5-sonnet-latest", "Claude Sonnet 3.5 Latest"),
            ("claude-3-haiku", "Claude Haiku 3"),
        ),
    ),
    ProviderId.GOOGLE: ProviderConfig(
        id=ProviderId.GOOGLE,
        display_name="Google",
        models=_models(
            ("gemini-2.5-pro", "Gemini 2.5 Pro"),
            ("gemini-2.5-flash", "Gemini 2.5 Flash"),
            ("gemini-2.5-flash-lite-preview-06-17", "Gemini 2.5 Flash-Lite Preview"),
            ("gemini-2.0-flash", "Gemini 2.0 Flash"),
            ("gemini-2.0-flash-lite", "Gemini 2.0 Flash-Lite"),
            ("gemini-1.5-flash", "Gemini 1.5 Flash"),
            ("gemini-1.5-flash-8b", "Gemini 1.5 Flash-8B"),
            ("gemini-1.5-pro", "Gemini 1.5 Pro"),
        ),
    ),
    ProviderId.OPENAI: ProviderConfig(
        id=ProviderId.OPENAI,
        display_name="OpenAI",
        models=_models(
            ("gpt-4.1", "gpt-4.1"),
            ("gpt-4.1-mini", "gpt-4.1-mini"),
            ("gpt-4.1-nano", "gpt-4.1-nano"),
            ("gpt-4o", "gpt-4o"),
            ("gpt-4o-mini", "gpt-4o-mini"),
            ("o3", "o3"),
            ("o3-mini", "o3-mini"),
            ("o4-mini", "o4-mini"),
        ),
    ),
    ProviderId.OLLAMA: ProviderConfig(
        id=ProviderId.OLLAMA,
        display_name="Ollama (Local)",
        models=_models(
            ("llama3.1", "Llama 3.1"),
            ("llama3.1:8b", "Llama 3.1 8B"),
            ("llama3.1:70b", "Llama 3.1 70B"),
            ("llama3.2", "Llama 3.2"),
            ("llama3.2:8b", "Llama 3.2 8B"),
            ("llama3.2:70b", "Llama 3.2 70B"),
            ("mistral", "Mistral"),
            ("mistral:7b", "Mistral 7B"),
            ("codellama", "Code Llama"),
            ("codellama:7b", "Code Llama 7B"),
            ("codellama:13b", "Code Llama 13B"),
            ("codellama:34b", "Code Llama 34B"),
            ("phi3", "Phi-3"),
            ("phi3:mini", "Phi-3 Mini"),
            ("phi3:medium", "Phi-3 Medium"),
            ("qwen2", "Qwen2"),
            ("qwen2:7b", "Qwen2 7B"),
            ("qwen2:72b", "Qwen2 72B"),
        ),
    ),
}


def list_providers() -> list[ProviderConfig]:
    return list(PROVIDER_CONFIGS.values())


def get_provider_config(provider_id: str | ProviderId) -> ProviderConfig:
    return PROVIDER_CONFIGS[ProviderId.parse(provider_id)]


def resolve_model(provider_id: str | ProviderId, model_id: str) -> ModelDescriptor:
    config = get_provider_config(provider_id)
    for model in config.models:
        if model.id == model_id:
            return model
    raise ModelNotFoundError(config.id.value, model_id)
