from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from db_chat_agent.errors import TransportError
from db_chat_agent.host import NOTIFY_ERROR_CHANNEL
from db_chat_agent.local_models import OllamaClient
from db_chat_agent.provider import ProviderCredentials
from db_chat_agent.provider_registry import ProviderId, list_providers


@dataclass(frozen=True)
class AvailableModel:
    provider: ProviderId
    model_id: str
    display_name: str

    @property
    def key(self) -> str:
        return f"{self.provider.value}/{self.model_id}"


@dataclass(frozen=True)
class ModelCatalog:
    models: list[AvailableModel]
    default: AvailableModel | None


async def list_available_models(
    credentials: ProviderCredentials,
    *,
    notify: Callable[[str, dict[str, Any]], None],
    ollama_client: OllamaClient | None = None,
    last_used: tuple[str, str] | None = None,
) -> ModelCatalog:
    """Models the user can pick right now.

    Remote providers contribute their catalog when an API key is configured;
    the local server contributes whatever it has installed. A provider that
    fails to list is reported and skipped.
    """
    models: list[AvailableModel] = []

    for config in list_providers():
        if config.id.is_local or not credentials.has_credentials(config.id):
            continue
        models.extend(AvailableModel(config.id, m.id, m.display_name) for m in config.models)

    if credentials.has_credentials(ProviderId.OLLAMA):
        client = ollama_client or OllamaClient(credentials.ollama_server_url)
        try:
            installed = await client.list_models()
        except (httpx.HTTPError, TransportError) as ex:
            logger.warning(f"Could not list Ollama models: {ex}")
            notify(NOTIFY_ERROR_CHANNEL, {"message": f"Error listing Ollama models: {ex}", "name": "Ollama Error"})
        else:
            models.extend(AvailableModel(ProviderId.OLLAMA, m.name, m.display_name) for m in installed)

    return ModelCatalog(models=models, default=_pick_default(models, last_used))


def _pick_default(models: list[AvailableModel], last_used: tuple[str, str] | None) -> AvailableModel | None:
    if not models:
        return None
    if last_used is not None:
        provider, model_id = last_used
        for model in models:
            if model.provider.value == provider and model.model_id == model_id:
                return model
    return models[0]
