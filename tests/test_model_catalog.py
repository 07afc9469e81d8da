import asyncio
import unittest

import httpx

from db_chat_agent.host import NOTIFY_ERROR_CHANNEL
from db_chat_agent.local_models import OllamaClient
from db_chat_agent.model_catalog import list_available_models
from db_chat_agent.provider import ProviderCredentials
from db_chat_agent.provider_registry import ProviderId

_TAGS = {"models": [{"name": "qwen2.5:7b", "details": {"parameter_size": "7.6B"}}]}


def _ollama(handler) -> OllamaClient:
    return OllamaClient("http://ollama.test:11434", transport=httpx.MockTransport(handler))


class ModelCatalogTests(unittest.TestCase):
    def setUp(self) -> None:
        self.notifications: list = []

    def _notify(self, channel: str, payload: dict) -> None:
        self.notifications.append((channel, payload))

    def test_only_configured_remote_providers(self) -> None:
        catalog = asyncio.run(list_available_models(
            ProviderCredentials(openai_api_key="sk"),
            notify=self._notify,
        ))

        self.assertTrue(catalog.models)
        self.assertEqual({ProviderId.OPENAI}, {m.provider for m in catalog.models})
        self.assertEqual(catalog.models[0], catalog.default)
        self.assertEqual([], self.notifications)

    def test_installed_local_models_are_listed(self) -> None:
        client = _ollama(lambda request: httpx.Response(200, json=_TAGS))
        catalog = asyncio.run(list_available_models(
            ProviderCredentials(ollama_server_url="http://ollama.test:11434"),
            notify=self._notify,
            ollama_client=client,
        ))

        self.assertEqual(["ollama/qwen2.5:7b"], [m.key for m in catalog.models])
        self.assertEqual("qwen2.5:7b (7.6B)", catalog.models[0].display_name)

    def test_unreachable_local_server_is_reported_and_skipped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        catalog = asyncio.run(list_available_models(
            ProviderCredentials(anthropic_api_key="k", ollama_server_url="http://ollama.test:11434"),
            notify=self._notify,
            ollama_client=_ollama(handler),
        ))

        self.assertTrue(all(m.provider is ProviderId.ANTHROPIC for m in catalog.models))
        self.assertEqual(1, len(self.notifications))
        channel, payload = self.notifications[0]
        self.assertEqual(NOTIFY_ERROR_CHANNEL, channel)
        self.assertTrue(payload["message"].startswith("Error listing Ollama models:"))

    def test_last_used_model_becomes_default(self) -> None:
        catalog = asyncio.run(list_available_models(
            ProviderCredentials(anthropic_api_key="k"),
            notify=self._notify,
            last_used=("anthropic", "claude-3-5-haiku-latest"),
        ))
        self.assertEqual("claude-3-5-haiku-latest", catalog.default.model_id)

        stale = asyncio.run(list_available_models(
            ProviderCredentials(anthropic_api_key="k"),
            notify=self._notify,
            last_used=("openai", "gpt-4o"),
        ))
        self.assertEqual(stale.models[0], stale.default)

    def test_nothing_configured(self) -> None:
        catalog = asyncio.run(list_available_models(ProviderCredentials(), notify=self._notify))
        self.assertEqual([], catalog.models)
        self.assertIsNone(catalog.default)


if __name__ == "__main__":
    unittest.main()
