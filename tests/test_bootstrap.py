import asyncio
import unittest
from types import SimpleNamespace

import httpx

from db_chat_agent.bootstrap import AppRuntime
from db_chat_agent.local_models import OllamaClient
from db_chat_agent.model_catalog import list_available_models
from db_chat_agent.provider import ProviderCredentials
from db_chat_agent.storage import ConversationDb, ConversationStore, ConversationTabState
from db_chat_agent.storage.conversation_store import LAST_MODEL_KEY


class _FakeSession:
    def __init__(self) -> None:
        self.selected: list[tuple[str, str]] = []

    async def set_model(self, provider: str, model: str) -> None:
        self.selected.append((provider, model))


class SelectModelTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = ConversationDb(":memory:")
        self.store = ConversationStore(self.db)
        cid = self.store.create_conversation()
        self.session = _FakeSession()
        self.runtime = AppRuntime(
            session=self.session,
            host=SimpleNamespace(close=lambda: None),
            db=self.db,
            store=self.store,
            tab_state=ConversationTabState(self.store, cid),
            credentials=ProviderCredentials(ollama_server_url="http://ollama.test:11434"),
            tool_names=[],
            log_descriptions=[],
        )

    def tearDown(self) -> None:
        self.db.close()

    def test_alias_is_stored_under_its_canonical_provider(self) -> None:
        asyncio.run(self.runtime.select_model("local", "llama3"))

        self.assertEqual([("local", "llama3")], self.session.selected)
        last_used = self.store.get_state(self.runtime.conversation_id, LAST_MODEL_KEY)
        self.assertEqual(["ollama", "llama3"], last_used)

    def test_stored_alias_choice_becomes_the_default(self) -> None:
        asyncio.run(self.runtime.select_model("local", "llama3"))
        last_used = self.store.get_state(self.runtime.conversation_id, LAST_MODEL_KEY)

        tags = {"models": [{"name": "qwen2.5:7b"}, {"name": "llama3"}]}
        client = OllamaClient(
            "http://ollama.test:11434",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=tags)),
        )
        catalog = asyncio.run(list_available_models(
            self.runtime.credentials,
            notify=lambda channel, payload: None,
            ollama_client=client,
            last_used=tuple(last_used),
        ))

        self.assertEqual("llama3", catalog.default.model_id)


if __name__ == "__main__":
    unittest.main()
