import os
import unittest
from unittest.mock import patch

from db_chat_agent.app_config import _to_bool, parse_app_config, resolve_runtime_env


class AppConfigTests(unittest.TestCase):
    def test_defaults(self) -> None:
        app = parse_app_config({})

        self.assertIsNone(app.provider_name)
        self.assertIsNone(app.model)
        self.assertEqual(0.7, app.temperature)
        self.assertEqual(4096, app.max_tokens)
        self.assertEqual(10, app.max_steps)
        self.assertEqual(40_000, app.max_tool_result_chars)
        self.assertEqual("http://127.0.0.1:11434", app.ollama_server_url)
        self.assertTrue(app.read_only)
        self.assertEqual(".db_chat_agent/conversations.db", app.conversation_db_path)
        self.assertIsNone(app.conversation_id)
        self.assertEqual("INFO", app.log_level)
        self.assertIsNone(app.log_consumers)

    def test_values_from_config(self) -> None:
        app = parse_app_config({
            "Provider": " Ollama ",
            "Model": "llama3.1",
            "Temperature": "0.2",
            "MaxSteps": 4,
            "ReadOnly": "no",
            "DatabasePath": "shop.db",
            "ConversationId": "  ",
            "LogConsumers": [{"type": "console"}],
        })

        self.assertEqual("ollama", app.provider_name)
        self.assertEqual("llama3.1", app.model)
        self.assertEqual(0.2, app.temperature)
        self.assertEqual(4, app.max_steps)
        self.assertFalse(app.read_only)
        self.assertEqual("shop.db", app.database_path)
        self.assertIsNone(app.conversation_id)
        self.assertEqual([{"type": "console"}], app.log_consumers)

    def test_to_bool(self) -> None:
        self.assertTrue(_to_bool("YES"))
        self.assertFalse(_to_bool("off"))
        self.assertTrue(_to_bool(None, default=True))
        self.assertFalse(_to_bool(0))

    def test_runtime_env_builds_credentials(self) -> None:
        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "a", "GOOGLE_API_KEY": "g"}, clear=True):
            env = resolve_runtime_env()

        credentials = env.credentials("http://ollama:11434")
        self.assertEqual("a", credentials.anthropic_api_key)
        self.assertEqual("", credentials.openai_api_key)
        self.assertEqual("g", credentials.google_api_key)
        self.assertEqual("http://ollama:11434", credentials.ollama_server_url)


if __name__ == "__main__":
    unittest.main()
