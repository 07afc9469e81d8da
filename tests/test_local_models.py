import asyncio
import json
import unittest

import httpx

from db_chat_agent.errors import TransportError
from db_chat_agent.host import NOTIFY_ERROR_CHANNEL, NOTIFY_PROGRESS_CHANNEL
from db_chat_agent.local_models import (
    ModelProvisioner,
    OllamaClient,
    PullProgress,
    correct_api_path,
    is_model_installed,
)

_TAGS = {
    "models": [
        {
            "name": "llama3.1:8b",
            "size": 4_920_753_328,
            "digest": "abc",
            "modified_at": "2026-10-01T10:00:00Z",
            "details": {"family": "llama", "parameter_size": "8.0B"},
        }
    ]
}


class _FakeOllama:
    def __init__(self, *, installed=None, pull_lines=None, status: int = 200):
        self.installed = installed if installed is not None else _TAGS
        self.pull_lines = pull_lines or [{"status": "pulling manifest"}, {"status": "success"}]
        self.status = status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status != 200:
            return httpx.Response(self.status, text='{"error":"something broke"}')
        if request.url.path == "/api/tags":
            return httpx.Response(200, json=self.installed)
        if request.url.path == "/api/pull":
            body = "\n".join(json.dumps(line) for line in self.pull_lines)
            return httpx.Response(200, content=body.encode())
        if request.url.path == "/api/delete":
            return httpx.Response(200)
        return httpx.Response(404, text="not found")

    @property
    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


def _client(fake: _FakeOllama, url: str = "http://ollama.local:11434") -> OllamaClient:
    return OllamaClient(url, transport=httpx.MockTransport(fake))


class CorrectApiPathTests(unittest.TestCase):
    def test_keeps_paths_already_under_api(self) -> None:
        self.assertEqual("/api/tags", correct_api_path("http://h:11434/api/tags").path)

    def test_rewrites_to_last_segment(self) -> None:
        self.assertEqual("/api/tags", correct_api_path("http://h:11434/tags").path)
        self.assertEqual("/api/chat", correct_api_path("http://h:11434/v1/chat").path)

    def test_server_url_with_trailing_slash(self) -> None:
        fake = _FakeOllama()
        client = _client(fake, "http://ollama.local:11434/")
        self.assertEqual("http://ollama.local:11434/api/pull", str(client.url("pull")))


class IsModelInstalledTests(unittest.TestCase):
    def test_matching_rules(self) -> None:
        installed = ["llama3.1:8b", "Mistral:latest"]
        self.assertTrue(is_model_installed("llama3.1:8b", installed))
        self.assertTrue(is_model_installed("llama3.1", installed))
        self.assertTrue(is_model_installed("mistral", installed))
        self.assertFalse(is_model_installed("phi3", installed))
        self.assertFalse(is_model_installed("qwen2:7b", []))


class OllamaClientTests(unittest.TestCase):
    def test_list_models(self) -> None:
        models = asyncio.run(_client(_FakeOllama()).list_models())

        self.assertEqual(1, len(models))
        self.assertEqual("llama3.1:8b", models[0].name)
        self.assertEqual("llama3.1:8b (8.0B)", models[0].display_name)
        self.assertEqual("llama", models[0].family)

    def test_check_connection(self) -> None:
        self.assertTrue(asyncio.run(_client(_FakeOllama()).check_connection()))
        self.assertFalse(asyncio.run(_client(_FakeOllama(status=500)).check_connection()))

    def test_pull_model_streams_progress(self) -> None:
        fake = _FakeOllama(pull_lines=[
            {"status": "pulling manifest"},
            {"status": "downloading", "digest": "sha256:1", "total": 100, "completed": 50},
            {"status": "success"},
        ])

        async def collect():
            return [p async for p in _client(fake).pull_model("phi3")]

        progress = asyncio.run(collect())

        self.assertEqual(["pulling manifest", "downloading", "success"], [p.status for p in progress])
        self.assertEqual(0.5, progress[1].fraction)
        self.assertIsNone(progress[0].fraction)
        self.assertEqual({"name": "phi3", "stream": True}, json.loads(fake.requests[0].content))

    def test_pull_error_line_raises(self) -> None:
        fake = _FakeOllama(pull_lines=[{"status": "pulling manifest"}, {"error": "pull model manifest: file does not exist"}])

        async def collect():
            return [p async for p in _client(fake).pull_model("nope")]

        with self.assertRaises(TransportError):
            asyncio.run(collect())

    def test_http_error_raises_transport_error(self) -> None:
        with self.assertRaises(TransportError) as ctx:
            asyncio.run(_client(_FakeOllama(status=404)).list_models())
        self.assertEqual(404, ctx.exception.status_code)
        self.assertIn("something broke", str(ctx.exception))

    def test_delete_model(self) -> None:
        fake = _FakeOllama()
        asyncio.run(_client(fake).delete_model("llama3.1:8b"))
        self.assertEqual("DELETE", fake.requests[0].method)
        self.assertEqual("/api/delete", fake.requests[0].url.path)


class ModelProvisionerTests(unittest.TestCase):
    def _provision(self, fake: _FakeOllama, model: str):
        notifications: list = []
        progress: list[PullProgress] = []
        provisioner = ModelProvisioner(
            _client(fake),
            notify=lambda channel, payload: notifications.append((channel, payload)),
            on_progress=progress.append,
        )
        asyncio.run(provisioner.ensure_available(model))
        return notifications, progress

    def test_installed_model_is_not_pulled(self) -> None:
        fake = _FakeOllama()
        notifications, progress = self._provision(fake, "llama3.1")

        self.assertEqual(["/api/tags"], fake.paths)
        self.assertEqual([], notifications)
        self.assertEqual([], progress)

    def test_missing_model_is_pulled_once_with_progress(self) -> None:
        fake = _FakeOllama()
        notifications, progress = self._provision(fake, "phi3:mini")

        self.assertEqual(["/api/tags", "/api/pull"], fake.paths)
        self.assertEqual(["starting", "pulling manifest", "success", "completed"], [p.status for p in progress])
        error_channel = [p["message"] for c, p in notifications if c == NOTIFY_ERROR_CHANNEL]
        self.assertEqual(
            [
                "Pulling model: phi3:mini. This may take a few minutes for the first time.",
                "Successfully pulled model: phi3:mini",
            ],
            error_channel,
        )
        self.assertEqual(4, sum(1 for c, _ in notifications if c == NOTIFY_PROGRESS_CHANNEL))

    def test_failures_propagate(self) -> None:
        with self.assertRaises(TransportError):
            self._provision(_FakeOllama(status=500), "phi3")


if __name__ == "__main__":
    unittest.main()
