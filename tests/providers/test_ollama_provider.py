import asyncio
import json
import unittest

import httpx
from pydantic import BaseModel

from db_chat_agent.local_models import OllamaClient
from db_chat_agent.providers.ollama_provider import OllamaProvider, _to_ollama_messages


class _Title(BaseModel):
    title: str


def _ndjson(*lines: dict) -> bytes:
    return "\n".join(json.dumps(line) for line in lines).encode()


class _Recorder:
    def __init__(self, response: httpx.Response):
        self._response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._response


def _make_provider(recorder: _Recorder) -> OllamaProvider:
    client = OllamaClient("http://ollama.local:11434", transport=httpx.MockTransport(recorder))
    return OllamaProvider("http://ollama.local:11434", client=client)


class ToOllamaMessagesTests(unittest.TestCase):
    def test_tool_calls_and_results(self) -> None:
        result = _to_ollama_messages("sys", [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": [{"type": "tool_use", "id": "c1", "name": "list_tables", "input": {}}]},
            {"role": "tool", "tool_call_id": "c1", "tool_name": "list_tables", "content": "[]"},
        ])

        self.assertEqual(["system", "user", "assistant", "tool"], [m["role"] for m in result])
        self.assertEqual([{"function": {"name": "list_tables", "arguments": {}}}], result[2]["tool_calls"])
        self.assertEqual("list_tables", result[3]["tool_name"])


class OllamaProviderTests(unittest.TestCase):
    def test_stream_chat_text(self) -> None:
        recorder = _Recorder(httpx.Response(200, content=_ndjson(
            {"message": {"role": "assistant", "content": "Hel"}, "done": False},
            {"message": {"role": "assistant", "content": "lo"}, "done": False},
            {"message": {"role": "assistant", "content": ""}, "done": True, "done_reason": "stop"},
        )))
        provider = _make_provider(recorder)
        tokens: list[str] = []

        message, tool_use_blocks, stop_reason = asyncio.run(
            provider.stream_chat("llama3.1", 64, 0.7, "sys", [{"role": "user", "content": "hi"}], [],
                                 on_text=tokens.append)
        )

        self.assertEqual(["Hel", "lo"], tokens)
        self.assertEqual("end_turn", stop_reason)
        self.assertEqual([], tool_use_blocks)
        self.assertEqual("Hello", message["content"][0]["text"])
        self.assertEqual("/api/chat", recorder.requests[0].url.path)
        body = json.loads(recorder.requests[0].content)
        self.assertTrue(body["stream"])
        self.assertEqual({"temperature": 0.7, "num_predict": 64}, body["options"])

    def test_stream_chat_tool_calls(self) -> None:
        recorder = _Recorder(httpx.Response(200, content=_ndjson(
            {
                "message": {
                    "role": "assistant",
                    "content": "",
                    "tool_calls": [{"function": {"name": "run_query", "arguments": {"sql": "select 1"}}}],
                },
                "done": True,
                "done_reason": "stop",
            },
        )))
        provider = _make_provider(recorder)

        message, tool_use_blocks, stop_reason = asyncio.run(
            provider.stream_chat("llama3.1", 64, 0.7, "", [{"role": "user", "content": "hi"}],
                                 [{"name": "run_query", "description": "", "input_schema": {"type": "object"}}])
        )

        self.assertEqual("tool_use", stop_reason)
        self.assertEqual("run_query", tool_use_blocks[0]["name"])
        self.assertEqual({"sql": "select 1"}, tool_use_blocks[0]["input"])
        self.assertEqual(tool_use_blocks, message["content"])
        self.assertIn("tools", json.loads(recorder.requests[0].content))

    def test_generate_structured_sends_schema_as_format(self) -> None:
        recorder = _Recorder(httpx.Response(200, json={"message": {"role": "assistant", "content": '{"title": "Q3"}'}}))
        provider = _make_provider(recorder)

        result = asyncio.run(provider.generate_structured("llama3.1", _Title, "name it"))

        self.assertEqual("Q3", result.title)
        body = json.loads(recorder.requests[0].content)
        self.assertFalse(body["stream"])
        self.assertEqual(_Title.model_json_schema(), body["format"])


if __name__ == "__main__":
    unittest.main()
