"""Self-hosted model backend (Ollama): HTTP client and model provisioning."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from db_chat_agent.errors import TransportError
from db_chat_agent.host import NOTIFY_ERROR_CHANNEL, NOTIFY_PROGRESS_CHANNEL

DEFAULT_OLLAMA_URL = "http://127.0.0.1:11434"

_TIMEOUT_SECONDS = 30
# Pulls and generations can stall for minutes between lines.
_STREAM_TIMEOUT = httpx.Timeout(_TIMEOUT_SECONDS, read=None)


@dataclass(frozen=True)
class InstalledModel:
    name: str
    size: int = 0
    digest: str = ""
    modified_at: str = ""
    family: str = ""
    parameter_size: str = ""

    @property
    def display_name(self) -> str:
        if self.parameter_size:
            return f"{self.name} ({self.parameter_size})"
        return self.name


@dataclass(frozen=True)
class PullProgress:
    status: str
    digest: str | None = None
    total: int | None = None
    completed: int | None = None

    @property
    def fraction(self) -> float | None:
        if not self.total or self.completed is None:
            return None
        return min(1.0, self.completed / self.total)


def correct_api_path(url: str | httpx.URL) -> httpx.URL:
    """Ensure the request path goes through ``/api/``, keeping only the final endpoint segment."""
    parsed = httpx.URL(str(url))
    if "/api/" in parsed.path:
        return parsed
    endpoint = parsed.path.split("/")[-1]
    return parsed.copy_with(path=f"/api/{endpoint}")


def is_model_installed(requested: str, installed_names: list[str]) -> bool:
    wanted = requested.strip().lower()
    base = wanted.split(":")[0]
    for name in installed_names:
        candidate = name.lower()
        if candidate == wanted or candidate == base or (base and candidate.startswith(base)):
            return True
    return False


async def _raise_for_status(response: httpx.Response) -> None:
    if not response.is_error:
        return
    await response.aread()
    raise TransportError("Ollama", response.status_code, f"{response.reason_phrase}: {response.text}")


def _parse_line(line: str) -> dict | None:
    line = line.strip()
    if not line:
        return None
    data = json.loads(line)
    if isinstance(data, dict) and data.get("error"):
        raise TransportError("Ollama", None, json.dumps({"error": data["error"]}))
    return data


class OllamaClient:
    def __init__(
        self,
        server_url: str = DEFAULT_OLLAMA_URL,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._server_url = (server_url or DEFAULT_OLLAMA_URL).rstrip("/")
        self._transport = transport

    @property
    def server_url(self) -> str:
        return self._server_url

    def url(self, endpoint: str) -> httpx.URL:
        return correct_api_path(f"{self._server_url}/{endpoint}")

    def _client(self, timeout: httpx.Timeout | float = _TIMEOUT_SECONDS) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def check_connection(self) -> bool:
        try:
            await self.list_models()
        except (httpx.HTTPError, TransportError) as ex:
            logger.warning(f"Failed to connect to Ollama at {self._server_url}: {ex}")
            return False
        return True

    async def list_models(self) -> list[InstalledModel]:
        async with self._client() as client:
            response = await client.get(self.url("tags"))
            await _raise_for_status(response)
            data = response.json()

        models: list[InstalledModel] = []
        for entry in data.get("models") or []:
            details = entry.get("details") or {}
            models.append(
                InstalledModel(
                    name=entry.get("name", ""),
                    size=int(entry.get("size") or 0),
                    digest=entry.get("digest", ""),
                    modified_at=entry.get("modified_at", ""),
                    family=details.get("family", ""),
                    parameter_size=details.get("parameter_size", ""),
                )
            )
        logger.debug(f"Ollama reports {len(models)} installed model(s)")
        return models

    async def pull_model(self, name: str) -> AsyncIterator[PullProgress]:
        async with self._client(_STREAM_TIMEOUT) as client:
            async with client.stream("POST", self.url("pull"), json={"name": name, "stream": True}) as response:
                await _raise_for_status(response)
                async for line in response.aiter_lines():
                    data = _parse_line(line)
                    if data is None:
                        continue
                    yield PullProgress(
                        status=data.get("status") or "Downloading...",
                        digest=data.get("digest"),
                        total=data.get("total"),
                        completed=data.get("completed"),
                    )

    async def delete_model(self, name: str) -> None:
        async with self._client() as client:
            response = await client.request("DELETE", self.url("delete"), json={"name": name})
            await _raise_for_status(response)
        logger.info(f"Deleted Ollama model {name}")

    async def stream_chat(self, payload: dict[str, Any]) -> AsyncIterator[dict]:
        async with self._client(_STREAM_TIMEOUT) as client:
            async with client.stream("POST", self.url("chat"), json={**payload, "stream": True}) as response:
                await _raise_for_status(response)
                async for line in response.aiter_lines():
                    data = _parse_line(line)
                    if data is not None:
                        yield data

    async def chat(self, payload: dict[str, Any]) -> dict:
        async with self._client(_STREAM_TIMEOUT) as client:
            response = await client.post(self.url("chat"), json={**payload, "stream": False})
            await _raise_for_status(response)
            return response.json()


class ModelProvisioner:
    """Makes sure a local model is installed before a session starts using it."""

    def __init__(
        self,
        client: OllamaClient,
        *,
        notify: Callable[[str, dict[str, Any]], None],
        on_progress: Callable[[PullProgress], None] | None = None,
    ):
        self._client = client
        self._notify = notify
        self._on_progress = on_progress

    async def ensure_available(self, model_id: str) -> None:
        installed = await self._client.list_models()
        if is_model_installed(model_id, [m.name for m in installed]):
            logger.debug(f"Ollama model {model_id} already installed")
            return

        logger.info(f"Pulling Ollama model {model_id}")
        self._notify(
            NOTIFY_ERROR_CHANNEL,
            {
                "message": f"Pulling model: {model_id}. This may take a few minutes for the first time.",
                "name": "Ollama",
            },
        )
        self._report(PullProgress(status="starting"))
        async for progress in self._client.pull_model(model_id):
            self._report(progress)
        self._report(PullProgress(status="completed"))
        self._notify(
            NOTIFY_ERROR_CHANNEL,
            {"message": f"Successfully pulled model: {model_id}", "name": "Ollama"},
        )
        logger.info(f"Pulled Ollama model {model_id}")

    def _report(self, progress: PullProgress) -> None:
        self._notify(
            NOTIFY_PROGRESS_CHANNEL,
            {
                "status": progress.status,
                "digest": progress.digest,
                "total": progress.total,
                "completed": progress.completed,
            },
        )
        if self._on_progress is not None:
            self._on_progress(progress)
