from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from db_chat_agent.local_models import DEFAULT_OLLAMA_URL
from db_chat_agent.provider import ProviderCredentials


@dataclass
class RuntimeEnv:
    anthropic_api_key: str
    openai_api_key: str
    google_api_key: str

    def credentials(self, ollama_server_url: str) -> ProviderCredentials:
        return ProviderCredentials(
            anthropic_api_key=self.anthropic_api_key,
            openai_api_key=self.openai_api_key,
            google_api_key=self.google_api_key,
            ollama_server_url=ollama_server_url,
        )


@dataclass
class AppConfig:
    provider_name: str | None
    model: str | None
    temperature: float
    max_tokens: int
    max_steps: int
    max_tool_result_chars: int
    ollama_server_url: str
    database_path: str
    read_only: bool
    conversation_db_path: str
    conversation_id: str | None
    log_level: str
    log_consumers: list | None


def load_json_config() -> dict:
    config_path = Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def parse_app_config(config: dict) -> AppConfig:
    return AppConfig(
        provider_name=str(config.get("Provider", "")).strip().lower() or None,
        model=str(config.get("Model", "")).strip() or None,
        temperature=float(config.get("Temperature", 0.7)),
        max_tokens=int(config.get("MaxTokens", 4096)),
        max_steps=int(config.get("MaxSteps", 10)),
        max_tool_result_chars=int(config.get("MaxToolResultChars", 40_000)),
        ollama_server_url=str(config.get("OllamaServerUrl", DEFAULT_OLLAMA_URL)),
        database_path=str(config.get("DatabasePath", ":memory:")),
        read_only=_to_bool(config.get("ReadOnly", True), default=True),
        conversation_db_path=str(config.get("ConversationDbPath", ".db_chat_agent/conversations.db")),
        conversation_id=str(config.get("ConversationId", "")).strip() or None,
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env() -> RuntimeEnv:
    return RuntimeEnv(
        anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
        openai_api_key=os.environ.get("OPENAI_API_KEY", ""),
        google_api_key=os.environ.get("GOOGLE_API_KEY", ""),
    )
