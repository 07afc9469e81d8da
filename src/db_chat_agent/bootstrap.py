from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

from db_chat_agent.app_config import AppConfig, RuntimeEnv
from db_chat_agent.chat_session import ChatSession
from db_chat_agent.events import ChatEvents
from db_chat_agent.hosts.sqlite_host import SqliteHost
from db_chat_agent.logging_config import setup_logging
from db_chat_agent.model_catalog import list_available_models
from db_chat_agent.provider import ProviderCredentials
from db_chat_agent.provider_registry import ProviderId
from db_chat_agent.session_config import SessionConfig
from db_chat_agent.storage import ConversationDb, ConversationStore, ConversationTabState
from db_chat_agent.storage.conversation_store import LAST_MODEL_KEY
from db_chat_agent.tool_registry import build_gateway, get_all


@dataclass
class AppRuntime:
    session: ChatSession
    host: SqliteHost
    db: ConversationDb
    store: ConversationStore
    tab_state: ConversationTabState
    credentials: ProviderCredentials
    tool_names: list[str]
    log_descriptions: list[str]

    @property
    def conversation_id(self) -> str:
        return self.tab_state.conversation_id

    async def select_model(self, provider: str, model: str) -> None:
        await self.session.set_model(provider, model)
        self.store.set_state(self.conversation_id, LAST_MODEL_KEY, [ProviderId.parse(provider).value, model])

    def close(self) -> None:
        self.host.close()
        self.db.close()


async def bootstrap_runtime(
    app: AppConfig,
    env: RuntimeEnv,
    *,
    events: ChatEvents | None = None,
    on_notify: Callable[[str, dict[str, Any]], None] | None = None,
) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    host = SqliteHost(app.database_path, read_only=app.read_only, on_notify=on_notify)
    tools = get_all(host)
    gateway = build_gateway(tools, max_result_chars=app.max_tool_result_chars)

    db_path = Path(app.conversation_db_path)
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    db = ConversationDb(str(db_path))
    store = ConversationStore(db)
    conversation_id = store.load_or_create(app.conversation_id)
    tab_state = ConversationTabState(store, conversation_id)

    credentials = env.credentials(app.ollama_server_url)
    session = ChatSession(
        credentials=credentials,
        gateway=gateway,
        host=host,
        tab_state=tab_state,
        config=SessionConfig(
            temperature=app.temperature,
            max_tokens=app.max_tokens,
            max_steps=app.max_steps,
        ),
        events=events,
        initial_messages=store.load_messages(conversation_id),
    )
    runtime = AppRuntime(
        session=session,
        host=host,
        db=db,
        store=store,
        tab_state=tab_state,
        credentials=credentials,
        tool_names=[t.name for t in tools],
        log_descriptions=log_descriptions,
    )

    if app.provider_name and app.model:
        await runtime.select_model(app.provider_name, app.model)
    else:
        last_used = store.get_state(conversation_id, LAST_MODEL_KEY)
        catalog = await list_available_models(
            credentials,
            notify=host.notify,
            last_used=tuple(last_used) if last_used else None,
        )
        if catalog.default is not None:
            await runtime.select_model(catalog.default.provider.value, catalog.default.model_id)
        else:
            logger.warning("No models available; configure an API key or start Ollama")

    logger.info(f"Conversation {conversation_id} ready with {len(session.messages)} message(s)")
    return runtime
