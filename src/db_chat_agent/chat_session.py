from __future__ import annotations

import asyncio
import copy
from collections.abc import Callable
from enum import Enum
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from db_chat_agent.errors import (
    NoModelSelectedError,
    SessionBusyError,
    describe_error,
    error_kind,
    rejected_tool_call_id,
)
from db_chat_agent.events import ChatEvents
from db_chat_agent.host import NOTIFY_ERROR_CHANNEL, HostEnvironment, TabState
from db_chat_agent.local_models import DEFAULT_OLLAMA_URL, ModelProvisioner, OllamaClient
from db_chat_agent.permission_gate import GateState, PendingPermissionRequest, PermissionGate
from db_chat_agent.provider import LLMProvider, ProviderCredentials, create_provider
from db_chat_agent.provider_registry import ProviderId
from db_chat_agent.providers.common import text_of
from db_chat_agent.session_config import SessionConfig
from db_chat_agent.system_prompt import build_system_prompt
from db_chat_agent.tool_gateway import ToolGateway, ToolResult, rejection_payload
from db_chat_agent.turn_engine import TurnEngine, error_payload, tool_message

SKIPPED_AFTER_REJECTION = "Tool call skipped because an earlier tool call was rejected."
ABORTED_MESSAGE = "Tool call cancelled: the request was aborted."


class SessionStatus(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    AWAITING_PERMISSION = "awaiting-permission"
    ERROR = "error"


class ConversationTitle(BaseModel):
    title: str = Field(description="The title of the conversation")


class ChatSession:
    """One conversation with the model: history, the turn loop, approvals and persistence.

    ``send`` runs a whole user turn and returns once it reaches a terminal
    state. While a turn is suspended on a tool approval, the UI calls
    ``accept_permission`` / ``reject_permission`` (or ``abort``) from another
    task on the same event loop.
    """

    def __init__(
        self,
        *,
        credentials: ProviderCredentials,
        gateway: ToolGateway,
        host: HostEnvironment,
        tab_state: TabState,
        config: SessionConfig | None = None,
        events: ChatEvents | None = None,
        initial_messages: list[dict] | None = None,
        provisioner: ModelProvisioner | None = None,
        provider_factory: Callable[[ProviderId, ProviderCredentials], LLMProvider] = create_provider,
    ):
        self._credentials = credentials
        self._gateway = gateway
        self._host = host
        self._tab_state = tab_state
        self._config = config or SessionConfig()
        self._events = events or ChatEvents()
        self._messages: list[dict] = list(initial_messages or [])
        self._provisioner = provisioner
        self._provider_factory = provider_factory
        self._providers: dict[ProviderId, LLMProvider] = {}

        self._provider_id: ProviderId | None = None
        self._model_id: str | None = None
        self._status = SessionStatus.IDLE
        self._last_error: str | None = None
        self._gate = PermissionGate(on_state_change=self._on_gate_state_change)
        self._turn_task: asyncio.Task | None = None
        self._title_task: asyncio.Task | None = None
        self._aborted = False
        self._partial_text = ""
        self._is_model_pulling = False

    @property
    def messages(self) -> list[dict]:
        return list(self._messages)

    @property
    def provider_id(self) -> ProviderId | None:
        return self._provider_id

    @property
    def model_id(self) -> str | None:
        return self._model_id

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def asking_permission(self) -> bool:
        return self._gate.is_awaiting

    @property
    def pending_permission(self) -> PendingPermissionRequest | None:
        return self._gate.pending

    @property
    def is_model_pulling(self) -> bool:
        return self._is_model_pulling

    @property
    def is_generating_title(self) -> bool:
        return self._title_task is not None and not self._title_task.done()

    # -- model selection --

    async def set_model(self, provider: str | ProviderId, model: str) -> None:
        provider_id = ProviderId.parse(provider)
        self._provider_id = provider_id

        if provider_id.is_local:
            self._is_model_pulling = True
            try:
                await self._get_provisioner().ensure_available(model)
            except Exception as ex:
                logger.warning(f"Ollama provisioning failed for {model}: {ex}")
                self._host.notify(
                    NOTIFY_ERROR_CHANNEL,
                    {"message": f"Error with Ollama model: {ex}", "name": "Ollama Error"},
                )
            finally:
                self._is_model_pulling = False

        self._model_id = model
        logger.info(f"Model selected: {provider_id.value}/{model}")

    def _get_provisioner(self) -> ModelProvisioner:
        if self._provisioner is None:
            client = OllamaClient(self._credentials.ollama_server_url or DEFAULT_OLLAMA_URL)
            self._provisioner = ModelProvisioner(
                client,
                notify=self._host.notify,
                on_progress=self._events.on_pull_progress,
            )
        return self._provisioner

    def _resolve_provider(self) -> LLMProvider:
        if self._provider_id is None or not self._model_id:
            raise NoModelSelectedError()
        provider = self._providers.get(self._provider_id)
        if provider is None:
            provider = self._provider_factory(self._provider_id, self._credentials)
            self._providers[self._provider_id] = provider
        return provider

    # -- turns --

    async def send(self, text: str) -> None:
        if self._status in (SessionStatus.STREAMING, SessionStatus.AWAITING_PERMISSION):
            raise SessionBusyError()

        next_message: str | None = text
        is_followup = False
        while next_message is not None:
            self._append_message({"role": "user", "content": next_message})
            if is_followup:
                self._schedule_title()
            next_message = await self._run_turn_task()
            is_followup = True

    async def _run_turn_task(self) -> str | None:
        self._aborted = False
        self._last_error = None
        self._partial_text = ""
        self._set_status(SessionStatus.STREAMING)

        task = asyncio.create_task(self._run_turn())
        self._turn_task = task
        try:
            followup = await task
        except asyncio.CancelledError:
            if not self._aborted:
                logger.info("Turn cancelled by caller")
                self._aborted = True
                self._gate.cancel()
                await self._finish_aborted_turn()
                raise
            return None
        finally:
            if self._turn_task is task:
                self._turn_task = None
        return None if self._aborted else followup

    async def _run_turn(self) -> str | None:
        """Returns a follow-up message to submit next, if the user left one."""
        try:
            provider = self._resolve_provider()
            engine = TurnEngine(
                provider=provider,
                model=self._model_id,
                max_tokens=self._config.max_tokens,
                temperature=self._config.temperature,
                system_prompt=await build_system_prompt(self._host),
                gateway=self._gateway,
                approver=self._approve,
                max_steps=self._config.max_steps,
                on_append_message=self._append_message,
                on_text=self._on_token,
                on_tool_call_requested=self._events.on_tool_call_requested,
                on_tool_result=self._on_tool_result,
            )
            stop_reason = await engine.run(messages=self._messages)
        except asyncio.CancelledError:
            raise
        except Exception as ex:
            return await self._handle_turn_error(ex)

        logger.info(f"Turn completed: stop_reason={stop_reason}, messages={len(self._messages)}")
        self._set_status(SessionStatus.IDLE)
        self._events.on_complete()
        await self.save_messages()
        self._schedule_title()
        return None

    async def _approve(self, name: str, args: dict[str, Any], call_id: str) -> bool:
        decision = await self._gate.request(call_id, name, args)
        return decision.approved and decision.call_id == call_id

    async def _handle_turn_error(self, error: Exception) -> str | None:
        message = describe_error(error)
        kind = error_kind(error)
        logger.warning(f"Turn failed ({kind}): {error}")

        self._last_error = message
        self._set_status(SessionStatus.ERROR)
        self._host.notify(NOTIFY_ERROR_CHANNEL, {"message": message, "name": type(error).__name__})
        self._events.on_error(kind, message)

        call_id = rejected_tool_call_id(error)
        if call_id is None:
            self._close_dangling_tool_calls(error_payload(message))
            return None

        self._append_message(tool_message(call_id, error.tool_name, rejection_payload()))
        self._close_dangling_tool_calls(error_payload(SKIPPED_AFTER_REJECTION))
        await self.save_messages()
        return self._gate.take_followup()

    def _close_dangling_tool_calls(self, payload: str) -> None:
        """Answer every tool_use in the last assistant message that has no tool result yet."""
        for index in range(len(self._messages) - 1, -1, -1):
            if self._messages[index]["role"] == "assistant":
                break
        else:
            return

        content = self._messages[index].get("content")
        if not isinstance(content, list):
            return
        answered = {m.get("tool_call_id") for m in self._messages[index + 1:] if m["role"] == "tool"}
        for block in content:
            if block.get("type") == "tool_use" and block["id"] not in answered:
                self._append_message(tool_message(block["id"], block["name"], payload))

    # -- permission decisions --

    def accept_permission(self) -> bool:
        return self._gate.accept()

    def reject_permission(self, followup: str | None = None) -> bool:
        """Reject the pending tool call; ``followup`` is sent as the next user message."""
        return self._gate.reject(followup)

    def _on_gate_state_change(self, state: GateState, pending: PendingPermissionRequest | None) -> None:
        if state is GateState.AWAITING_DECISION and pending is not None:
            self._set_status(SessionStatus.AWAITING_PERMISSION)
            self._events.on_permission_requested(pending)
        elif state is GateState.IDLE and self._status is SessionStatus.AWAITING_PERMISSION:
            self._set_status(SessionStatus.STREAMING)

    # -- abort / persistence --

    async def abort(self) -> None:
        task = self._turn_task
        if task is None or task.done():
            await self.save_messages()
            return
        if self._aborted:
            return

        logger.info("Aborting in-flight request")
        self._aborted = True
        self._gate.cancel()
        task.cancel()
        await asyncio.wait({task})
        await self._finish_aborted_turn()

    async def _finish_aborted_turn(self) -> None:
        if self._partial_text:
            self._append_message({"role": "assistant", "content": [{"type": "text", "text": self._partial_text}]})
        self._close_dangling_tool_calls(error_payload(ABORTED_MESSAGE))
        self._set_status(SessionStatus.IDLE)
        self._events.on_abort()
        await self.save_messages()

    async def save_messages(self) -> None:
        await self._tab_state.set_tab_state("messages", copy.deepcopy(self._messages))
        logger.debug(f"Saved {len(self._messages)} message(s)")

    async def close(self) -> None:
        await self.abort()
        if self._title_task is not None and not self._title_task.done():
            self._title_task.cancel()
            await asyncio.wait({self._title_task})

    # -- title --

    async def fill_title(self) -> None:
        if not self._model_id:
            raise NoModelSelectedError()
        if self._tab_state.conversation_title:
            logger.debug("Conversation already has a title; skipping generation")
            return

        provider = self._resolve_provider()
        transcript = "\n".join(f"{m['role']}: {text_of(m.get('content', ''))}" for m in self._messages)
        prompt = (
            f"Name this conversation in less than {self._config.title_max_chars} characters.\n"
            f"```\n{transcript}\n```"
        )
        result = await provider.generate_structured(self._model_id, ConversationTitle, prompt)
        title = result.title.strip()[: self._config.title_max_chars].strip()
        if not title:
            logger.warning("Model returned an empty conversation title")
            return
        await self._tab_state.set_tab_title(title)
        logger.info(f"Conversation titled: {title}")
        self._events.on_title(title)

    def _schedule_title(self) -> None:
        if self.is_generating_title or self._tab_state.conversation_title:
            return
        self._title_task = asyncio.create_task(self._fill_title_logged())

    async def _fill_title_logged(self) -> None:
        try:
            await self.fill_title()
        except Exception as ex:
            logger.warning(f"Title generation failed: {ex}")

    async def wait_for_title(self) -> None:
        if self._title_task is not None:
            await asyncio.wait({self._title_task})

    # -- callbacks --

    def _append_message(self, message: dict) -> None:
        self._messages.append(message)
        if message["role"] == "assistant":
            self._partial_text = ""

    def _on_token(self, text: str) -> None:
        self._partial_text += text
        self._events.on_token(text)

    def _on_tool_result(self, call_id: str, result: ToolResult) -> None:
        self._events.on_tool_result(call_id, result)

    def _set_status(self, status: SessionStatus) -> None:
        if status is self._status:
            return
        self._status = status
        self._events.on_status_change(status)
