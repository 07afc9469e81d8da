import asyncio
import json
import sys
from typing import Any

from dotenv import load_dotenv
from loguru import logger

from db_chat_agent.app_config import load_json_config, parse_app_config, resolve_runtime_env
from db_chat_agent.bootstrap import AppRuntime, bootstrap_runtime
from db_chat_agent.commands.router import CommandRouter
from db_chat_agent.errors import ChatAgentError
from db_chat_agent.events import ChatEvents
from db_chat_agent.host import NOTIFY_ERROR_CHANNEL
from db_chat_agent.local_models import PullProgress
from db_chat_agent.model_catalog import list_available_models
from db_chat_agent.permission_gate import PendingPermissionRequest
from db_chat_agent.tool_gateway import ToolResult

_HELP = """\
Commands:
  /help                      Show this help
  /models                    List the models you can use
  /model <provider> <model>  Switch model (providers: anthropic, openai, google, ollama)
  /title [text]              Show the conversation title, or set it
When a tool call needs approval, answer y to run it, n to refuse, or type
what the AI should do instead. /abort stops the current request."""


class CliEvents(ChatEvents):
    def __init__(self) -> None:
        self.permission_requested = asyncio.Event()
        self._streaming_line = False

    def on_token(self, text: str) -> None:
        if not self._streaming_line:
            print("assistant> ", end="")
            self._streaming_line = True
        print(text, end="", flush=True)

    def on_tool_call_requested(self, name: str, args: dict[str, Any], call_id: str) -> None:
        self._end_line()
        print(f"  [tool] {name} {json.dumps(args)}")

    def on_permission_requested(self, request: PendingPermissionRequest) -> None:
        self.permission_requested.set()

    def on_tool_result(self, call_id: str, result: ToolResult) -> None:
        preview = result.content if len(result.content) <= 200 else result.content[:200] + "..."
        print(f"  [result] {preview}")

    def on_complete(self) -> None:
        self._end_line()

    def on_error(self, kind: str, detail: str) -> None:
        self._end_line()
        print(f"error> {detail}")

    def on_abort(self) -> None:
        self._end_line()
        print("(aborted)")

    def on_pull_progress(self, progress: PullProgress) -> None:
        fraction = progress.fraction
        suffix = f" {fraction:.0%}" if fraction is not None else ""
        print(f"\r  [pull] {progress.status}{suffix}".ljust(60), end="", flush=True)
        if progress.status == "completed":
            print()

    def on_title(self, title: str) -> None:
        logger.info(f"Title: {title}")

    def _end_line(self) -> None:
        if self._streaming_line:
            print()
            self._streaming_line = False


def _print_notification(channel: str, payload: dict[str, Any]) -> None:
    if channel == NOTIFY_ERROR_CHANNEL:
        print(f"\n[{payload.get('name', 'notice')}] {payload.get('message', '')}")


async def _ask(prompt: str) -> str:
    return (await asyncio.to_thread(input, prompt)).strip()


async def _run_turn(runtime: AppRuntime, events: CliEvents, text: str) -> None:
    session = runtime.session
    send_task = asyncio.create_task(session.send(text))
    while not send_task.done():
        waiter = asyncio.create_task(events.permission_requested.wait())
        done, _ = await asyncio.wait({send_task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        if waiter not in done:
            waiter.cancel()
            continue

        events.permission_requested.clear()
        request = session.pending_permission
        if request is None:
            continue
        answer = await _ask(f"Allow {request.tool_name}? [y/n or what to do instead] ")
        if answer.lower() in ("y", "yes"):
            session.accept_permission()
        elif answer == "/abort":
            await session.abort()
        elif answer.lower() in ("", "n", "no"):
            session.reject_permission()
        else:
            session.reject_permission(answer)

    try:
        send_task.result()
    except ChatAgentError as ex:
        print(f"error> {ex}")


def _build_router(runtime: AppRuntime) -> CommandRouter:
    async def on_help() -> None:
        print(_HELP)

    async def on_models() -> None:
        catalog = await list_available_models(runtime.credentials, notify=runtime.host.notify)
        if not catalog.models:
            print("No models available.")
        for model in catalog.models:
            marker = "*" if (
                model.provider is runtime.session.provider_id and model.model_id == runtime.session.model_id
            ) else " "
            print(f" {marker} {model.provider.value:<10} {model.model_id:<40} {model.display_name}")

    async def on_model(arg: str) -> None:
        provider, _, model = arg.partition(" ")
        if not provider or not model.strip():
            print("Usage: /model <provider> <model>")
            return
        try:
            await runtime.select_model(provider, model.strip())
        except ChatAgentError as ex:
            print(f"error> {ex}")
            return
        print(f"Model: {runtime.session.provider_id.value}/{runtime.session.model_id}")

    async def on_title(arg: str) -> None:
        if arg:
            await runtime.tab_state.set_tab_title(arg)
        print(f"Title: {runtime.tab_state.conversation_title or '(untitled)'}")

    def on_unknown(command: str) -> None:
        print(f"Unknown command: {command}. Type /help for commands.")

    return CommandRouter(
        on_help=on_help,
        on_models=on_models,
        on_model=on_model,
        on_title=on_title,
        on_unknown=on_unknown,
    )


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env()
    events = CliEvents()

    runtime = await bootstrap_runtime(app, env, events=events, on_notify=_print_notification)
    router = _build_router(runtime)

    print("db-chat-agent (type 'exit' to quit, '/help' for commands)")
    print(f"Database: {app.database_path} ({'read-only' if app.read_only else 'read-write'})")
    print(f"Tools: {', '.join(runtime.tool_names)}")
    if runtime.session.model_id:
        print(f"Model: {runtime.session.provider_id.value}/{runtime.session.model_id}")
    print(f"Conversation: {runtime.conversation_id} ({len(runtime.session.messages)} message(s))")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        while True:
            try:
                user_input = await _ask("you> ")
            except (EOFError, KeyboardInterrupt):
                break

            if user_input in ("exit", "quit"):
                break
            if not user_input:
                continue
            if await router.try_handle(user_input):
                continue

            try:
                await _run_turn(runtime, events, user_input)
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        await runtime.session.close()
        runtime.close()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    run()
