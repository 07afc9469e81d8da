from __future__ import annotations

from collections.abc import Awaitable, Callable


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_models: Callable[[], Awaitable[None]],
        on_model: Callable[[str], Awaitable[None]],
        on_title: Callable[[str], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_models = on_models
        self._on_model = on_model
        self._on_title = on_title
        self._on_unknown = on_unknown

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        command, _, rest = trimmed.partition(" ")
        if command == "/help":
            await self._on_help()
            return True
        if command == "/models":
            await self._on_models()
            return True
        if command == "/model":
            await self._on_model(rest.strip())
            return True
        if command == "/title":
            await self._on_title(rest.strip())
            return True

        self._on_unknown(trimmed)
        return True
