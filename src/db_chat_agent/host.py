from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

NOTIFY_ERROR_CHANNEL = "pluginError"
NOTIFY_PROGRESS_CHANNEL = "modelPullProgress"


@dataclass(frozen=True)
class ConnectionInfo:
    connection_type: str = "unknown"
    read_only_mode: bool = False
    database_name: str = "unknown"
    default_schema: str = ""


@dataclass(frozen=True)
class TableRef:
    name: str
    schema: str | None = None

    def to_dict(self) -> dict[str, str]:
        if self.schema is None:
            return {"name": self.name}
        return {"name": self.name, "schema": self.schema}


@runtime_checkable
class HostEnvironment(Protocol):
    """The application hosting the chat: database connection and notification surface."""

    async def get_connection_info(self) -> ConnectionInfo: ...

    async def get_tables(self) -> list[TableRef]: ...

    def notify(self, channel: str, payload: dict[str, Any]) -> None: ...


@runtime_checkable
class TabState(Protocol):
    """Persistence for the conversation shown in one tab."""

    @property
    def conversation_title(self) -> str: ...

    async def set_tab_state(self, key: str, value: Any) -> None: ...

    async def set_tab_title(self, title: str) -> None: ...


@dataclass
class InMemoryTabState:
    title: str = ""
    state: dict[str, Any] = field(default_factory=dict)

    @property
    def conversation_title(self) -> str:
        return self.title

    async def set_tab_state(self, key: str, value: Any) -> None:
        self.state[key] = value

    async def set_tab_title(self, title: str) -> None:
        self.title = title
