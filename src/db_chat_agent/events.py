from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from db_chat_agent.chat_session import SessionStatus
    from db_chat_agent.local_models import PullProgress
    from db_chat_agent.permission_gate import PendingPermissionRequest
    from db_chat_agent.tool_gateway import ToolResult


class ChatEvents:
    """Callbacks fired by a ChatSession, in the order things happen.

    Subclass and override what the UI needs; every hook defaults to a no-op.
    Hooks run on the event loop and must not block.
    """

    def on_status_change(self, status: SessionStatus) -> None:
        pass

    def on_token(self, text: str) -> None:
        pass

    def on_tool_call_requested(self, name: str, args: dict[str, Any], call_id: str) -> None:
        pass

    def on_permission_requested(self, request: PendingPermissionRequest) -> None:
        pass

    def on_tool_result(self, call_id: str, result: ToolResult) -> None:
        pass

    def on_complete(self) -> None:
        pass

    def on_error(self, kind: str, detail: str) -> None:
        pass

    def on_abort(self) -> None:
        pass

    def on_pull_progress(self, progress: PullProgress) -> None:
        pass

    def on_title(self, title: str) -> None:
        pass
