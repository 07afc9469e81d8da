from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger

from db_chat_agent.errors import PermissionGateBusyError


class GateState(str, Enum):
    IDLE = "idle"
    AWAITING_DECISION = "awaiting-decision"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class PendingPermissionRequest:
    call_id: str
    tool_name: str
    args: dict[str, Any]


@dataclass(frozen=True)
class PermissionDecision:
    call_id: str
    approved: bool
    followup: str | None = None


class PermissionGate:
    """Single-slot approval gate.

    ``request`` suspends the calling task until ``accept`` or ``reject`` is
    called from outside. Exactly one decision is taken per request; decisions
    made while nothing is pending are ignored. The gate returns to IDLE as soon
    as the waiting task has the decision, so the next tool call can reuse it.
    """

    def __init__(self, on_state_change: Callable[[GateState, PendingPermissionRequest | None], None] | None = None):
        self._state = GateState.IDLE
        self._pending: PendingPermissionRequest | None = None
        self._future: asyncio.Future[PermissionDecision] | None = None
        self._followup: str | None = None
        self._on_state_change = on_state_change

    @property
    def state(self) -> GateState:
        return self._state

    @property
    def pending(self) -> PendingPermissionRequest | None:
        return self._pending

    @property
    def is_awaiting(self) -> bool:
        return self._state is GateState.AWAITING_DECISION

    async def request(self, call_id: str, tool_name: str, args: dict[str, Any]) -> PermissionDecision:
        if self._state is not GateState.IDLE or self._pending is not None:
            raise PermissionGateBusyError(self._pending.call_id if self._pending else "")

        self._future = asyncio.get_running_loop().create_future()
        self._pending = PendingPermissionRequest(call_id=call_id, tool_name=tool_name, args=dict(args))
        self._set_state(GateState.AWAITING_DECISION)
        logger.info(f"Awaiting permission for {tool_name} (toolCallId: {call_id})")
        try:
            return await self._future
        finally:
            self._future = None
            self._pending = None
            self._set_state(GateState.IDLE)

    def accept(self) -> bool:
        return self._resolve(approved=True)

    def reject(self, followup: str | None = None) -> bool:
        return self._resolve(approved=False, followup=followup)

    def take_followup(self) -> str | None:
        followup, self._followup = self._followup, None
        return followup

    def cancel(self) -> None:
        """Drop an outstanding wait; the waiting task sees CancelledError."""
        if self._future is not None and not self._future.done():
            logger.info(f"Cancelled permission request (toolCallId: {self._pending.call_id if self._pending else '?'})")
            self._future.cancel()
        self._followup = None

    def _resolve(self, *, approved: bool, followup: str | None = None) -> bool:
        if self._state is not GateState.AWAITING_DECISION or self._future is None or self._future.done():
            return False
        assert self._pending is not None
        if not approved and followup:
            self._followup = followup
        decision = PermissionDecision(call_id=self._pending.call_id, approved=approved, followup=followup or None)
        self._set_state(GateState.RESOLVED)
        self._future.set_result(decision)
        logger.info(
            f"Permission {'granted' if approved else 'denied'} for {self._pending.tool_name} "
            f"(toolCallId: {decision.call_id})"
        )
        return True

    def _set_state(self, state: GateState) -> None:
        self._state = state
        if self._on_state_change is not None:
            self._on_state_change(state, self._pending)
