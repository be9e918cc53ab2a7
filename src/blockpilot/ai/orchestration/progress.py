"""Chat status state machine and throttled progress messages for UI consumers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Protocol

__all__ = ["ChatStatus", "ProgressBroadcaster", "ProgressListener", "ProgressState", "ToolActivity"]

LOGGER = logging.getLogger(__name__)


class ChatStatus(str, Enum):
    IDLE = "idle"
    RECEIVED = "received"
    GENERATING = "generating"
    TOOL_CALL = "tool_call"
    SUMMARIZING = "summarizing"
    COMPLETED = "completed"
    FAILED = "failed"
    AWAITING_PERMISSION = "awaiting_permission"


# Any status may fall back to IDLE; everything else must follow this table.
_TRANSITIONS: Mapping[ChatStatus, frozenset[ChatStatus]] = {
    ChatStatus.IDLE: frozenset({ChatStatus.RECEIVED, ChatStatus.GENERATING}),
    ChatStatus.RECEIVED: frozenset({ChatStatus.GENERATING, ChatStatus.FAILED}),
    ChatStatus.GENERATING: frozenset(
        {ChatStatus.TOOL_CALL, ChatStatus.COMPLETED, ChatStatus.FAILED, ChatStatus.AWAITING_PERMISSION}
    ),
    ChatStatus.TOOL_CALL: frozenset(
        {ChatStatus.SUMMARIZING, ChatStatus.COMPLETED, ChatStatus.FAILED, ChatStatus.AWAITING_PERMISSION}
    ),
    ChatStatus.SUMMARIZING: frozenset({ChatStatus.TOOL_CALL, ChatStatus.COMPLETED, ChatStatus.FAILED}),
    ChatStatus.COMPLETED: frozenset(),
    ChatStatus.FAILED: frozenset(),
    ChatStatus.AWAITING_PERMISSION: frozenset({ChatStatus.TOOL_CALL, ChatStatus.FAILED}),
}


@dataclass(slots=True)
class ToolActivity:
    call_id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    is_error: bool = False


@dataclass(slots=True)
class ProgressState:
    status: ChatStatus = ChatStatus.IDLE
    message: str | None = None
    active_tool: ToolActivity | None = None
    pending_tools: List[ToolActivity] = field(default_factory=list)
    executed_tools: List[ToolActivity] = field(default_factory=list)


class ProgressListener(Protocol):
    def on_progress(self, state: ProgressState) -> None:
        ...


Sleep = Callable[[float], Awaitable[None]]


class ProgressBroadcaster:
    """Publishes status and progress text to listeners.

    ``update_progress`` holds each message on screen for a minimum time so
    fast tool calls do not flicker; the delay is multiplied by
    ``delay_scale`` and tests run with a scale of zero.
    """

    def __init__(self, *, delay_scale: float = 1.0, sleep: Sleep | None = None) -> None:
        self._state = ProgressState()
        self._listeners: List[ProgressListener] = []
        self._delay_scale = max(0.0, delay_scale)
        self._sleep: Sleep = sleep or asyncio.sleep
        self.history: List[ChatStatus] = []

    @property
    def state(self) -> ProgressState:
        return self._state

    @property
    def status(self) -> ChatStatus:
        return self._state.status

    def add_listener(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ProgressListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_status(self, status: ChatStatus) -> None:
        current = self._state.status
        if status != ChatStatus.IDLE and status != current and status not in _TRANSITIONS[current]:
            LOGGER.debug("Unexpected status transition %s -> %s", current.value, status.value)
        self._state.status = status
        if status == ChatStatus.IDLE:
            self._state.message = None
            self._state.active_tool = None
            self._state.pending_tools = []
        self.history.append(status)
        self._publish()

    async def update_progress(self, message: str, min_duration_ms: int = 400) -> None:
        self._state.message = message
        self._publish()
        delay = (min_duration_ms / 1000.0) * self._delay_scale
        if delay > 0:
            await self._sleep(delay)

    def begin_tools(self, calls: List[ToolActivity], *, keep_executed: bool = False) -> None:
        """Mark a batch pending; executed tools persist across chained batches when asked."""

        self._state.pending_tools = list(calls)
        if not keep_executed:
            self._state.executed_tools = []
        self._publish()

    def start_tool(self, activity: ToolActivity) -> None:
        self._state.pending_tools = [item for item in self._state.pending_tools if item.call_id != activity.call_id]
        self._state.active_tool = activity
        self._publish()

    def finish_tool(self, activity: ToolActivity) -> None:
        self._state.executed_tools.append(activity)
        if self._state.active_tool is not None and self._state.active_tool.call_id == activity.call_id:
            self._state.active_tool = None
        self._publish()

    def end_tools(self) -> None:
        self._state.active_tool = None
        self._state.pending_tools = []
        self._state.message = None
        self._publish()

    def reset(self) -> None:
        self._state = ProgressState()
        self._publish()

    def _publish(self) -> None:
        for listener in list(self._listeners):
            listener.on_progress(self._state)
