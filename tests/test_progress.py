"""Tests for chat status tracking and progress throttling."""

from __future__ import annotations

import logging

import pytest

from blockpilot.ai.orchestration.progress import ChatStatus, ProgressBroadcaster, ProgressState, ToolActivity

from tests.helpers import RecordingSleep


class _Listener:
    def __init__(self) -> None:
        self.statuses: list[ChatStatus] = []
        self.messages: list[str | None] = []

    def on_progress(self, state: ProgressState) -> None:
        self.statuses.append(state.status)
        self.messages.append(state.message)


def test_status_flow_is_recorded_and_published() -> None:
    progress = ProgressBroadcaster(delay_scale=0)
    listener = _Listener()
    progress.add_listener(listener)

    for status in (ChatStatus.RECEIVED, ChatStatus.GENERATING, ChatStatus.COMPLETED, ChatStatus.IDLE):
        progress.set_status(status)

    assert progress.history == [ChatStatus.RECEIVED, ChatStatus.GENERATING, ChatStatus.COMPLETED, ChatStatus.IDLE]
    assert listener.statuses == progress.history
    assert progress.status == ChatStatus.IDLE


def test_unexpected_transition_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    progress = ProgressBroadcaster(delay_scale=0)

    with caplog.at_level(logging.DEBUG, logger="blockpilot.ai.orchestration.progress"):
        progress.set_status(ChatStatus.SUMMARIZING)

    assert progress.status == ChatStatus.SUMMARIZING
    assert "Unexpected status transition idle -> summarizing" in caplog.text


@pytest.mark.asyncio
async def test_update_progress_holds_message_for_scaled_duration() -> None:
    sleep = RecordingSleep()
    progress = ProgressBroadcaster(delay_scale=0.5, sleep=sleep)

    await progress.update_progress("Editing block content…", 400)

    assert progress.state.message == "Editing block content…"
    assert sleep.delays == [0.2]


@pytest.mark.asyncio
async def test_zero_scale_never_sleeps() -> None:
    sleep = RecordingSleep()
    progress = ProgressBroadcaster(delay_scale=0, sleep=sleep)

    await progress.update_progress("Preparing to execute actions…", 300)

    assert sleep.delays == []


@pytest.mark.asyncio
async def test_idle_clears_message_and_tools() -> None:
    progress = ProgressBroadcaster(delay_scale=0)
    activity = ToolActivity("call_1", "edit-block")
    progress.set_status(ChatStatus.GENERATING)
    progress.set_status(ChatStatus.TOOL_CALL)
    progress.begin_tools([activity])
    progress.start_tool(activity)
    await progress.update_progress("Editing block content…")

    progress.set_status(ChatStatus.IDLE)

    assert progress.state.message is None
    assert progress.state.active_tool is None
    assert progress.state.pending_tools == []


def test_tool_tracking_moves_calls_from_pending_to_executed() -> None:
    progress = ProgressBroadcaster(delay_scale=0)
    first = ToolActivity("call_1", "get-block-markup")
    second = ToolActivity("call_2", "edit-block")

    progress.begin_tools([first, second])
    progress.start_tool(first)
    assert progress.state.active_tool is first
    assert progress.state.pending_tools == [second]

    progress.finish_tool(first)
    progress.begin_tools([second], keep_executed=True)
    progress.start_tool(second)
    progress.finish_tool(second)

    assert progress.state.active_tool is None
    assert progress.state.executed_tools == [first, second]

    progress.begin_tools([ToolActivity("call_3", "delete-block")])
    assert progress.state.executed_tools == []


def test_remove_listener_stops_updates() -> None:
    progress = ProgressBroadcaster(delay_scale=0)
    listener = _Listener()
    progress.add_listener(listener)
    progress.remove_listener(listener)

    progress.set_status(ChatStatus.RECEIVED)

    assert listener.statuses == []
