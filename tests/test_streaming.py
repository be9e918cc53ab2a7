"""Tests for the streaming response consumer."""

from __future__ import annotations

import asyncio
from typing import Any, List

import pytest

from blockpilot.ai.client import AIStreamEvent, TokenUsage
from blockpilot.ai.orchestration.chain import AbortSignal
from blockpilot.ai.orchestration.streaming import StreamChunk, StreamConsumer, StreamRequest, aggregate_tool_calls
from blockpilot.chat.message_model import ToolCall
from blockpilot.errors import AbortError, StreamBusyError

from tests.helpers import ScriptedModelClient, reasoning, text, tool_call, usage

REQUEST = StreamRequest(messages=[{"role": "user", "content": "Hi"}], model="gpt-4o-mini", temperature=0.7)


@pytest.mark.asyncio
async def test_stream_accumulates_text_and_usage() -> None:
    client = ScriptedModelClient([[text("Hel"), text("lo"), usage(10, 5)]])
    chunks: List[StreamChunk] = []

    outcome = await StreamConsumer(client).stream(REQUEST, chunks.append, message_id="m1")

    assert outcome is not None
    assert outcome.text == "Hello"
    assert outcome.tool_calls == []
    assert outcome.usage == TokenUsage(10, 5, 15)
    assert [chunk.full_text for chunk in chunks] == ["Hel", "Hello"]
    assert client.calls[0]["model"] == "gpt-4o-mini"
    assert client.calls[0]["tools"] is None


@pytest.mark.asyncio
async def test_reasoning_is_cleared_once_content_arrives() -> None:
    client = ScriptedModelClient([[reasoning("Let me "), reasoning("think"), text("Answer")]])
    chunks: List[StreamChunk] = []

    outcome = await StreamConsumer(client).stream(REQUEST, chunks.append, message_id="m1")

    assert [(chunk.kind, chunk.reasoning) for chunk in chunks] == [
        ("reasoning", "Let me "),
        ("reasoning", "Let me think"),
        ("content", ""),
    ]
    assert outcome is not None and outcome.reasoning == ""


@pytest.mark.asyncio
async def test_stream_collects_tool_calls_and_fires_complete_once() -> None:
    events = [
        text("Editing"),
        *tool_call("edit-block", '{"client_id": "b1"}', call_id="call_a"),
        *tool_call("highlight-block", '{"client_id": "b2"}', call_id="call_b", index=1),
    ]
    completed: List[Any] = []

    async def on_complete(text_value: str, calls: List[ToolCall], usage_value: TokenUsage | None) -> None:
        completed.append((text_value, calls, usage_value))

    outcome = await StreamConsumer(ScriptedModelClient([events])).stream(
        REQUEST, on_complete=on_complete, message_id="m1"
    )

    assert outcome is not None
    assert [(call.call_id, call.name) for call in outcome.tool_calls] == [
        ("call_a", "edit-block"),
        ("call_b", "highlight-block"),
    ]
    assert completed == [("Editing", outcome.tool_calls, None)]


@pytest.mark.asyncio
async def test_stream_errors_go_to_on_error_or_propagate() -> None:
    errors: List[BaseException] = []
    completed: List[Any] = []
    consumer = StreamConsumer(ScriptedModelClient([RuntimeError("down"), RuntimeError("again")]))

    outcome = await consumer.stream(
        REQUEST, on_complete=lambda *args: completed.append(args), on_error=errors.append, message_id="m1"
    )
    with pytest.raises(RuntimeError, match="again"):
        await consumer.stream(REQUEST, message_id="m1")

    assert outcome is None
    assert [str(error) for error in errors] == ["down"]
    assert completed == []
    assert not consumer.is_streaming("m1")


@pytest.mark.asyncio
async def test_second_stream_for_same_message_is_rejected() -> None:
    release = asyncio.Event()
    started = asyncio.Event()

    class _BlockingClient:
        async def stream_chat(self, messages, **kwargs):
            started.set()
            await release.wait()
            yield AIStreamEvent(type="content.delta", content="done")

    consumer = StreamConsumer(_BlockingClient())
    first = asyncio.create_task(consumer.stream(REQUEST, message_id="m1"))
    await started.wait()

    with pytest.raises(StreamBusyError):
        await consumer.stream(REQUEST, message_id="m1")
    assert consumer.is_streaming("m1")

    release.set()
    outcome = await first
    assert outcome is not None and outcome.text == "done"
    assert not consumer.is_streaming("m1")


@pytest.mark.asyncio
async def test_abort_stops_consumption() -> None:
    signal = AbortSignal()
    chunks: List[StreamChunk] = []

    def on_chunk(chunk: StreamChunk) -> None:
        chunks.append(chunk)
        signal.abort()

    client = ScriptedModelClient([[text("one"), text("two")]])

    with pytest.raises(AbortError):
        await StreamConsumer(client).stream(REQUEST, on_chunk, message_id="m1", signal=signal)
    assert [chunk.text for chunk in chunks] == ["one"]


@pytest.mark.asyncio
async def test_chunks_arriving_after_abort_are_dropped() -> None:
    signal = AbortSignal()
    chunks: List[StreamChunk] = []

    class _CancelledMidStream:
        async def stream_chat(self, messages, **kwargs):
            yield text("kept")
            signal.abort()
            yield text(" dropped")

    with pytest.raises(AbortError):
        await StreamConsumer(_CancelledMidStream()).stream(REQUEST, chunks.append, message_id="m1", signal=signal)
    assert [chunk.full_text for chunk in chunks] == ["kept"]


@pytest.mark.asyncio
async def test_already_aborted_signal_skips_model_call() -> None:
    signal = AbortSignal()
    signal.abort()
    client = ScriptedModelClient([[text("never")]])

    with pytest.raises(AbortError):
        await StreamConsumer(client).stream(REQUEST, message_id="m1", signal=signal)
    assert client.calls == []


def test_aggregate_tool_calls_from_deltas() -> None:
    events = [
        AIStreamEvent(type="tool_calls.function.id", tool_index=0, tool_call_id="c1", tool_name="move-block"),
        AIStreamEvent(type="tool_calls.function.arguments.delta", tool_index=0, arguments_delta='{"position":'),
        AIStreamEvent(type="tool_calls.function.arguments.delta", tool_index=0, arguments_delta=' "after"}'),
        AIStreamEvent(type="tool_calls.function.arguments.delta", tool_index=1, arguments_delta="{}"),
        AIStreamEvent(type="tool_calls.function.arguments.done", tool_index=2, tool_name="edit-block", tool_arguments="[1]"),
    ]

    calls = aggregate_tool_calls(events)

    assert calls[0] == ToolCall("c1", "move-block", {"position": "after"})
    assert calls[1].name == "edit-block"
    assert calls[1].arguments == {}
    assert calls[1].call_id.startswith("call_2_")
    assert len(calls) == 2
