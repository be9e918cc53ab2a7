"""Streaming response consumer.

Turns the event stream of one model call into accumulated text, a list of
finalized tool calls and optional token usage, reporting progress through
caller-supplied callbacks.
"""

from __future__ import annotations

import inspect
import json
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Literal, Mapping, Protocol, Sequence, runtime_checkable

from ...chat.message_model import ToolCall
from ...errors import StreamBusyError
from ..client import TokenUsage
from .chain import AbortSignal

__all__ = [
    "ModelClient",
    "StreamChunk",
    "StreamConsumer",
    "StreamOutcome",
    "StreamRequest",
    "aggregate_tool_calls",
]

LOGGER = logging.getLogger(__name__)

ChunkKind = Literal["reasoning", "content"]


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class StreamEvent(Protocol):
    """Attributes consumed from each streamed event; ``AIStreamEvent`` conforms."""

    type: str
    content: str | None
    tool_name: str | None
    tool_index: int | None
    tool_arguments: str | None
    arguments_delta: str | None
    tool_call_id: str | None


@runtime_checkable
class ModelClient(Protocol):
    """Anything that can stream chat completions; ``AIClient`` conforms."""

    def stream_chat(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        model: str | None = None,
        tools: Sequence[Mapping[str, Any]] | None = None,
        temperature: float | None = None,
        max_completion_tokens: int | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[StreamEvent]:
        ...


# -----------------------------------------------------------------------------
# Data
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class StreamRequest:
    messages: Sequence[Mapping[str, Any]]
    model: str | None = None
    tools: Sequence[Mapping[str, Any]] | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    max_completion_tokens: int | None = None


@dataclass(slots=True)
class StreamChunk:
    """One increment delivered to ``on_chunk``.

    ``text`` is the increment; ``full_text`` and ``reasoning`` are the
    accumulated content and reasoning after applying it.
    """

    kind: ChunkKind
    text: str
    full_text: str
    reasoning: str


@dataclass(slots=True)
class StreamOutcome:
    text: str
    tool_calls: List[ToolCall] = field(default_factory=list)
    usage: TokenUsage | None = None
    reasoning: str = ""


ChunkCallback = Callable[[StreamChunk], Awaitable[None] | None]
CompleteCallback = Callable[[str, List[ToolCall], TokenUsage | None], Awaitable[None] | None]
ErrorCallback = Callable[[BaseException], Awaitable[None] | None]


async def _invoke(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


# -----------------------------------------------------------------------------
# Consumer
# -----------------------------------------------------------------------------


class StreamConsumer:
    """Consumes model streams, one at a time per message id."""

    def __init__(self, client: ModelClient) -> None:
        self._client = client
        self._active: set[str] = set()

    def is_streaming(self, message_id: str) -> bool:
        return message_id in self._active

    async def stream(
        self,
        request: StreamRequest,
        on_chunk: ChunkCallback | None = None,
        on_complete: CompleteCallback | None = None,
        on_error: ErrorCallback | None = None,
        *,
        message_id: str,
        signal: AbortSignal | None = None,
    ) -> StreamOutcome | None:
        """Run one streamed model call.

        ``on_complete`` and ``on_error`` are mutually exclusive and each fires
        at most once. Without ``on_error`` failures propagate to the caller,
        and the return value is ``None`` only when ``on_error`` handled one.
        """

        if message_id in self._active:
            raise StreamBusyError(f"Message {message_id} is already streaming")
        self._active.add(message_id)
        content_parts: List[str] = []
        reasoning_parts: List[str] = []
        events: List[StreamEvent] = []
        usage: TokenUsage | None = None
        try:
            if signal is not None:
                signal.raise_if_aborted()
            async for event in self._client.stream_chat(
                list(request.messages),
                model=request.model,
                tools=list(request.tools) if request.tools else None,
                temperature=request.temperature,
                max_completion_tokens=request.max_completion_tokens,
                max_tokens=request.max_tokens,
            ):
                if signal is not None:
                    signal.raise_if_aborted()
                event_type = getattr(event, "type", None)
                if event_type == "content.delta" and event.content:
                    content_parts.append(event.content)
                    reasoning_parts.clear()
                    await _invoke(on_chunk, StreamChunk("content", event.content, "".join(content_parts), ""))
                elif event_type == "reasoning.delta" and event.content:
                    reasoning_parts.append(event.content)
                    await _invoke(
                        on_chunk,
                        StreamChunk("reasoning", event.content, "".join(content_parts), "".join(reasoning_parts)),
                    )
                elif event_type == "usage":
                    usage = getattr(event, "usage", None) or usage
                elif event_type and event_type.startswith("tool_calls."):
                    events.append(event)
                if signal is not None:
                    signal.raise_if_aborted()
            tool_calls = aggregate_tool_calls(events)
        except Exception as exc:
            if on_error is None:
                raise
            LOGGER.debug("Stream for message %s failed: %s", message_id, exc)
            await _invoke(on_error, exc)
            return None
        finally:
            self._active.discard(message_id)

        text = "".join(content_parts)
        await _invoke(on_complete, text, tool_calls, usage)
        return StreamOutcome(text=text, tool_calls=tool_calls, usage=usage, reasoning="".join(reasoning_parts))


def aggregate_tool_calls(events: Sequence[StreamEvent]) -> List[ToolCall]:
    """Assemble tool calls from their streamed fragments, ordered by index.

    Complete arguments from a ``.done`` event win over concatenated deltas.
    Arguments that are not valid JSON objects become an empty mapping.
    """

    by_index: Dict[int, Dict[str, Any]] = {}
    for event in events:
        index = event.tool_index if event.tool_index is not None else 0
        entry = by_index.setdefault(index, {"id": "", "name": "", "parts": [], "arguments": None})
        if event.tool_call_id:
            entry["id"] = event.tool_call_id
        if event.tool_name:
            entry["name"] = event.tool_name
        if event.type == "tool_calls.function.arguments.delta" and event.arguments_delta:
            entry["parts"].append(event.arguments_delta)
        elif event.type == "tool_calls.function.arguments.done" and event.tool_arguments:
            entry["arguments"] = event.tool_arguments

    calls: List[ToolCall] = []
    for index in sorted(by_index):
        entry = by_index[index]
        if not entry["name"]:
            LOGGER.debug("Dropping tool call fragment %s without a name", index)
            continue
        raw = entry["arguments"] if entry["arguments"] is not None else "".join(entry["parts"])
        calls.append(
            ToolCall(
                call_id=entry["id"] or f"call_{index}_{uuid.uuid4().hex[:8]}",
                name=entry["name"],
                arguments=_parse_arguments(raw),
            )
        )
    return calls


def _parse_arguments(raw: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(raw or "{}")
    except (TypeError, ValueError):
        LOGGER.debug("Tool call arguments were not valid JSON: %r", raw[:120] if raw else raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}
