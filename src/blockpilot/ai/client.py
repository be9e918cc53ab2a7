"""Async AI client wrapper built around OpenAI-compatible endpoints."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, MutableMapping, Sequence, cast

import httpx
from openai import AsyncOpenAI, APIConnectionError, RateLimitError
from openai.lib.streaming.chat import ChatCompletionStreamEvent
from openai.types.chat import (
    ChatCompletionMessageParam,
    ChatCompletionToolChoiceOptionParam,
    ChatCompletionToolParam,
)
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..chat.message_model import ChatMessage, ToolCall

__all__ = [
    "AIClient",
    "AIStreamEvent",
    "ClientSettings",
    "CompletionResult",
    "TokenUsage",
    "convert_messages_to_openai_format",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the AI client."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = None
    debug_logging: bool = False

    @classmethod
    def from_settings(cls, settings: Any) -> "ClientSettings":
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key,
            model=settings.model,
            organization=settings.organization,
            request_timeout=settings.request_timeout,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
            default_headers=dict(settings.default_headers) or None,
            metadata={str(k): str(v) for k, v in settings.metadata.items()} or None,
            debug_logging=settings.debug_logging,
        )


@dataclass(slots=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(slots=True)
class AIStreamEvent:
    """Normalized representation of streaming deltas."""

    type: str
    content: str | None = None
    parsed: Any | None = None
    tool_name: str | None = None
    tool_index: int | None = None
    tool_arguments: str | None = None
    arguments_delta: str | None = None
    tool_call_id: str | None = None
    usage: TokenUsage | None = None


@dataclass(slots=True)
class CompletionResult:
    content: str
    tool_calls: List[ToolCall] | None = None
    usage: TokenUsage | None = None


class AIClient:
    """Async client providing streaming and one-shot chat helpers.

    Streams are never retried here: a partially consumed stream cannot be
    replayed, so callers decide whether a failed stream is retried.
    One-shot completions retry transient failures with exponential backoff.
    """

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def stream_chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        model: str | None = None,
        tools: Iterable[ChatCompletionToolParam] | None = None,
        tool_choice: ChatCompletionToolChoiceOptionParam | None = None,
        temperature: float | None = 0.2,
        max_completion_tokens: int | None = None,
        max_tokens: int | None = None,
        metadata: Mapping[str, str] | None = None,
        **extra_params: Any,
    ) -> AsyncIterator[AIStreamEvent]:
        """Stream chat completions for the provided messages."""

        payload = self._build_chat_payload(
            messages=self._coerce_messages(messages),
            model=model,
            tools=tools,
            tool_choice=tool_choice,
            temperature=temperature,
            max_completion_tokens=max_completion_tokens,
            max_tokens=max_tokens,
            metadata=metadata,
            extra_params=extra_params,
        )
        payload.setdefault("stream_options", {"include_usage": True})
        LOGGER.debug(
            "Starting streamed chat completion via %s with %s message(s)",
            payload["model"],
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        async with self._client.chat.completions.stream(**payload) as stream:
            async for event in stream:
                for normalized in self._normalize_stream_event(event):
                    yield normalized

    async def complete_chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        model: str | None = None,
        temperature: float | None = 0.2,
        max_tokens: int | None = None,
        **extra_params: Any,
    ) -> CompletionResult:
        """Run a non-streamed completion, retrying transient transport failures."""

        payload = self._build_chat_payload(
            messages=self._coerce_messages(messages),
            model=model,
            tools=None,
            tool_choice=None,
            temperature=temperature,
            max_completion_tokens=None,
            max_tokens=max_tokens,
            metadata=None,
            extra_params=extra_params,
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)
        async for attempt in self._retrying():
            with attempt:
                response = await self._client.chat.completions.create(**payload)
        choice = response.choices[0] if response.choices else None
        if choice is None:
            raise ValueError("No response from AI")
        calls = None
        raw_calls = getattr(choice.message, "tool_calls", None)
        if raw_calls:
            calls = [
                ToolCall(call_id=item.id, name=item.function.name, arguments=_safe_json(item.function.arguments))
                for item in raw_calls
            ]
        return CompletionResult(
            content=choice.message.content or "",
            tool_calls=calls,
            usage=_coerce_usage(getattr(response, "usage", None)),
        )

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
            max_retries=0,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(
                (
                    APIConnectionError,
                    RateLimitError,
                    httpx.TimeoutException,
                )
            ),
        )

    def _coerce_messages(
        self, messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam]
    ) -> List[ChatCompletionMessageParam]:
        normalized: List[ChatCompletionMessageParam] = []
        for message in messages:
            if isinstance(message, MutableMapping):
                normalized.append(cast(ChatCompletionMessageParam, dict(message)))
            else:
                try:
                    normalized.append(cast(ChatCompletionMessageParam, dict(message)))
                except TypeError as exc:
                    raise TypeError("Messages must be mapping-like objects") from exc
        if not normalized:
            raise ValueError("At least one message is required to start a chat")
        return normalized

    def _build_chat_payload(
        self,
        *,
        messages: Sequence[ChatCompletionMessageParam],
        model: str | None,
        tools: Iterable[ChatCompletionToolParam] | None,
        tool_choice: ChatCompletionToolChoiceOptionParam | None,
        temperature: float | None,
        max_completion_tokens: int | None,
        max_tokens: int | None,
        metadata: Mapping[str, str] | None,
        extra_params: Mapping[str, Any],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model or self._settings.model,
            "messages": list(messages),
        }

        merged_metadata = self._merge_metadata(metadata)
        if merged_metadata:
            payload["metadata"] = merged_metadata
        tool_list = list(tools) if tools else []
        if tool_list:
            payload["tools"] = tool_list
            payload["tool_choice"] = tool_choice or "auto"
        if temperature is not None:
            payload["temperature"] = temperature
        if max_completion_tokens is not None:
            payload["max_completion_tokens"] = max_completion_tokens
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if extra_params:
            payload.update(extra_params)
        return payload

    def _merge_metadata(self, runtime_metadata: Mapping[str, str] | None) -> Dict[str, str] | None:
        combined: Dict[str, str] = {}
        if self._settings.metadata:
            combined.update(self._settings.metadata)
        if runtime_metadata:
            combined.update(runtime_metadata)
        return combined or None

    def _normalize_stream_event(self, event: ChatCompletionStreamEvent[Any]) -> List[AIStreamEvent]:
        event_type = getattr(event, "type", None)
        if event_type is None:
            return []

        if event_type == "chunk":
            return self._normalize_chunk(getattr(event, "chunk", None))
        if event_type == "content.delta":
            delta_text = getattr(event, "delta", None)
            if delta_text:
                return [AIStreamEvent(type=event_type, content=str(delta_text))]
            return []
        if event_type == "content.done":
            return [AIStreamEvent(type=event_type, content=getattr(event, "content", None))]
        if event_type in ("tool_calls.function.arguments.delta", "tool_calls.function.arguments.done"):
            return [
                AIStreamEvent(
                    type=event_type,
                    tool_name=getattr(event, "name", None),
                    tool_index=getattr(event, "index", None),
                    tool_arguments=getattr(event, "arguments", None),
                    arguments_delta=getattr(event, "arguments_delta", None),
                    parsed=getattr(event, "parsed_arguments", None),
                    tool_call_id=getattr(event, "id", None) or getattr(event, "tool_call_id", None),
                )
            ]
        return []

    def _normalize_chunk(self, chunk: Any) -> List[AIStreamEvent]:
        # Raw chunks carry what the typed events do not: reasoning deltas,
        # tool call ids and the trailing usage block.
        if chunk is None:
            return []
        events: List[AIStreamEvent] = []
        for choice in getattr(chunk, "choices", None) or []:
            delta = getattr(choice, "delta", None)
            if delta is None:
                continue
            reasoning = getattr(delta, "reasoning_content", None) or getattr(delta, "reasoning", None)
            if reasoning:
                events.append(AIStreamEvent(type="reasoning.delta", content=str(reasoning)))
            for call in getattr(delta, "tool_calls", None) or []:
                call_id = getattr(call, "id", None)
                if call_id:
                    function = getattr(call, "function", None)
                    events.append(
                        AIStreamEvent(
                            type="tool_calls.function.id",
                            tool_index=getattr(call, "index", None),
                            tool_call_id=call_id,
                            tool_name=getattr(function, "name", None),
                        )
                    )
        usage = _coerce_usage(getattr(chunk, "usage", None))
        if usage is not None:
            events.append(AIStreamEvent(type="usage", usage=usage))
        return events

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("AI prompt payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result


def _safe_json(raw: str | None) -> Dict[str, Any]:
    try:
        parsed = json.loads(raw or "{}")
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _coerce_usage(raw: Any) -> TokenUsage | None:
    if raw is None:
        return None
    return TokenUsage(
        prompt_tokens=int(getattr(raw, "prompt_tokens", 0) or 0),
        completion_tokens=int(getattr(raw, "completion_tokens", 0) or 0),
        total_tokens=int(getattr(raw, "total_tokens", 0) or 0),
    )


def convert_messages_to_openai_format(messages: Iterable[ChatMessage]) -> List[Dict[str, Any]]:
    """Render conversation rows as chat-completions wire messages.

    Notifications are UI-only and skipped. Assistant rows that carried tool
    calls are followed by one ``tool`` message per recorded result.
    """

    rendered: List[Dict[str, Any]] = []
    for message in messages:
        if message.role == "user":
            rendered.append({"role": "user", "content": message.content or ""})
            continue
        if message.role != "assistant":
            continue
        entry: Dict[str, Any] = {"role": "assistant", "content": message.content or ""}
        answered = {result.call_id for result in message.tool_results or []}
        calls = [call for call in message.tool_calls or [] if call.call_id in answered]
        if calls:
            entry["tool_calls"] = [call.to_openai() for call in calls]
        rendered.append(entry)
        if calls:
            for result in message.tool_results or []:
                rendered.append(
                    {
                        "role": "tool",
                        "tool_call_id": result.call_id,
                        "content": result.to_tool_message_content(),
                    }
                )
    return rendered
