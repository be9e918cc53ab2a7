"""Chat message, tool call and tool result data models."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Sequence

ChatRole = Literal["user", "assistant", "notification"]
_ROLES: tuple[str, ...] = ("user", "assistant", "notification")


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def new_message_id() -> str:
    return uuid.uuid4().hex


def new_session_id() -> str:
    return f"session-{uuid.uuid4().hex[:12]}"


def _is_json_object(text: str) -> bool:
    try:
        return isinstance(json.loads(text), dict)
    except ValueError:
        return False


@dataclass(slots=True)
class ToolCall:
    """Structured tool invocation emitted by the model."""

    call_id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.call_id, "name": self.name, "arguments": dict(self.arguments)}

    def to_openai(self) -> Dict[str, Any]:
        """Render the call as an assistant ``tool_calls`` entry."""

        return {
            "id": self.call_id,
            "type": "function",
            "function": {"name": self.name, "arguments": json.dumps(self.arguments)},
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ToolCall":
        arguments = payload.get("arguments")
        return cls(
            call_id=str(payload.get("id") or payload.get("call_id") or ""),
            name=str(payload.get("name") or ""),
            arguments=dict(arguments) if isinstance(arguments, Mapping) else {},
        )


@dataclass(slots=True)
class ToolResult:
    """Outcome of one tool call; ``call_id`` always equals the answered call's id."""

    call_id: str
    content: str | List[Dict[str, Any]] | None = None
    error: str | None = None
    is_error: bool = False
    has_changes: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.is_error and self.error is None

    @property
    def text(self) -> str:
        """Return the textual payload, joining list content items with newlines."""

        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        parts = [str(item.get("text", "")) for item in self.content if item.get("type", "text") == "text"]
        return "\n".join(part for part in parts if part)

    def to_tool_message_content(self) -> str:
        if not self.succeeded:
            if _is_json_object(self.text):
                return self.text
            return json.dumps({"error": self.error or self.text or "Tool call failed"})
        return self.text

    @classmethod
    def success(cls, call_id: str, text: str, *, has_changes: bool = False) -> "ToolResult":
        return cls(call_id=call_id, content=[{"type": "text", "text": text}], has_changes=has_changes)

    @classmethod
    def failure(cls, call_id: str, error: str) -> "ToolResult":
        return cls(call_id=call_id, error=error, is_error=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.call_id,
            "content": self.content,
            "error": self.error,
            "is_error": self.is_error,
            "has_changes": self.has_changes,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ToolResult":
        return cls(
            call_id=str(payload.get("id") or ""),
            content=payload.get("content"),
            error=payload.get("error"),
            is_error=bool(payload.get("is_error")),
            has_changes=bool(payload.get("has_changes")),
        )


@dataclass(slots=True)
class ChatMessage:
    """Represents a row inside the conversation.

    Messages are mutated in place while a turn is running (streamed text,
    attached tool calls and results) and left alone once the turn settles.
    """

    role: ChatRole
    content: str | None = None
    message_id: str = field(default_factory=new_message_id)
    created_at: datetime = field(default_factory=_utcnow)
    tool_calls: List[ToolCall] | None = None
    tool_results: List[ToolResult] | None = None
    reasoning: str = ""
    is_streaming: bool = False
    is_executing_tools: bool = False
    has_actions: bool = False
    error: bool = False

    def __post_init__(self) -> None:
        if self.role not in _ROLES:
            raise ValueError(f"Unsupported chat role: {self.role!r}")

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str | None = None, *, streaming: bool = False) -> "ChatMessage":
        return cls(role="assistant", content=content, is_streaming=streaming)

    @classmethod
    def notification(cls, content: str) -> "ChatMessage":
        return cls(role="notification", content=content)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the message for persistence."""

        return {
            "id": self.message_id,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
            "tool_calls": [call.to_dict() for call in self.tool_calls] if self.tool_calls else None,
            "tool_results": [result.to_dict() for result in self.tool_results] if self.tool_results else None,
            "is_streaming": self.is_streaming,
            "is_executing_tools": self.is_executing_tools,
            "has_actions": self.has_actions,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ChatMessage":
        created_raw = payload.get("created_at")
        try:
            created_at = datetime.fromisoformat(created_raw) if created_raw else _utcnow()
        except (TypeError, ValueError):
            created_at = _utcnow()
        calls = payload.get("tool_calls") or None
        results = payload.get("tool_results") or None
        return cls(
            role=payload.get("role", "assistant"),
            content=payload.get("content"),
            message_id=str(payload.get("id") or new_message_id()),
            created_at=created_at,
            tool_calls=[ToolCall.from_dict(item) for item in calls] if calls else None,
            tool_results=[ToolResult.from_dict(item) for item in results] if results else None,
            is_streaming=bool(payload.get("is_streaming")),
            is_executing_tools=bool(payload.get("is_executing_tools")),
            has_actions=bool(payload.get("has_actions")),
            error=bool(payload.get("error")),
        )


@dataclass(slots=True)
class ConversationSession:
    """Ordered conversation owned by a chat session controller."""

    session_id: str = field(default_factory=new_session_id)
    messages: List[ChatMessage] = field(default_factory=list)
    status: str = "idle"

    def append(self, message: ChatMessage) -> ChatMessage:
        self.messages.append(message)
        return message

    def find(self, message_id: str) -> ChatMessage | None:
        for message in self.messages:
            if message.message_id == message_id:
                return message
        return None

    def streaming_messages(self) -> Sequence[ChatMessage]:
        return [message for message in self.messages if message.is_streaming]

    def reset(self, session_id: str | None = None) -> None:
        self.session_id = session_id or new_session_id()
        self.messages.clear()
        self.status = "idle"
