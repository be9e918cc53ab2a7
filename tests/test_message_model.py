"""Tests for chat message, tool call and tool result models."""

from __future__ import annotations

import json

import pytest

from blockpilot.chat.message_model import ChatMessage, ConversationSession, ToolCall, ToolResult


def test_tool_call_openai_rendering() -> None:
    call = ToolCall("c1", "edit-block", {"client_id": "b1"})

    assert call.to_openai() == {
        "id": "c1",
        "type": "function",
        "function": {"name": "edit-block", "arguments": '{"client_id": "b1"}'},
    }
    assert ToolCall.from_dict(call.to_dict()) == call
    assert ToolCall.from_dict({"call_id": "c2", "name": "x", "arguments": "bad"}).arguments == {}


def test_tool_result_text_and_wire_content() -> None:
    ok = ToolResult.success("c1", '{"success": true}', has_changes=True)
    failed = ToolResult.failure("c2", "Block not found")
    listed = ToolResult("c3", content=[{"type": "text", "text": "a"}, {"type": "image"}, {"text": "b"}])

    assert ok.succeeded and ok.text == '{"success": true}'
    assert ok.to_tool_message_content() == '{"success": true}'
    assert not failed.succeeded
    assert json.loads(failed.to_tool_message_content()) == {"error": "Block not found"}
    assert listed.text == "a\nb"
    assert ToolResult("c4").text == ""


def test_structured_error_payload_reaches_the_model() -> None:
    payload = {
        "success": False,
        "error": "block_not_found",
        "message": "Block not found: b9",
        "suggestion": "Use a block id from the current editor context",
    }
    result = ToolResult("c1", content=[{"type": "text", "text": json.dumps(payload)}], error=payload["message"], is_error=True)

    assert json.loads(result.to_tool_message_content()) == payload


def test_chat_message_rejects_unknown_role() -> None:
    with pytest.raises(ValueError):
        ChatMessage(role="system")  # type: ignore[arg-type]


def test_chat_message_dict_roundtrip() -> None:
    message = ChatMessage.assistant("Working", streaming=True)
    message.tool_calls = [ToolCall("c1", "delete-block", {"client_id": "b9"})]
    message.tool_results = [ToolResult.success("c1", "{}", has_changes=True)]
    message.has_actions = True

    restored = ChatMessage.from_dict(message.to_dict())

    assert restored == message


def test_chat_message_from_dict_tolerates_bad_timestamp() -> None:
    restored = ChatMessage.from_dict({"role": "user", "content": "Hi", "created_at": "yesterday"})

    assert restored.content == "Hi"
    assert restored.created_at.tzinfo is not None
    assert restored.message_id


def test_conversation_session_helpers() -> None:
    session = ConversationSession()
    first = session.append(ChatMessage.user("Hi"))
    streaming = session.append(ChatMessage.assistant(streaming=True))
    old_id = session.session_id

    assert session.find(first.message_id) is first
    assert session.find("missing") is None
    assert session.streaming_messages() == [streaming]

    session.reset()

    assert session.messages == []
    assert session.session_id != old_id
    assert session.session_id.startswith("session-")
