"""Chat conversation data model."""

from .message_model import ChatMessage, ConversationSession, ToolCall, ToolResult

__all__ = ["ChatMessage", "ConversationSession", "ToolCall", "ToolResult"]
