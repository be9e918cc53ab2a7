"""AI client, tools and turn orchestration."""

from .client import AIClient, AIStreamEvent, ClientSettings, TokenUsage

__all__ = ["AIClient", "AIStreamEvent", "ClientSettings", "TokenUsage"]
