"""Per-install persistence for chat conversations."""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Sequence

from ..chat.message_model import ChatMessage

__all__ = ["SessionStore", "StoredSession", "install_key"]

LOGGER = logging.getLogger(__name__)
_DEFAULT_SESSION_DIR = Path.home() / ".blockpilot" / "sessions"
_PAYLOAD_VERSION = 1


def install_key(site_url: str) -> str:
    """Return the stable identifier used to key a site's stored session."""

    normalized = (site_url or "local").strip().rstrip("/").lower()
    return hashlib.sha1(normalized.encode("utf-8")).hexdigest()[:12]


@dataclass(slots=True)
class StoredSession:
    session_id: str
    messages: List[ChatMessage]


class SessionStore:
    """JSON file store holding one conversation per install.

    Undo bookkeeping never survives a reload: pending-action flags and
    streaming markers are dropped on load, and assistant rows that never
    received any text are filtered out.
    """

    def __init__(self, site_url: str = "", *, directory: Path | None = None) -> None:
        self._key = install_key(site_url)
        self._directory = directory or _DEFAULT_SESSION_DIR

    @property
    def path(self) -> Path:
        return self._directory / f"chat-{self._key}.json"

    def load_session(self) -> StoredSession | None:
        if not self.path.exists():
            return None
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("Discarding unreadable chat session %s: %s", self.path, exc)
            return None
        session_id = payload.get("session_id")
        if not session_id:
            return None
        messages: List[ChatMessage] = []
        for raw in payload.get("messages") or []:
            try:
                message = ChatMessage.from_dict(raw)
            except (TypeError, ValueError) as exc:
                LOGGER.debug("Skipping malformed stored message: %s", exc)
                continue
            message.has_actions = False
            message.is_streaming = False
            message.is_executing_tools = False
            if message.role == "assistant" and not (message.content or "").strip():
                continue
            messages.append(message)
        LOGGER.debug("Loaded chat session %s with %d message(s)", session_id, len(messages))
        return StoredSession(session_id=session_id, messages=messages)

    def save_session(self, session_id: str, messages: Sequence[ChatMessage]) -> Path:
        payload: Dict[str, Any] = {
            "version": _PAYLOAD_VERSION,
            "session_id": session_id,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "messages": [message.to_dict() for message in messages],
        }
        self._directory.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp_path.replace(self.path)
        return self.path

    def clear_session(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
