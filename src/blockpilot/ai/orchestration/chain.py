"""Per-chain bookkeeping shared by the session and the tool orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence

from ...chat.message_model import ChatMessage
from ...errors import AbortError
from .undo import UndoSnapshot

__all__ = ["AbortSignal", "ChainContext"]


class AbortSignal:
    """Cooperative cancellation flag checked between suspension points."""

    __slots__ = ("_aborted", "reason")

    def __init__(self) -> None:
        self._aborted = False
        self.reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._aborted

    def abort(self, reason: str = "Turn cancelled") -> None:
        self._aborted = True
        self.reason = reason

    def raise_if_aborted(self) -> None:
        if self._aborted:
            raise AbortError(self.reason or "Turn cancelled")


@dataclass(slots=True)
class ChainContext:
    """State carried through every batch of one user turn.

    ``snapshot`` starts empty and gains its document and settings parts the
    first time a batch mutates either of them.
    """

    origin: ChatMessage
    history: List[Dict[str, Any]] = field(default_factory=list)
    signal: AbortSignal = field(default_factory=AbortSignal)
    snapshot: UndoSnapshot | None = None
    executed_tools: List[str] = field(default_factory=list)
    max_depth_reached: int = 0

    @property
    def origin_message_id(self) -> str:
        return self.origin.message_id

    def extend_history(self, messages: Sequence[Mapping[str, Any]]) -> None:
        self.history.extend(dict(message) for message in messages)
