"""Turn orchestration: streaming, tool chains, progress and undo."""

from .chain import AbortSignal, ChainContext
from .orchestrator import ChainOutcome, OrchestratorConfig, ToolOrchestrator, is_rate_limited
from .progress import ChatStatus, ProgressBroadcaster, ProgressState
from .session import ChatSession
from .streaming import StreamConsumer, StreamOutcome, StreamRequest
from .undo import UndoManager, UndoSnapshot

__all__ = [
    "AbortSignal",
    "ChainContext",
    "ChainOutcome",
    "ChatSession",
    "ChatStatus",
    "OrchestratorConfig",
    "ProgressBroadcaster",
    "ProgressState",
    "StreamConsumer",
    "StreamOutcome",
    "StreamRequest",
    "ToolOrchestrator",
    "UndoManager",
    "UndoSnapshot",
    "is_rate_limited",
]
