"""Block document model, markup grammar and mutation executor."""

from .blocks import BlockNode, parse_blocks, serialize_blocks, validate_block_markup
from .document_model import BlockDocument, ContainerStore, InMemoryContainerStore
from .global_styles import GlobalStylesService, InMemoryGlobalStylesBackend
from .mutations import DocumentMutationExecutor, MutationResult

__all__ = [
    "BlockDocument",
    "BlockNode",
    "ContainerStore",
    "DocumentMutationExecutor",
    "GlobalStylesService",
    "InMemoryContainerStore",
    "InMemoryGlobalStylesBackend",
    "MutationResult",
    "parse_blocks",
    "serialize_blocks",
    "validate_block_markup",
]
