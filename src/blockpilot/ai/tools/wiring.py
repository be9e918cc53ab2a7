"""Registers the built-in editor tools."""

from __future__ import annotations

import logging
from typing import Sequence

from .base import EditorTool
from .block_tools import (
    AddSectionTool,
    DeleteBlockTool,
    EditBlockTool,
    GetBlockMarkupTool,
    HighlightBlockTool,
    MoveBlockTool,
)
from .pattern_tools import GetPatternMarkupTool, SearchPatternsTool
from .registry import ToolRegistry
from .style_tools import GetGlobalStylesTool, UpdateGlobalStylesTool

LOGGER = logging.getLogger(__name__)

BUILTIN_TOOLS: tuple[type[EditorTool], ...] = (
    EditBlockTool,
    AddSectionTool,
    DeleteBlockTool,
    MoveBlockTool,
    UpdateGlobalStylesTool,
    GetBlockMarkupTool,
    HighlightBlockTool,
    GetGlobalStylesTool,
    SearchPatternsTool,
    GetPatternMarkupTool,
)


def build_editor_registry(*, disabled: Sequence[str] = ()) -> ToolRegistry:
    """Return a registry holding every built-in tool, minus ``disabled`` names."""

    registry = ToolRegistry()
    for tool_cls in BUILTIN_TOOLS:
        registry.register(tool_cls(), enabled=tool_cls.name not in disabled)
    LOGGER.debug("Registered %d editor tools", len(registry.list_tools()))
    return registry
