"""Block tools: edit, add, delete, move, read and highlight blocks."""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from ...editor.blocks import serialize_blocks, validate_block_markup
from ...errors import MissingParameterError, PatternNotFoundError
from .base import EditorTool, ToolContext, require_string, unescape_quotes
from .registry import ParameterSchema, ToolCategory

LOGGER = logging.getLogger(__name__)

CONSTRAINED_LAYOUT = {"type": "constrained"}

_CLIENT_ID = ParameterSchema("client_id", "string", "Id of the block, as shown in the block tree", required=True)


# -----------------------------------------------------------------------------
# Mutating tools
# -----------------------------------------------------------------------------


class EditBlockTool(EditorTool):
    """Replace a block (or a template part's whole content) with new markup."""

    name: ClassVar[str] = "edit-block"
    description: ClassVar[str] = "Replace a block's content with new block markup"
    parameters: ClassVar[tuple[ParameterSchema, ...]] = (
        _CLIENT_ID,
        ParameterSchema("block_content", "string", "Complete replacement block markup", required=True),
    )
    category: ClassVar[ToolCategory] = ToolCategory.BLOCKS
    mutates = "document"

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> dict[str, Any]:
        node_id = require_string(params, "client_id")
        content = unescape_quotes(require_string(params, "block_content"))
        await context.report("Validating block markup…", 300)
        await context.report("Editing block content…", 400)
        result = await context.executor.edit(node_id, content)
        await context.report("Block updated successfully", 500)
        return {"success": True, **result.to_dict()}


class AddSectionTool(EditorTool):
    """Insert new blocks, either from raw markup or from a library pattern.

    With ``pattern_slug`` and no ``block_content`` the pattern markup is
    fetched and its placeholder text customised for the page. The outermost
    block always receives a constrained layout unless it declares one.
    """

    name: ClassVar[str] = "add-section"
    description: ClassVar[str] = (
        "Insert new blocks after a block, or at the top of the page when after_client_id is null. "
        "Pass pattern_slug to insert a pattern from the library."
    )
    parameters: ClassVar[tuple[ParameterSchema, ...]] = (
        ParameterSchema("after_client_id", ("string", "null"), "Id of the block to insert after"),
        ParameterSchema("block_content", "string", "Block markup of the new section"),
        ParameterSchema("pattern_slug", "string", "Slug of a pattern from search-patterns"),
    )
    category: ClassVar[ToolCategory] = ToolCategory.BLOCKS
    chainable = True
    mutates = "document"

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> dict[str, Any]:
        content = params.get("block_content") or ""
        slug = params.get("pattern_slug") or ""
        if not content and not slug:
            raise MissingParameterError(parameter="block_content")
        if slug and not content:
            content = await self._pattern_content(context, slug)

        await context.report("Validating block markup…", 300)
        blocks = validate_block_markup(unescape_quotes(content))
        outer = next((block for block in blocks if not block.is_freeform), None)
        if outer is not None and "layout" not in outer.attributes:
            outer.attributes["layout"] = dict(CONSTRAINED_LAYOUT)

        await context.report("Adding new section…", 400)
        result = await context.executor.add(params.get("after_client_id") or None, serialize_blocks(blocks))
        await context.report("Section added successfully", 500)
        return {"success": True, "blocksAdded": len(result.inserted_ids), **result.to_dict()}

    async def _pattern_content(self, context: ToolContext, slug: str) -> str:
        if context.patterns is None:
            raise PatternNotFoundError(message=f'Pattern "{slug}" not found', details={"slug": slug})
        await context.report("Fetching pattern from library…", 400)
        pattern = await context.patterns.get_markup(slug)
        content = pattern.content or ""
        if context.customizer is not None:
            await context.report("Customizing content…", 400)
            content = await context.customizer.customize(
                content, page_title=context.page_title, user_message=context.user_message
            )
        return content


class DeleteBlockTool(EditorTool):
    name: ClassVar[str] = "delete-block"
    description: ClassVar[str] = "Remove a block from the page"
    parameters: ClassVar[tuple[ParameterSchema, ...]] = (_CLIENT_ID,)
    category: ClassVar[ToolCategory] = ToolCategory.BLOCKS
    mutates = "document"

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> dict[str, Any]:
        await context.report("Deleting block…", 400)
        result = await context.executor.delete(require_string(params, "client_id"))
        await context.report("Block deleted successfully", 500)
        return {"success": True, **result.to_dict()}


class MoveBlockTool(EditorTool):
    name: ClassVar[str] = "move-block"
    description: ClassVar[str] = "Move a block before or after another block"
    parameters: ClassVar[tuple[ParameterSchema, ...]] = (
        _CLIENT_ID,
        ParameterSchema("target_client_id", "string", "Id of the block to move next to", required=True),
        ParameterSchema("position", "string", "Where to place the block", required=True, enum=("before", "after")),
    )
    category: ClassVar[ToolCategory] = ToolCategory.BLOCKS
    mutates = "document"

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> dict[str, Any]:
        await context.report("Moving block…", 400)
        result = await context.executor.move(
            require_string(params, "client_id"),
            require_string(params, "target_client_id"),
            require_string(params, "position"),
        )
        await context.report("Block moved successfully", 500)
        return {"success": True, **result.to_dict()}


# -----------------------------------------------------------------------------
# Read-only tools
# -----------------------------------------------------------------------------


class GetBlockMarkupTool(EditorTool):
    """Return a block's markup; template parts return their inner blocks."""

    name: ClassVar[str] = "get-block-markup"
    description: ClassVar[str] = "Fetch the full markup of a block before editing it"
    parameters: ClassVar[tuple[ParameterSchema, ...]] = (_CLIENT_ID,)
    chainable = True

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> dict[str, Any]:
        node_id = require_string(params, "client_id")
        await context.report("Reading block markup…", 300)
        document = context.executor.document
        node = document.get(node_id)
        if node.is_container:
            markup = serialize_blocks(node.children)
        else:
            markup = context.executor.get_block_markup(node_id)
        return {"block_content": markup, "block_name": node.name, "client_id": node_id}


class HighlightBlockTool(EditorTool):
    name: ClassVar[str] = "highlight-block"
    description: ClassVar[str] = "Select and flash a block so the user can see where it is"
    parameters: ClassVar[tuple[ParameterSchema, ...]] = (_CLIENT_ID,)
    chainable = True

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> dict[str, Any]:
        await context.report("Highlighting block…", 300)
        node = context.executor.highlight(require_string(params, "client_id"))
        return {"success": True, "block_name": node.name}
