"""Prompt templates and editor context rendering for the block editor assistant."""

from __future__ import annotations

from typing import Iterable, List, Mapping, Sequence

from ..chat.message_model import ToolCall
from ..editor.blocks import CONTAINER_BLOCK, BlockNode, serialize_blocks
from ..editor.document_model import BlockDocument

# Character limits for previews inside the block tree
TREE_PREVIEW_CHARS = 30
CONTEXT_OPEN_TAG = "<editor_context>"
CONTEXT_CLOSE_TAG = "</editor_context>"


def system_prompt() -> str:
    """Return the system prompt sent at the start of every request."""

    return f"""You are a site editor assistant. You help users change their page by editing blocks, adding sections, moving content and adjusting global styles.

## Available Tools
{_tool_list_section()}

## Context Format
Every user message carries {CONTEXT_OPEN_TAG} with:
- Page info (title, id)
- A compact block tree listing each block with its id and a short text preview
- The full markup of every block marked [SELECTED]

## Rules
1. SELECTED BLOCKS: "this", "these", "it" and similar words refer to the [SELECTED] blocks. If nothing is selected, ask the user to select a block first.
2. VALID MARKUP: Every block_content must be block markup with <!-- wp:name {{attrs}} --> comments. Never send plain HTML.
3. INNER BLOCKS: When replacing a block that has inner blocks, include all of them unless the user asked to remove some.
4. TOOL CHAINING: After a read-only tool, immediately call the mutating tool that completes the request (get-block-markup is followed by edit-block). Do not stop after reading.
5. MINIMAL CHANGES: Only change what was asked. Keep every other attribute, class and style.
6. MULTIPLE OPERATIONS: You may call several tools in one turn. Never leave an edit half done.
7. AUTO-GENERATE CONTENT: When asked to rewrite, shorten or improve text, write the new text yourself and apply it.
8. TEMPLATE PARTS: Blocks inside template parts (header, footer) can be edited with their ids from the tree.
9. ADDING SECTIONS: Use the id of the block the new content goes after as after_client_id. Without a position use the last top-level block, or null for the very top.
10. COLORS: backgroundColor and textColor accept theme palette slugs only. Any other color goes into the style object as a hex value.
11. HIGHLIGHTING: Use highlight-block only when the user asks where something is.
12. PATTERN LIBRARY: For new sections (hero, pricing, testimonials, FAQ, features, contact), call search-patterns, pick the best result, then call add-section with pattern_slug. If nothing matches, build the markup yourself.

## Response Structure
Explain your plan in one or two sentences before making changes, then confirm briefly what was done."""


TOOL_DESCRIPTIONS: Mapping[str, str] = {
    "update-global-styles": "update the site styles",
    "edit-block": "edit the block",
    "add-section": "add a new section",
    "delete-block": "remove the block",
    "move-block": "move the block",
    "get-block-markup": "read the block markup",
    "get-global-styles": "check the current styles",
    "highlight-block": "highlight the block",
    "search-patterns": "search the pattern library",
    "get-pattern-markup": "fetch pattern markup",
}

_TOOL_HELP: Sequence[tuple[str, str]] = (
    ("edit-block", "Replace a block's content with new markup"),
    ("add-section", "Insert new blocks after a block (use pattern_slug for library patterns)"),
    ("delete-block", "Remove a block"),
    ("move-block", "Move a block before or after another block"),
    ("get-block-markup", "Fetch the full markup of a block before editing it"),
    ("update-global-styles", "Change site-wide colors, typography and spacing"),
    ("highlight-block", "Select and flash a block so the user can see it"),
    ("get-global-styles", "Read the current global styles"),
    ("search-patterns", "Search the pattern library for matching layouts"),
    ("get-pattern-markup", "Get the full markup of a pattern by slug"),
)


def _tool_list_section() -> str:
    return "\n".join(f"- {name}: {help_text}" for name, help_text in _TOOL_HELP)


def _lookup_description(name: str) -> str | None:
    if name in TOOL_DESCRIPTIONS:
        return TOOL_DESCRIPTIONS[name]
    # Provider tools arrive namespaced, e.g. ``blu-edit-block``.
    for key, description in TOOL_DESCRIPTIONS.items():
        if name.endswith(f"-{key}"):
            return description
    return None


def generate_tool_summary(tool_calls: Sequence[ToolCall]) -> str:
    """Short sentence shown when the model calls tools without any visible text."""

    if not tool_calls:
        return ""
    first = _lookup_description(tool_calls[0].name)
    if len(tool_calls) == 1:
        return f"I'll {first}." if first else "Let me make that change."
    if len({call.name for call in tool_calls}) == 1:
        return f"I'll {first} for each item." if first else "Let me make those changes."
    return "Let me make those changes."


# ---------------------------------------------------------------------------
# Editor context
# ---------------------------------------------------------------------------


def _tree_preview(node: BlockNode) -> str | None:
    metadata = node.attributes.get("metadata")
    if isinstance(metadata, Mapping) and metadata.get("name"):
        return str(metadata["name"])
    alt = node.attributes.get("alt")
    if node.children and not alt:
        return None
    text = node.text_preview(TREE_PREVIEW_CHARS + 1) if not alt else str(alt)
    if not text:
        return None
    if len(text) > TREE_PREVIEW_CHARS:
        return text[:TREE_PREVIEW_CHARS] + "…"
    return text


def _subtree_selected(node: BlockNode, selected: set[str]) -> bool:
    return any(item.node_id in selected for item in node.iter_tree())


def build_block_tree(
    nodes: Iterable[BlockNode],
    selected_ids: Iterable[str] = (),
    *,
    collapse_unselected: bool = False,
) -> str:
    """Render one line per block: index path, name, id, template-part info and preview.

    With ``collapse_unselected`` the children of branches that contain no
    selected block are summarised as a count.
    """

    selected = set(selected_ids)
    lines: List[str] = []

    def walk(items: Sequence[BlockNode], prefix: str, depth: int) -> None:
        for index, node in enumerate(items):
            path = f"{prefix}.{index}" if prefix else str(index)
            line = f"{'  ' * depth}[{path}] {node.name or 'core/freeform'} (id:{node.node_id})"
            if node.name == CONTAINER_BLOCK:
                area = node.attributes.get("area")
                slug = node.attributes.get("slug")
                if area:
                    line += f" area:{area}"
                if slug:
                    line += f" slug:{slug}"
            preview = _tree_preview(node)
            if preview:
                line += f' → "{preview}"'
            if node.node_id in selected:
                line += " [SELECTED]"
            if node.children and collapse_unselected and selected and not _subtree_selected(node, selected):
                line += f" ({len(node.children)} inner blocks)"
                lines.append(line)
                continue
            lines.append(line)
            walk(node.children, path, depth + 1)

    walk(list(nodes), "", 0)
    return "\n".join(lines)


def build_editor_context(document: BlockDocument) -> str:
    """Describe the page for the model: title, block tree and selected markup."""

    metadata = document.metadata
    selected_ids = [document.selected_id] if document.selected_id and document.selected_id in document else []
    context = f'Page: "{metadata.title}" (ID: {metadata.post_id})\n\n'
    context += "Block tree:\n"
    context += build_block_tree(document.roots, selected_ids, collapse_unselected=bool(selected_ids))

    if selected_ids:
        label = "Selected block markup" if len(selected_ids) == 1 else "Selected blocks markup"
        context += f"\n\n{label}:"
        for node_id in selected_ids:
            node = document.get(node_id)
            if node.is_container:
                markup = serialize_blocks(node.children)
            else:
                markup = document.serialize_node(node_id)
            context += f"\n\n--- {node.name} (id:{node_id}) ---\n{markup}"
    return context


def wrap_user_message(text: str, editor_context: str | None) -> str:
    if not editor_context:
        return text
    return f"{CONTEXT_OPEN_TAG}\n{editor_context}\n{CONTEXT_CLOSE_TAG}\n\n{text}"
