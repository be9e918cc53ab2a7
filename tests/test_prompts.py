"""Tests for prompt helpers and the editor context block."""

from __future__ import annotations

from blockpilot.ai import prompts
from blockpilot.chat.message_model import ToolCall
from blockpilot.editor.blocks import parse_blocks
from blockpilot.editor.document_model import BlockDocument

from tests.helpers import make_document


def test_system_prompt_lists_every_tool() -> None:
    content = prompts.system_prompt()

    assert "Available Tools" in content
    for name in prompts.TOOL_DESCRIPTIONS:
        assert f"- {name}:" in content
    assert "<!-- wp:name {attrs} -->" in content


def test_generate_tool_summary_variants() -> None:
    edit = ToolCall("c1", "edit-block")

    assert prompts.generate_tool_summary([]) == ""
    assert prompts.generate_tool_summary([edit]) == "I'll edit the block."
    assert prompts.generate_tool_summary([edit, ToolCall("c2", "edit-block")]) == "I'll edit the block for each item."
    assert prompts.generate_tool_summary([edit, ToolCall("c2", "move-block")]) == "Let me make those changes."
    assert prompts.generate_tool_summary([ToolCall("c1", "mystery")]) == "Let me make that change."


def test_generate_tool_summary_resolves_namespaced_names() -> None:
    assert prompts.generate_tool_summary([ToolCall("c1", "blu-search-patterns")]) == "I'll search the pattern library."


def test_block_tree_lines(document: BlockDocument) -> None:
    header, heading, paragraph, group = document.roots

    lines = prompts.build_block_tree(document.roots).splitlines()

    assert lines[0] == f"[0] core/template-part (id:{header.node_id}) area:header slug:header"
    assert lines[1] == f'[1] core/heading (id:{heading.node_id}) → "Welcome"'
    assert lines[2] == f'[2] core/paragraph (id:{paragraph.node_id}) → "Hello world"'
    assert lines[3] == f"[3] core/group (id:{group.node_id})"
    assert lines[4] == f'  [3.0] core/paragraph (id:{group.children[0].node_id}) → "Inside"'


def test_block_tree_truncates_previews_and_prefers_metadata_name() -> None:
    nodes = parse_blocks(
        f"<!-- wp:paragraph --><p>{'a' * 40}</p><!-- /wp:paragraph -->"
        '<!-- wp:group {"metadata":{"name":"Hero"}} --><div>'
        "<!-- wp:paragraph --><p>x</p><!-- /wp:paragraph --></div><!-- /wp:group -->"
    )

    lines = prompts.build_block_tree(nodes).splitlines()

    assert lines[0].endswith(f'→ "{"a" * 30}…"')
    assert lines[1].endswith('→ "Hero"')


def test_editor_context_with_selection_collapses_other_branches(document: BlockDocument) -> None:
    heading, group = document.roots[1], document.roots[3]
    document.select(heading.node_id)

    context = prompts.build_editor_context(document)

    assert context.startswith('Page: "Home" (ID: 42)\n\nBlock tree:\n')
    assert f'(id:{heading.node_id}) → "Welcome" [SELECTED]' in context
    assert f"(id:{group.node_id}) (1 inner blocks)" in context
    assert "Inside" not in context
    assert f"Selected block markup:\n\n--- core/heading (id:{heading.node_id}) ---\n" in context
    assert "<h2>Welcome</h2>" in context


def test_editor_context_without_selection_has_no_markup_section() -> None:
    context = prompts.build_editor_context(make_document(title="About"))

    assert context.startswith('Page: "About"')
    assert "Selected block" not in context
    assert "Inside" in context


def test_wrap_user_message() -> None:
    assert prompts.wrap_user_message("Hi", None) == "Hi"
    assert prompts.wrap_user_message("Hi", "ctx") == "<editor_context>\nctx\n</editor_context>\n\nHi"
