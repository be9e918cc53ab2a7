"""Tests for the editor tools run against a real document."""

from __future__ import annotations

import pytest

from blockpilot.ai.orchestration.progress import ProgressBroadcaster, ProgressState
from blockpilot.ai.tools.base import ToolContext
from blockpilot.ai.tools.block_tools import (
    AddSectionTool,
    DeleteBlockTool,
    EditBlockTool,
    GetBlockMarkupTool,
    HighlightBlockTool,
    MoveBlockTool,
)
from blockpilot.ai.tools.pattern_customizer import PatternCustomizer
from blockpilot.ai.tools.pattern_library import InMemoryPatternProvider, Pattern, PatternLibrary
from blockpilot.ai.tools.pattern_tools import GetPatternMarkupTool, SearchPatternsTool
from blockpilot.ai.tools.style_tools import GetGlobalStylesTool, UpdateGlobalStylesTool
from blockpilot.editor.document_model import BlockDocument
from blockpilot.editor.global_styles import GlobalStylesService
from blockpilot.editor.mutations import DocumentMutationExecutor
from blockpilot.errors import MissingParameterError, PatternNotFoundError, ValidationError

from tests.helpers import ScriptedModelClient

CHANGED = "<!-- wp:paragraph --><p>Changed</p><!-- /wp:paragraph -->"
HERO = Pattern(
    slug="hero",
    title="Hero",
    description="Big hero banner",
    tags=["hero"],
    categories=["banner"],
    content="<!-- wp:group --><div class=\"wp-block-group\"><!-- wp:heading --><h2>Lorem ipsum</h2>"
    "<!-- /wp:heading --></div><!-- /wp:group -->",
)


class _MessageRecorder:
    def __init__(self) -> None:
        self.messages: list[str | None] = []

    def on_progress(self, state: ProgressState) -> None:
        self.messages.append(state.message)


@pytest.fixture
def context(executor: DocumentMutationExecutor, progress: ProgressBroadcaster) -> ToolContext:
    return ToolContext(executor=executor, progress=progress)


async def _ready_library() -> PatternLibrary:
    library = PatternLibrary(InMemoryPatternProvider([HERO]))
    await library.initialize()
    return library


# ---------------------------------------------------------------------------
# Block tools
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_edit_block_reports_progress_and_returns_payload(
    context: ToolContext, document: BlockDocument, progress: ProgressBroadcaster
) -> None:
    recorder = _MessageRecorder()
    progress.add_listener(recorder)
    paragraph_id = document.roots[2].node_id

    payload = await EditBlockTool().run(context, {"client_id": paragraph_id, "block_content": CHANGED})

    assert payload is not None and payload["success"] is True
    assert payload["block_id"] == paragraph_id
    assert recorder.messages == ["Validating block markup…", "Editing block content…", "Block updated successfully"]


@pytest.mark.asyncio
async def test_edit_block_requires_parameters(context: ToolContext) -> None:
    with pytest.raises(MissingParameterError) as excinfo:
        await EditBlockTool().run(context, {"block_content": CHANGED})

    assert excinfo.value.to_dict()["error"] == "missing_parameter"
    assert excinfo.value.message == "Missing required parameter: client_id"


@pytest.mark.asyncio
async def test_edit_block_unescapes_json_quotes(context: ToolContext, document: BlockDocument) -> None:
    paragraph_id = document.roots[2].node_id

    await EditBlockTool().run(
        context,
        {"client_id": paragraph_id, "block_content": r'<!-- wp:paragraph {\"align\":\"center\"} --><p>x</p><!-- /wp:paragraph -->'},
    )

    assert document.get(paragraph_id).attributes == {"align": "center"}


@pytest.mark.asyncio
async def test_add_section_sets_constrained_layout(context: ToolContext, document: BlockDocument) -> None:
    heading_id = document.roots[1].node_id

    payload = await AddSectionTool().run(
        context,
        {
            "after_client_id": heading_id,
            "block_content": "<!-- wp:group --><div class=\"wp-block-group\"></div><!-- /wp:group -->",
        },
    )

    assert payload is not None and payload["blocksAdded"] == 1
    assert document.roots[2].attributes == {"layout": {"type": "constrained"}}


@pytest.mark.asyncio
async def test_add_section_keeps_declared_layout(context: ToolContext, document: BlockDocument) -> None:
    await AddSectionTool().run(
        context,
        {
            "after_client_id": None,
            "block_content": '<!-- wp:group {"layout":{"type":"flex"}} --><div class="wp-block-group"></div><!-- /wp:group -->',
        },
    )

    assert document.roots[0].attributes == {"layout": {"type": "flex"}}


@pytest.mark.asyncio
async def test_add_section_from_pattern_customizes_text(context: ToolContext, document: BlockDocument) -> None:
    client = ScriptedModelClient(completion='[{"id": 0, "html": "<h2>Fresh bread daily</h2>"}]')
    context.patterns = await _ready_library()
    context.customizer = PatternCustomizer(client, model="small")
    context.user_message = "Add a hero for my bakery"
    heading_id = document.roots[1].node_id

    await AddSectionTool().run(context, {"after_client_id": heading_id, "pattern_slug": "hero"})

    inserted = document.roots[2]
    assert inserted.name == "core/group"
    assert inserted.children[0].inner_html == "<h2>Fresh bread daily</h2>"
    assert "Add a hero for my bakery" in client.completions[0]["messages"][1]["content"]


@pytest.mark.asyncio
async def test_add_section_needs_content_or_pattern(context: ToolContext) -> None:
    with pytest.raises(MissingParameterError):
        await AddSectionTool().run(context, {"after_client_id": None})
    with pytest.raises(PatternNotFoundError):
        await AddSectionTool().run(context, {"pattern_slug": "hero"})


@pytest.mark.asyncio
async def test_delete_and_move_blocks(context: ToolContext, document: BlockDocument) -> None:
    heading, paragraph, group = document.roots[1], document.roots[2], document.roots[3]

    await MoveBlockTool().run(
        context, {"client_id": group.node_id, "target_client_id": heading.node_id, "position": "before"}
    )
    await DeleteBlockTool().run(context, {"client_id": paragraph.node_id})

    assert [node.node_id for node in document.roots][1:] == [group.node_id, heading.node_id]


@pytest.mark.asyncio
async def test_move_block_validates_position_enum(context: ToolContext, document: BlockDocument) -> None:
    with pytest.raises(ValidationError) as excinfo:
        await MoveBlockTool().run(
            context,
            {"client_id": document.roots[1].node_id, "target_client_id": document.roots[2].node_id, "position": "inside"},
        )

    assert excinfo.value.details == {"parameter": "position", "value": "inside"}


@pytest.mark.asyncio
async def test_get_block_markup_for_template_part_returns_inner_blocks(
    context: ToolContext, document: BlockDocument, executor: DocumentMutationExecutor
) -> None:
    await executor.hydrate_containers()
    header = document.roots[0]

    payload = await GetBlockMarkupTool().run(context, {"client_id": header.node_id})

    assert payload is not None
    assert payload["block_name"] == "core/template-part"
    assert payload["block_content"].startswith("<!-- wp:site-title /-->")
    assert "template-part" not in payload["block_content"]


@pytest.mark.asyncio
async def test_highlight_block(context: ToolContext, document: BlockDocument) -> None:
    heading_id = document.roots[1].node_id

    payload = await HighlightBlockTool().run(context, {"client_id": heading_id})

    assert payload == {"success": True, "block_name": "core/heading"}
    assert document.highlighted == [heading_id]


# ---------------------------------------------------------------------------
# Style tools
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_style_tools_defer_without_service(context: ToolContext) -> None:
    assert await GetGlobalStylesTool().run(context, {}) is None
    assert await UpdateGlobalStylesTool().run(context, {"settings": {"typography": {}}}) is None


@pytest.mark.asyncio
async def test_get_global_styles(context: ToolContext, styles: GlobalStylesService) -> None:
    context.styles = styles

    payload = await GetGlobalStylesTool().run(context, {})

    assert payload is not None
    assert payload["message"] == "Retrieved global styles from editor"
    assert payload["styles"]["palette"][0]["slug"] == "primary"


@pytest.mark.asyncio
async def test_update_global_styles(context: ToolContext, styles: GlobalStylesService) -> None:
    context.styles = styles

    payload = await UpdateGlobalStylesTool().run(
        context, {"settings": {"color": {"palette": {"custom": [{"slug": "accent", "color": "#0f0"}]}}}}
    )

    assert payload is not None
    assert payload["success"] is True
    assert payload["updatedColors"] == [{"slug": "accent", "color": "#0f0"}]


@pytest.mark.asyncio
async def test_update_global_styles_rejects_non_object_settings(context: ToolContext, styles: GlobalStylesService) -> None:
    context.styles = styles

    with pytest.raises(ValidationError):
        await UpdateGlobalStylesTool().run(context, {"settings": "blue"})


# ---------------------------------------------------------------------------
# Pattern tools
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_search_patterns_defers_until_library_ready(context: ToolContext) -> None:
    context.patterns = PatternLibrary(InMemoryPatternProvider([HERO]))

    assert await SearchPatternsTool().run(context, {"query": "hero"}) is None

    await context.patterns.initialize()
    payload = await SearchPatternsTool().run(context, {"query": "hero", "limit": 5})
    assert payload is not None
    assert payload["count"] == 1
    assert payload["patterns"][0]["slug"] == "hero"
    assert "content" not in payload["patterns"][0]


@pytest.mark.asyncio
async def test_get_pattern_markup(context: ToolContext) -> None:
    context.patterns = await _ready_library()

    payload = await GetPatternMarkupTool().run(context, {"slug": "hero"})
    missing = await GetPatternMarkupTool().run(context, {"slug": "nope"})

    assert payload is not None and payload["content"] == HERO.content
    assert missing is None
