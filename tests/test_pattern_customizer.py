"""Tests for pattern placeholder text customization."""

from __future__ import annotations

import pytest

from blockpilot.ai.tools.pattern_customizer import PatternCustomizer, collect_text_blocks
from blockpilot.editor.blocks import parse_blocks

from tests.helpers import ScriptedModelClient

MARKUP = (
    '<!-- wp:group {"layout":{"type":"constrained"}} --><div class="wp-block-group">'
    '<!-- wp:heading --><h2 class="hero-title">Lorem ipsum</h2><!-- /wp:heading -->'
    "<!-- wp:paragraph --><p>Dolor sit amet</p><!-- /wp:paragraph -->"
    "<!-- wp:spacer /--></div><!-- /wp:group -->"
)


def test_collect_text_blocks_skips_non_text_blocks() -> None:
    names = [node.name for node in collect_text_blocks(parse_blocks(MARKUP))]

    assert names == ["core/heading", "core/paragraph"]


@pytest.mark.asyncio
async def test_customize_replaces_text_and_keeps_markup() -> None:
    client = ScriptedModelClient(
        completion='Here you go:\n[{"id": 0, "html": "<h2 class=\\"hero-title\\">Fresh bread</h2>"},'
        ' {"id": 1, "html": "<p>Baked every morning</p>"}]'
    )
    customizer = PatternCustomizer(client, model="small-model")

    result = await customizer.customize(MARKUP, page_title="Bakery", user_message="Add a hero")

    assert '<h2 class="hero-title">Fresh bread</h2>' in result
    assert "<p>Baked every morning</p>" in result
    assert '<!-- wp:group {"layout":{"type":"constrained"}} -->' in result
    assert "<!-- wp:spacer /-->" in result
    assert client.completions[0]["model"] == "small-model"
    prompt = client.completions[0]["messages"][1]["content"]
    assert prompt.startswith('Page: "Bakery"\nRequest: "Add a hero"')


@pytest.mark.asyncio
async def test_customize_ignores_unknown_ids() -> None:
    client = ScriptedModelClient(completion='[{"id": 7, "html": "<p>x</p>"}, {"id": 1, "html": "<p>New</p>"}]')

    result = await PatternCustomizer(client).customize(MARKUP)

    assert "Lorem ipsum" in result
    assert "<p>New</p>" in result


@pytest.mark.asyncio
@pytest.mark.parametrize("completion", ["", "no json here", "[not json]", '{"id": 0}'])
async def test_customize_returns_original_on_unusable_response(completion: str) -> None:
    result = await PatternCustomizer(ScriptedModelClient(completion=completion)).customize(MARKUP)

    assert result == MARKUP


@pytest.mark.asyncio
async def test_customize_returns_original_when_client_fails() -> None:
    class _FailingClient:
        async def complete_chat(self, messages, **kwargs):
            raise RuntimeError("offline")

    assert await PatternCustomizer(_FailingClient()).customize(MARKUP) == MARKUP


@pytest.mark.asyncio
async def test_customize_skips_model_without_text_blocks() -> None:
    client = ScriptedModelClient(completion="[]")

    result = await PatternCustomizer(client).customize("<!-- wp:spacer /-->")

    assert result == "<!-- wp:spacer /-->"
    assert client.completions == []
