"""Tests for pattern scoring, search and the REST provider."""

from __future__ import annotations

import json
import random

import httpx
import pytest

from blockpilot.ai.tools.pattern_library import (
    InMemoryPatternProvider,
    Pattern,
    PatternLibrary,
    RestPatternProvider,
    score_pattern,
)
from blockpilot.errors import PatternNotFoundError

BANNER = Pattern(
    slug="dark-hero",
    title="Dark hero banner",
    description="A bold hero",
    tags=["hero", "banner"],
    categories=["hero"],
)
PRICING = Pattern(slug="pricing", title="Pricing table", description="Three plans", tags=["pricing"], categories=["commerce"])
FOOTER = Pattern(slug="footer", title="Simple footer", description="Links", tags=["footer"], categories=["footer"])


def test_score_pattern_weights_each_field() -> None:
    assert score_pattern(BANNER, ["hero"]) == 23
    assert score_pattern(BANNER, ["hero", "banner"]) == 42
    assert score_pattern(BANNER, ["pricing"]) == 0


def test_score_pattern_partial_tag_match() -> None:
    pattern = Pattern(slug="x", tags=["testimonials"])

    assert score_pattern(pattern, ["testimonial"]) == 3


@pytest.mark.asyncio
async def test_search_orders_by_score_and_filters_zero() -> None:
    library = PatternLibrary(InMemoryPatternProvider([PRICING, BANNER, FOOTER]), rng=random.Random(1))
    assert library.search("hero").results == []

    await library.initialize()
    result = library.search("Hero banner")

    assert [pattern.slug for pattern in result.results] == ["dark-hero"]
    assert result.total_matches == 1


@pytest.mark.asyncio
async def test_search_respects_category_and_limit() -> None:
    many = [Pattern(slug=f"hero-{n}", title="Hero", categories=["hero"]) for n in range(5)]
    library = PatternLibrary(InMemoryPatternProvider([*many, BANNER]))
    await library.initialize()

    limited = library.search("hero", limit=2)
    filtered = library.search("hero", category="commerce")

    assert len(limited.results) == 2
    assert limited.total_matches == 6
    assert limited.to_dict()["count"] == 2
    assert filtered.to_dict() == {
        "patterns": [],
        "count": 0,
        "totalMatches": 0,
        "message": "No matching patterns found",
    }


@pytest.mark.asyncio
async def test_index_omits_content_until_markup_requested() -> None:
    stored = Pattern(slug="hero", title="Hero", content="<!-- wp:group /-->")
    library = PatternLibrary(InMemoryPatternProvider([stored]))
    await library.initialize()

    pattern = await library.get_markup("hero")

    assert library.search("hero").results[0].content is None
    assert pattern.content == "<!-- wp:group /-->"
    with pytest.raises(PatternNotFoundError):
        await library.get_markup("missing")


# ---------------------------------------------------------------------------
# REST provider
# ---------------------------------------------------------------------------


def _handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/pattern-index":
        return httpx.Response(200, json=[{"slug": "hero", "title": "Hero", "tags": ["hero"], "categories": []}])
    if request.url.path == "/api/pattern-by-slug":
        slug = request.url.params.get("slug")
        if slug == "hero":
            return httpx.Response(200, content=json.dumps({"slug": "hero", "content": "<!-- wp:group /-->"}))
        return httpx.Response(404)
    return httpx.Response(500)


@pytest.mark.asyncio
async def test_rest_provider_reads_index_and_markup() -> None:
    provider = RestPatternProvider("https://patterns.test/api/", transport=httpx.MockTransport(_handler))
    library = PatternLibrary(provider)

    count = await library.initialize()
    pattern = await library.get_markup("hero")

    assert count == 1
    assert library.search("hero").results[0].title == "Hero"
    assert pattern.content == "<!-- wp:group /-->"
    assert await provider.get_markup("other") is None
    await provider.aclose()


@pytest.mark.asyncio
async def test_rest_provider_raises_on_server_error() -> None:
    provider = RestPatternProvider(
        "https://patterns.test/broken", transport=httpx.MockTransport(lambda request: httpx.Response(500))
    )

    with pytest.raises(httpx.HTTPStatusError):
        await provider.fetch_index()
    await provider.aclose()
