"""Pattern library: a pre-fetched pattern index with in-memory keyword search.

The index carries titles, descriptions, tags and categories but no markup;
markup is fetched per slug when a pattern is actually inserted.
"""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Protocol, Sequence

import httpx

from ...errors import PatternNotFoundError

__all__ = [
    "InMemoryPatternProvider",
    "Pattern",
    "PatternLibrary",
    "PatternProvider",
    "PatternSearchResult",
    "RestPatternProvider",
    "score_pattern",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 15

# Scoring weights per query word; phrase bonuses apply to multi-word queries
CATEGORY_EXACT_SCORE = 10
TAG_EXACT_SCORE = 6
TAG_PARTIAL_SCORE = 3
TITLE_WORD_SCORE = 5
DESCRIPTION_SCORE = 2
TITLE_PHRASE_SCORE = 8
DESCRIPTION_PHRASE_SCORE = 4


@dataclass(slots=True)
class Pattern:
    slug: str
    title: str = ""
    description: str = ""
    tags: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    content: str | None = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Pattern":
        return cls(
            slug=str(payload.get("slug") or ""),
            title=str(payload.get("title") or ""),
            description=str(payload.get("description") or ""),
            tags=[str(tag) for tag in payload.get("tags") or []],
            categories=[str(cat) for cat in payload.get("categories") or []],
            content=payload.get("content"),
        )

    def to_dict(self, *, include_content: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "tags": list(self.tags),
            "categories": list(self.categories),
        }
        if include_content:
            payload["content"] = self.content
        return payload


@dataclass(slots=True)
class PatternSearchResult:
    results: List[Pattern]
    total_matches: int

    def to_dict(self) -> Dict[str, Any]:
        if not self.results:
            return {"patterns": [], "count": 0, "totalMatches": 0, "message": "No matching patterns found"}
        return {
            "patterns": [pattern.to_dict() for pattern in self.results],
            "count": len(self.results),
            "totalMatches": self.total_matches,
        }


class PatternProvider(Protocol):
    async def fetch_index(self) -> List[Pattern]:
        ...

    async def get_markup(self, slug: str) -> Pattern | None:
        ...


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class RestPatternProvider:
    """Reads the pattern index and pattern markup from a REST endpoint.

    ``GET {base_url}/pattern-index`` returns a JSON array of patterns without
    content; ``GET {base_url}/pattern-by-slug?slug=...`` returns one pattern
    with its ``content``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers=dict(headers) if headers else None,
            transport=transport,
        )

    async def fetch_index(self) -> List[Pattern]:
        response = await self._client.get("/pattern-index")
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, list):
            LOGGER.warning("Pattern index response was not a list")
            return []
        return [Pattern.from_dict(item) for item in payload if isinstance(item, Mapping)]

    async def get_markup(self, slug: str) -> Pattern | None:
        response = await self._client.get("/pattern-by-slug", params={"slug": slug})
        if response.status_code == 404:
            return None
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, Mapping):
            return None
        return Pattern.from_dict(payload)

    async def aclose(self) -> None:
        await self._client.aclose()


class InMemoryPatternProvider:
    def __init__(self, patterns: Sequence[Pattern] = ()) -> None:
        self._patterns = {pattern.slug: pattern for pattern in patterns}

    async def fetch_index(self) -> List[Pattern]:
        return [
            Pattern(p.slug, p.title, p.description, list(p.tags), list(p.categories))
            for p in self._patterns.values()
        ]

    async def get_markup(self, slug: str) -> Pattern | None:
        return self._patterns.get(slug)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


def score_pattern(pattern: Pattern, words: Sequence[str]) -> int:
    """Keyword score of one pattern for an already lower-cased, split query."""

    title = pattern.title.lower()
    description = pattern.description.lower()
    tags = [tag.lower() for tag in pattern.tags]
    categories = [cat.lower() for cat in pattern.categories]
    score = 0
    for word in words:
        if word in categories:
            score += CATEGORY_EXACT_SCORE
        if word in tags:
            score += TAG_EXACT_SCORE
        elif any(word in tag for tag in tags):
            score += TAG_PARTIAL_SCORE
        if re.search(rf"\b{re.escape(word)}", title):
            score += TITLE_WORD_SCORE
        if word in description:
            score += DESCRIPTION_SCORE
    if len(words) > 1:
        phrase = " ".join(words)
        if phrase in title:
            score += TITLE_PHRASE_SCORE
        if phrase in description:
            score += DESCRIPTION_PHRASE_SCORE
    return score


class PatternLibrary:
    """Caches the provider's index and answers search and markup lookups."""

    def __init__(self, provider: PatternProvider, *, rng: random.Random | None = None) -> None:
        self._provider = provider
        self._index: List[Pattern] | None = None
        self._rng = rng or random.Random()

    @property
    def provider(self) -> PatternProvider:
        return self._provider

    def is_ready(self) -> bool:
        return self._index is not None

    async def initialize(self) -> int:
        self._index = await self._provider.fetch_index()
        LOGGER.debug("Loaded pattern index with %d entries", len(self._index))
        return len(self._index)

    def search(
        self,
        query: str,
        *,
        category: str | None = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> PatternSearchResult:
        """Score every indexed pattern against ``query``; equal scores are shuffled."""

        if self._index is None:
            return PatternSearchResult([], 0)
        words = [word for word in query.lower().split() if word]
        scored: List[tuple[int, float, Pattern]] = []
        for pattern in self._index:
            if category and category not in pattern.categories:
                continue
            score = score_pattern(pattern, words)
            if score > 0:
                scored.append((score, self._rng.random(), pattern))
        scored.sort(key=lambda item: (-item[0], item[1]))
        return PatternSearchResult([item[2] for item in scored[: max(0, limit)]], len(scored))

    async def get_markup(self, slug: str) -> Pattern:
        pattern = await self._provider.get_markup(slug)
        if pattern is None or not pattern.content:
            raise PatternNotFoundError(message=f'Pattern "{slug}" not found', details={"slug": slug})
        return pattern
