"""Pattern library lookups. When no library is loaded the call is forwarded to the capability provider."""

from __future__ import annotations

import logging
from typing import Any, ClassVar

import httpx

from ...errors import PatternNotFoundError
from .base import EditorTool, ToolContext, require_string
from .pattern_library import DEFAULT_SEARCH_LIMIT
from .registry import ParameterSchema, ToolCategory

LOGGER = logging.getLogger(__name__)


class SearchPatternsTool(EditorTool):
    name: ClassVar[str] = "search-patterns"
    description: ClassVar[str] = "Search the pattern library for layouts matching a query"
    parameters: ClassVar[tuple[ParameterSchema, ...]] = (
        ParameterSchema("query", "string", "Space separated keywords", required=True),
        ParameterSchema("category", "string", "Only return patterns from this category"),
        ParameterSchema("limit", "integer", "Maximum number of results", minimum=1, maximum=50),
    )
    category: ClassVar[ToolCategory] = ToolCategory.PATTERNS
    chainable = True

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> dict[str, Any] | None:
        query = require_string(params, "query")
        await context.report("Searching pattern library…", 300)
        library = context.patterns
        if library is None or not library.is_ready():
            return None
        limit = params.get("limit")
        result = library.search(
            query,
            category=params.get("category") or None,
            limit=limit if isinstance(limit, int) and limit > 0 else DEFAULT_SEARCH_LIMIT,
        )
        return result.to_dict()


class GetPatternMarkupTool(EditorTool):
    name: ClassVar[str] = "get-pattern-markup"
    description: ClassVar[str] = "Get the full block markup of a pattern by slug"
    parameters: ClassVar[tuple[ParameterSchema, ...]] = (
        ParameterSchema("slug", "string", "Pattern slug from search-patterns", required=True),
    )
    category: ClassVar[ToolCategory] = ToolCategory.PATTERNS
    chainable = True

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> dict[str, Any] | None:
        slug = require_string(params, "slug")
        await context.report("Fetching pattern markup…", 400)
        if context.patterns is None:
            return None
        try:
            pattern = await context.patterns.get_markup(slug)
        except (PatternNotFoundError, httpx.HTTPError) as exc:
            LOGGER.warning("Local pattern fetch failed, falling back to provider: %s", exc)
            return None
        return pattern.to_dict(include_content=True)
