"""Rewrites the placeholder text of library patterns to fit the current page."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Protocol, Sequence

from ...editor.blocks import BlockNode, parse_blocks
from ...errors import BlockParseError

__all__ = ["PatternCustomizer", "TEXT_BLOCK_TYPES", "collect_text_blocks"]

LOGGER = logging.getLogger(__name__)

TEXT_BLOCK_TYPES = frozenset({"core/heading", "core/paragraph", "core/button", "core/list-item"})

_JSON_ARRAY = re.compile(r"\[.*\]", re.DOTALL)

_SYSTEM_PROMPT = (
    "You customize website pattern text. The blocks below come from a template with placeholder content. "
    "Rewrite all human-readable text so it fits the website and page context. "
    "Keep every HTML tag, class, attribute and href value identical and change only the text inside tags. "
    "Keep roughly the same length and tone for each block. "
    "Return a JSON array of objects with `id` and `html` fields and nothing else."
)


class CompletionClient(Protocol):
    async def complete_chat(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Any:
        ...


def collect_text_blocks(nodes: Sequence[BlockNode]) -> List[BlockNode]:
    found: List[BlockNode] = []
    for root in nodes:
        for node in root.iter_tree():
            if node.name in TEXT_BLOCK_TYPES and node.inner_html.strip():
                found.append(node)
    return found


@dataclass(slots=True)
class PatternCustomizer:
    """Asks a small model for replacement text and splices it into the original markup.

    Replacements are applied by string substitution on the original markup so
    attributes and layout are never re-serialized. Any failure returns the
    markup unchanged.
    """

    client: CompletionClient
    model: str | None = None
    temperature: float = 0.7
    max_tokens: int = 4000

    async def customize(self, markup: str, *, page_title: str = "", user_message: str = "") -> str:
        try:
            blocks = parse_blocks(markup)
        except BlockParseError:
            return markup
        text_blocks = collect_text_blocks(blocks)
        if not text_blocks:
            return markup

        items = [
            {"id": index, "type": (node.name or "").replace("core/", ""), "html": node.inner_html.strip()}
            for index, node in enumerate(text_blocks)
        ]
        messages = [
            {"role": "system", "content": _SYSTEM_PROMPT},
            {
                "role": "user",
                "content": f'Page: "{page_title}"\nRequest: "{user_message}"\n\n'
                f"Text blocks:\n{json.dumps(items, indent=2)}",
            },
        ]
        try:
            response = await self.client.complete_chat(
                messages, model=self.model, temperature=self.temperature, max_tokens=self.max_tokens
            )
        except Exception as exc:
            LOGGER.warning("Pattern customization failed, using original markup: %s", exc)
            return markup

        replacements = _parse_replacements(getattr(response, "content", None))
        if replacements is None:
            return markup
        return _apply_replacements(markup, text_blocks, replacements)


def _parse_replacements(raw: str | None) -> List[Dict[str, Any]] | None:
    if not raw:
        return None
    match = _JSON_ARRAY.search(raw)
    if match is None:
        return None
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        LOGGER.debug("Customizer response was not valid JSON")
        return None
    if not isinstance(parsed, list):
        return None
    return [item for item in parsed if isinstance(item, dict)]


def _apply_replacements(markup: str, text_blocks: Sequence[BlockNode], replacements: Sequence[Mapping[str, Any]]) -> str:
    result = markup
    search_from = 0
    for item in replacements:
        index = item.get("id")
        html = item.get("html")
        if not isinstance(index, int) or not 0 <= index < len(text_blocks) or not isinstance(html, str) or not html:
            continue
        old_inner = text_blocks[index].inner_html
        new_inner = old_inner.replace(old_inner.strip(), html.strip(), 1)
        position = result.find(old_inner, search_from)
        if position == -1:
            continue
        result = result[:position] + new_inner + result[position + len(old_inner):]
        search_from = position + len(new_inner)
    return result
