"""Block markup grammar: parse, serialize and validate comment-delimited blocks.

Markup follows the editor's serialized form::

    <!-- wp:group {"layout":{"type":"constrained"}} -->
    <div class="wp-block-group"><!-- wp:paragraph --><p>Hi</p><!-- /wp:paragraph --></div>
    <!-- /wp:group -->

Each parsed :class:`BlockNode` keeps ``inner_content``, the HTML fragments
of the block interleaved with ``None`` slots marking where each child block
is serialized. Serializing a parsed tree and parsing it again yields an
identical tree.
"""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Sequence

from ..errors import BlockParseError, ValidationError

__all__ = [
    "BlockNode",
    "CONTAINER_BLOCK",
    "parse_blocks",
    "serialize_blocks",
    "serialize_block",
    "validate_block_markup",
    "new_node_id",
]

CONTAINER_BLOCK = "core/template-part"
_CORE_NAMESPACE = "core/"
_TOKEN_PATTERN = re.compile(
    r"<!--\s+(?P<closer>/)?wp:(?P<namespace>[a-z][a-z0-9_-]*/)?(?P<name>[a-z][a-z0-9_-]*)"
    r"\s+(?P<attrs>\{.*?\}\s+)?(?P<void>/)?-->",
    re.DOTALL,
)
_TAG_PATTERN = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")


def new_node_id() -> str:
    return str(uuid.uuid4())


@dataclass(slots=True)
class BlockNode:
    """Single block in a document tree; ``name`` is ``None`` for freeform HTML."""

    name: str | None
    attributes: Dict[str, Any] = field(default_factory=dict)
    inner_content: List[str | None] = field(default_factory=list)
    children: List["BlockNode"] = field(default_factory=list)
    node_id: str = field(default_factory=new_node_id)

    @property
    def is_freeform(self) -> bool:
        return self.name is None

    @property
    def is_container(self) -> bool:
        return self.name == CONTAINER_BLOCK

    @property
    def container_ref(self) -> str | None:
        """Return the external content key for container blocks."""

        if not self.is_container:
            return None
        ref = self.attributes.get("ref")
        if ref not in (None, ""):
            return str(ref)
        slug = self.attributes.get("slug")
        if not slug:
            return None
        theme = self.attributes.get("theme")
        return f"{theme}//{slug}" if theme else str(slug)

    @property
    def inner_html(self) -> str:
        return "".join(part for part in self.inner_content if part is not None)

    def text_preview(self, limit: int = 80) -> str:
        text = _WHITESPACE.sub(" ", _TAG_PATTERN.sub(" ", self.inner_html)).strip()
        if len(text) > limit:
            return text[: limit - 1].rstrip() + "…"
        return text

    def iter_tree(self) -> Iterator["BlockNode"]:
        """Yield this node and its descendants in preorder."""

        yield self
        for child in self.children:
            yield from child.iter_tree()

    def sync_child_slots(self) -> None:
        """Keep the ``None`` slots of ``inner_content`` in step with ``children``.

        Called after the children list is edited directly. Existing HTML
        before the first slot and after the last slot is kept; when the block
        had no slots the children are placed before its closing tag.
        """

        if self.is_container:
            return
        slot_positions = [index for index, part in enumerate(self.inner_content) if part is None]
        if len(slot_positions) == len(self.children):
            return
        if slot_positions:
            prefix = self.inner_content[: slot_positions[0]]
            suffix = self.inner_content[slot_positions[-1] + 1 :]
            separators = [
                part for part in self.inner_content[slot_positions[0] : slot_positions[-1]] if part is not None
            ]
            joiner = separators[0] if separators else ""
        else:
            prefix, suffix, joiner = _split_wrapper(self.inner_html)
        middle: List[str | None] = []
        for index in range(len(self.children)):
            if index and joiner:
                middle.append(joiner)
            middle.append(None)
        self.inner_content = [*prefix, *middle, *suffix]

    def to_dict(self, *, include_children: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.node_id,
            "name": self.name,
            "attributes": dict(self.attributes),
        }
        if include_children:
            payload["children"] = [child.to_dict() for child in self.children]
        return payload


def _split_wrapper(html: str) -> tuple[List[str | None], List[str | None], str]:
    closing = html.rfind("</")
    if closing <= 0:
        return ([html] if html else []), [], ""
    return [html[:closing]], [html[closing:]], ""


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------

def _qualify(namespace: str | None, name: str) -> str:
    return f"{namespace or _CORE_NAMESPACE}{name}"


def _decode_attributes(raw: str | None, offset: int) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        decoded = json.loads(raw.strip())
    except json.JSONDecodeError as exc:
        raise BlockParseError(f"Invalid block attributes at offset {offset}: {exc.msg}") from exc
    if not isinstance(decoded, dict):
        raise BlockParseError(f"Block attributes at offset {offset} must be a JSON object")
    return decoded


def parse_blocks(markup: str) -> List[BlockNode]:
    """Parse serialized markup into a list of top-level blocks.

    Whitespace between top-level blocks is dropped; any other top-level text
    becomes a freeform node. Raises :class:`BlockParseError` for unbalanced
    or mismatched block delimiters.
    """

    roots: List[BlockNode] = []
    stack: List[BlockNode] = []
    position = 0

    def add_text(text: str) -> None:
        if not text:
            return
        if stack:
            stack[-1].inner_content.append(text)
        elif text.strip():
            roots.append(BlockNode(name=None, inner_content=[text.strip()]))

    for match in _TOKEN_PATTERN.finditer(markup):
        add_text(markup[position : match.start()])
        position = match.end()
        name = _qualify(match.group("namespace"), match.group("name"))

        if match.group("closer"):
            if not stack:
                raise BlockParseError(f"Unexpected closing delimiter for {name} at offset {match.start()}")
            current = stack.pop()
            if current.name != name:
                raise BlockParseError(
                    f"Mismatched closing delimiter: expected {current.name}, found {name} at offset {match.start()}"
                )
            continue

        node = BlockNode(name=name, attributes=_decode_attributes(match.group("attrs"), match.start()))
        if stack:
            parent = stack[-1]
            parent.children.append(node)
            parent.inner_content.append(None)
        else:
            roots.append(node)
        if not match.group("void"):
            stack.append(node)

    if stack:
        raise BlockParseError(f"Unclosed block {stack[-1].name}")
    add_text(markup[position:])
    return roots


# -----------------------------------------------------------------------------
# Serialization
# -----------------------------------------------------------------------------

def _encode_attributes(attributes: Dict[str, Any]) -> str:
    encoded = json.dumps(attributes, separators=(",", ":"), ensure_ascii=False)
    # Keep the JSON from terminating or confusing the surrounding HTML comment.
    return (
        encoded.replace("--", "\\u002d\\u002d")
        .replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
    )


def _short_name(name: str) -> str:
    return name[len(_CORE_NAMESPACE) :] if name.startswith(_CORE_NAMESPACE) else name


def serialize_block(node: BlockNode, *, expand_containers: bool = False) -> str:
    if node.name is None:
        return node.inner_html
    name = _short_name(node.name)
    attrs = f"{_encode_attributes(node.attributes)} " if node.attributes else ""

    if node.is_container:
        if not expand_containers or not node.children:
            return f"<!-- wp:{name} {attrs}/-->"
        body = serialize_blocks(node.children, expand_containers=True)
        return f"<!-- wp:{name} {attrs}-->\n{body}\n<!-- /wp:{name} -->"

    if not node.inner_content:
        return f"<!-- wp:{name} {attrs}/-->"
    children = iter(node.children)
    parts: List[str] = []
    for part in node.inner_content:
        if part is None:
            child = next(children, None)
            if child is not None:
                parts.append(serialize_block(child, expand_containers=expand_containers))
        else:
            parts.append(part)
    return f"<!-- wp:{name} {attrs}-->{''.join(parts)}<!-- /wp:{name} -->"


def serialize_blocks(nodes: Sequence[BlockNode], *, expand_containers: bool = False) -> str:
    return "\n\n".join(serialize_block(node, expand_containers=expand_containers) for node in nodes)


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------

def validate_block_markup(content: Any) -> List[BlockNode]:
    """Parse ``content`` or raise :class:`ValidationError` describing why it is unusable."""

    if not isinstance(content, str) or not content.strip():
        raise ValidationError(message="Content must be a non-empty string")
    if "<!-- wp:" not in content:
        raise ValidationError(message="Content must contain block markup comments (<!-- wp:...)")
    try:
        blocks = parse_blocks(content)
    except BlockParseError as exc:
        raise ValidationError(message=f"Block markup could not be parsed: {exc}") from exc
    if not blocks:
        raise ValidationError(message="Block markup produced no blocks")
    if all(block.is_freeform for block in blocks):
        raise ValidationError(message="Block markup contains only freeform content")
    return blocks
