"""Structured edit, add, delete and move operations over a :class:`BlockDocument`.

Blocks nested inside a container block are not owned by the in-memory tree:
their container's external content is fetched, modified at the index path
leading from the container to the target, and persisted. The in-memory
mirror is then updated the same way, and rebuilt from the persisted content
if the two ever disagree.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Sequence

from ..errors import BlockNotFoundError, ContainerUnavailableError, ValidationError
from .blocks import BlockNode, parse_blocks, serialize_blocks, validate_block_markup
from .document_model import BlockDocument

__all__ = ["DocumentMutationExecutor", "MutationResult", "PriorState", "POST_CONTENT_BLOCK"]

LOGGER = logging.getLogger(__name__)

POST_CONTENT_BLOCK = "core/post-content"
MovePosition = Literal["before", "after"]
_CONTAINER_WRAPPER = re.compile(
    r"^\s*<!--\s*wp:template-part\s+\{.*?\}\s*-->(?P<body>.*)<!--\s*/wp:template-part\s*-->\s*$",
    re.DOTALL,
)
_OUTER_TAG = re.compile(r"^<[a-z][^>]*>(?P<body>.*)</[a-z]+>$", re.DOTALL | re.IGNORECASE)


@dataclass(slots=True)
class PriorState:
    """State of the targeted node before a mutation ran."""

    node_id: str | None
    parent_id: str | None = None
    index: int | None = None
    markup: str | None = None
    container_ref: str | None = None
    container_content: str | None = None


@dataclass(slots=True)
class MutationResult:
    operation: str
    node_id: str | None
    message: str
    prior: PriorState
    inserted_ids: List[str] = field(default_factory=list)
    container_ref: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "operation": self.operation,
            "block_id": self.node_id,
            "message": self.message,
        }
        if self.inserted_ids:
            payload["inserted_ids"] = list(self.inserted_ids)
        if self.container_ref:
            payload["template_part"] = self.container_ref
        return payload


class DocumentMutationExecutor:
    """Applies block mutations to a document and its container store."""

    def __init__(self, document: BlockDocument) -> None:
        self._document = document

    @property
    def document(self) -> BlockDocument:
        return self._document

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------
    def get_block_markup(self, node_id: str) -> str:
        return self._document.serialize_node(node_id, expand_containers=True)

    def highlight(self, node_id: str) -> BlockNode:
        return self._document.highlight(node_id)

    async def hydrate_containers(self) -> int:
        """Load the external content of every container that has no mirrored children."""

        loaded = 0
        for node in list(self._document.iter_nodes()):
            if not node.is_container or node.children or node.container_ref is None:
                continue
            content = await self._fetch_content(node)
            self._document.replace_children(node.node_id, parse_blocks(content))
            loaded += 1
        return loaded

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    async def edit(self, node_id: str, content: str) -> MutationResult:
        document = self._document
        node = document.get(node_id)

        if node.is_container:
            blocks = validate_block_markup(strip_container_wrapper(content))
            prior = await self._prior_state(node_id, container=node)
            serialized = serialize_blocks(blocks)
            await self._persist(node, serialized)
            document.replace_children(node_id, blocks)
            self._reconcile(node, serialized)
            LOGGER.debug("Rewrote template part %s with %d block(s)", node.container_ref, len(blocks))
            return MutationResult(
                "edit", node_id, "Template part content rewritten", prior, container_ref=node.container_ref
            )

        blocks = validate_block_markup(content)
        container = document.find_container_ancestor(node_id)
        prior = await self._prior_state(node_id, container=container)

        def apply(tree: List[BlockNode], path: List[int]) -> None:
            parent, siblings, index = _locate(tree, path)
            siblings[index : index + 1] = blocks
            if parent is not None:
                parent.sync_child_slots()

        persisted: str | None = None
        if container is not None:
            path = document.path_from(container.node_id, node_id)
            persisted = await self._modify_container(container, lambda tree: apply(tree, path))

        first, extra = blocks[0], blocks[1:]
        parent_id = document.parent_id(node_id)
        index = document.index_of(node_id)
        document.replace_node_content(node_id, first)
        if extra:
            document.insert_nodes(extra, index + 1, parent_id)
        if container is not None and persisted is not None:
            self._reconcile(container, persisted)
        name = node.name or "freeform"
        return MutationResult(
            "edit",
            node_id,
            f"Block {name} content rewritten",
            prior,
            inserted_ids=[item.node_id for item in extra],
            container_ref=container.container_ref if container else None,
        )

    async def add(self, after_node_id: str | None, content: str) -> MutationResult:
        document = self._document
        blocks = validate_block_markup(content)

        if after_node_id is None:
            post_content = document.find_first(POST_CONTENT_BLOCK)
            parent_id = post_content.node_id if post_content is not None else None
            prior = PriorState(node_id=None, parent_id=parent_id, index=0)
            document.insert_nodes(blocks, 0, parent_id)
            return MutationResult(
                "add", None, f"Added {len(blocks)} block(s) at the top of the page", prior,
                inserted_ids=[block.node_id for block in blocks],
            )

        document.get(after_node_id)
        container = document.find_container_ancestor(after_node_id)
        prior = await self._prior_state(after_node_id, container=container)

        if container is not None:
            path = document.path_from(container.node_id, after_node_id)

            def apply(tree: List[BlockNode]) -> None:
                parent, siblings, index = _locate(tree, path)
                siblings[index + 1 : index + 1] = blocks
                if parent is not None:
                    parent.sync_child_slots()

            persisted = await self._modify_container(container, apply)

        parent_id = document.parent_id(after_node_id)
        document.insert_nodes(blocks, document.index_of(after_node_id) + 1, parent_id)
        if container is not None:
            self._reconcile(container, persisted)
        return MutationResult(
            "add",
            after_node_id,
            f"Added {len(blocks)} block(s)",
            prior,
            inserted_ids=[block.node_id for block in blocks],
            container_ref=container.container_ref if container else None,
        )

    async def delete(self, node_id: str) -> MutationResult:
        document = self._document
        node = document.get(node_id)
        container = document.find_container_ancestor(node_id)
        prior = await self._prior_state(node_id, container=container)

        if container is not None:
            path = document.path_from(container.node_id, node_id)

            def apply(tree: List[BlockNode]) -> None:
                parent, siblings, index = _locate(tree, path)
                del siblings[index]
                if parent is not None:
                    parent.sync_child_slots()

            persisted = await self._modify_container(container, apply)

        document.remove_node(node_id)
        if container is not None:
            self._reconcile(container, persisted)
        label = "Template part" if node.is_container else f"Block {node.name or 'freeform'}"
        return MutationResult(
            "delete", node_id, f"{label} deleted", prior,
            container_ref=container.container_ref if container else None,
        )

    async def move(self, node_id: str, target_id: str, position: str = "after") -> MutationResult:
        document = self._document
        if position not in ("before", "after"):
            raise ValidationError(message=f"Invalid position {position!r}; expected 'before' or 'after'")
        if node_id == target_id:
            raise ValidationError(message="A block cannot be moved relative to itself")
        node = document.get(node_id)
        target = document.get(target_id)
        if any(ancestor.node_id == node_id for ancestor in document.ancestors(target_id)):
            raise ValidationError(message="A block cannot be moved inside itself")

        source_container = document.find_container_ancestor(node_id)
        target_container = document.find_container_ancestor(target_id)
        prior = await self._prior_state(node_id, container=source_container)
        from_parent = document.parent_id(node_id)
        to_parent = document.parent_id(target_id)
        original_index = document.index_of(node_id)

        if source_container is not None and source_container is target_container:
            source_path = document.path_from(source_container.node_id, node_id)
            target_path = document.path_from(source_container.node_id, target_id)

            def apply(tree: List[BlockNode]) -> None:
                parent, siblings, index = _locate(tree, source_path)
                moved = siblings.pop(index)
                if parent is not None:
                    parent.sync_child_slots()
                adjusted = _path_after_removal(target_path, source_path)
                target_parent, target_siblings, target_index = _locate(tree, adjusted)
                insert_at = target_index + 1 if position == "after" else target_index
                target_siblings.insert(insert_at, moved)
                if target_parent is not None:
                    target_parent.sync_child_slots()

            persisted = await self._modify_container(source_container, apply)

        target_index = document.index_of(target_id)
        if position == "after":
            target_index += 1
        if from_parent == to_parent and original_index < target_index:
            target_index -= 1
        document.move_node(node_id, from_parent, to_parent, target_index)

        if source_container is not None and source_container is target_container:
            self._reconcile(source_container, persisted)
        elif source_container is not None or target_container is not None:
            LOGGER.debug("Moved block %s across a template part boundary in memory only", node_id)
        return MutationResult(
            "move",
            node_id,
            f"Block {node.name or 'freeform'} moved {position} {target.name or 'freeform'}",
            prior,
            container_ref=source_container.container_ref if source_container else None,
        )

    # ------------------------------------------------------------------
    # Container plumbing
    # ------------------------------------------------------------------
    async def _fetch_content(self, container: BlockNode) -> str:
        store = self._document.containers
        ref = container.container_ref
        if store is None or ref is None:
            raise ContainerUnavailableError(
                message=f"Template part {container.node_id} has no external content store"
            )
        return await store.fetch_external_content(ref)

    async def _persist(self, container: BlockNode, content: str) -> None:
        store = self._document.containers
        ref = container.container_ref
        if store is None or ref is None:
            raise ContainerUnavailableError(
                message=f"Template part {container.node_id} has no external content store"
            )
        await store.persist_external_content(ref, content)

    async def _modify_container(self, container: BlockNode, modify: Callable[[List[BlockNode]], None]) -> str:
        content = await self._fetch_content(container)
        tree = parse_blocks(content)
        if not tree:
            raise ContainerUnavailableError(message=f"Template part {container.container_ref} has no content")
        try:
            modify(tree)
        except IndexError as exc:
            raise BlockNotFoundError(
                message=f"Block path no longer exists in template part {container.container_ref}"
            ) from exc
        updated = serialize_blocks(tree)
        await self._persist(container, updated)
        return updated

    def _reconcile(self, container: BlockNode, expected: str) -> None:
        if serialize_blocks(container.children) == expected:
            return
        LOGGER.debug("Template part %s mirror diverged; rebuilding from stored content", container.container_ref)
        self._document.replace_children(container.node_id, parse_blocks(expected))

    async def _prior_state(self, node_id: str, *, container: BlockNode | None) -> PriorState:
        document = self._document
        prior = PriorState(
            node_id=node_id,
            parent_id=document.parent_id(node_id),
            index=document.index_of(node_id),
            markup=document.serialize_node(node_id),
        )
        if container is not None:
            prior.container_ref = container.container_ref
            try:
                prior.container_content = await self._fetch_content(container)
            except ContainerUnavailableError:
                prior.container_content = None
        return prior


def strip_container_wrapper(content: str) -> str:
    """Drop an enclosing template-part block and its outer HTML tag, if present."""

    match = _CONTAINER_WRAPPER.match(content)
    if match is None:
        return content
    body = match.group("body").strip()
    tag = _OUTER_TAG.match(body)
    return tag.group("body").strip() if tag else body


def _locate(tree: List[BlockNode], path: Sequence[int]) -> tuple[BlockNode | None, List[BlockNode], int]:
    if not path:
        raise IndexError("empty block path")
    parent: BlockNode | None = None
    siblings = tree
    for index in path[:-1]:
        parent = siblings[index]
        siblings = parent.children
    index = path[-1]
    if index < 0 or index > len(siblings) - 1:
        raise IndexError(index)
    return parent, siblings, index


def _path_after_removal(target: Sequence[int], removed: Sequence[int]) -> List[int]:
    adjusted = list(target)
    level = len(removed) - 1
    if len(adjusted) > level and list(adjusted[:level]) == list(removed[:level]) and adjusted[level] > removed[level]:
        adjusted[level] -= 1
    return adjusted
