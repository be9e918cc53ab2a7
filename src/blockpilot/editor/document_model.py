"""In-memory block document with id-indexed lookups and external container content."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Protocol, Sequence, runtime_checkable

from ..errors import BlockNotFoundError, ContainerUnavailableError
from .blocks import BlockNode, parse_blocks, serialize_block, serialize_blocks

__all__ = [
    "BlockDocument",
    "ContainerStore",
    "DocumentMetadata",
    "InMemoryContainerStore",
]

LOGGER = logging.getLogger(__name__)

DocumentListener = Callable[[str, "BlockDocument"], None]


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def _hash_text(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


@runtime_checkable
class ContainerStore(Protocol):
    """Read/write access to the sub-documents behind container blocks."""

    async def fetch_external_content(self, ref: str) -> str:
        ...

    async def persist_external_content(self, ref: str, content: str) -> None:
        ...


class InMemoryContainerStore:
    """Dictionary-backed :class:`ContainerStore` used by hosts without remote storage."""

    def __init__(self, contents: Mapping[str, str] | None = None) -> None:
        self._contents: Dict[str, str] = dict(contents or {})
        self.writes: List[tuple[str, str]] = []

    async def fetch_external_content(self, ref: str) -> str:
        try:
            return self._contents[ref]
        except KeyError as exc:
            raise ContainerUnavailableError(message=f"No stored content for template part {ref}") from exc

    async def persist_external_content(self, ref: str, content: str) -> None:
        self._contents[ref] = content
        self.writes.append((ref, content))

    def get(self, ref: str) -> str | None:
        return self._contents.get(ref)


@dataclass(slots=True)
class DocumentMetadata:
    """Metadata describing the document being edited."""

    title: str = ""
    post_type: str = "page"
    post_id: int | None = None
    updated_at: datetime = field(default_factory=_utcnow)


class BlockDocument:
    """Block tree stored as an arena keyed by node id.

    Parent links are kept in a side table so lookups, sibling indexes and
    ancestor walks never rescan the tree. Container blocks hold a mirror of
    their external content in ``children``; :meth:`serialize` emits them as
    self-closing references because the container store owns that content.
    """

    def __init__(
        self,
        nodes: Sequence[BlockNode] = (),
        *,
        containers: ContainerStore | None = None,
        metadata: DocumentMetadata | None = None,
    ) -> None:
        self._roots: List[BlockNode] = []
        self._nodes: Dict[str, BlockNode] = {}
        self._parents: Dict[str, str | None] = {}
        self._listeners: List[DocumentListener] = []
        self.containers = containers
        self.metadata = metadata or DocumentMetadata()
        self.selected_id: str | None = None
        self.highlighted: List[str] = []
        self.version_id = 1
        for node in nodes:
            self._roots.append(node)
            self._register(node, None)

    @classmethod
    def from_markup(
        cls,
        markup: str,
        *,
        containers: ContainerStore | None = None,
        metadata: DocumentMetadata | None = None,
    ) -> "BlockDocument":
        return cls(parse_blocks(markup), containers=containers, metadata=metadata)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    @property
    def roots(self) -> List[BlockNode]:
        return list(self._roots)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, node_id: str) -> BlockNode:
        try:
            return self._nodes[node_id]
        except KeyError as exc:
            raise BlockNotFoundError(node_id=node_id) from exc

    def parent_id(self, node_id: str) -> str | None:
        self.get(node_id)
        return self._parents[node_id]

    def siblings(self, parent_id: str | None) -> List[BlockNode]:
        if parent_id is None:
            return self._roots
        return self.get(parent_id).children

    def index_of(self, node_id: str) -> int:
        node = self.get(node_id)
        for index, sibling in enumerate(self.siblings(self._parents[node_id])):
            if sibling is node:
                return index
        raise BlockNotFoundError(node_id=node_id)

    def ancestors(self, node_id: str) -> Iterator[BlockNode]:
        current = self.parent_id(node_id)
        while current is not None:
            yield self._nodes[current]
            current = self._parents[current]

    def find_container_ancestor(self, node_id: str) -> BlockNode | None:
        """Return the closest container block enclosing ``node_id``."""

        for ancestor in self.ancestors(node_id):
            if ancestor.is_container:
                return ancestor
        return None

    def path_from(self, ancestor_id: str, node_id: str) -> List[int]:
        """Return the child index path leading from ``ancestor_id`` down to ``node_id``."""

        path: List[int] = []
        current: str | None = node_id
        while current is not None and current != ancestor_id:
            path.insert(0, self.index_of(current))
            current = self._parents[current]
        if current != ancestor_id:
            raise BlockNotFoundError(
                message=f"Block {node_id} is not inside {ancestor_id}", node_id=node_id
            )
        return path

    def find_first(self, name: str) -> BlockNode | None:
        for node in self.iter_nodes():
            if node.name == name:
                return node
        return None

    def iter_nodes(self) -> Iterator[BlockNode]:
        """Yield every node in document order, container mirrors included."""

        for root in self._roots:
            yield from root.iter_tree()

    def get_document_tree(self) -> List[Dict[str, Any]]:
        return [root.to_dict() for root in self._roots]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def update_attributes(self, node_id: str, attributes: Mapping[str, Any], *, replace: bool = False) -> None:
        node = self.get(node_id)
        if replace:
            node.attributes = dict(attributes)
        else:
            node.attributes.update(attributes)
        self._touch("update_attributes")

    def replace_node_content(self, node_id: str, replacement: BlockNode) -> None:
        """Overwrite a node with ``replacement`` while keeping its id."""

        node = self.get(node_id)
        for child in node.children:
            self._unregister(child)
        node.name = replacement.name
        node.attributes = dict(replacement.attributes)
        node.inner_content = list(replacement.inner_content)
        node.children = list(replacement.children)
        for child in node.children:
            self._register(child, node_id)
        self._touch("replace_node_content")

    def replace_children(self, node_id: str, nodes: Sequence[BlockNode]) -> None:
        node = self.get(node_id)
        for child in node.children:
            self._unregister(child)
        node.children = list(nodes)
        for child in node.children:
            self._register(child, node_id)
        node.sync_child_slots()
        self._touch("replace_children")

    def remove_node(self, node_id: str) -> tuple[str | None, int, BlockNode]:
        """Detach a node and return ``(parent_id, index, node)`` for undo bookkeeping."""

        parent_id = self.parent_id(node_id)
        index = self.index_of(node_id)
        siblings = self.siblings(parent_id)
        node = siblings.pop(index)
        self._unregister(node)
        if parent_id is not None:
            self._nodes[parent_id].sync_child_slots()
        if self.selected_id is not None and self.selected_id not in self._nodes:
            self.selected_id = None
        self._touch("remove_node")
        return parent_id, index, node

    def insert_nodes(self, nodes: Sequence[BlockNode], index: int, parent_id: str | None = None) -> None:
        siblings = self.siblings(parent_id)
        index = max(0, min(index, len(siblings)))
        siblings[index:index] = list(nodes)
        for node in nodes:
            self._register(node, parent_id)
        if parent_id is not None:
            self._nodes[parent_id].sync_child_slots()
        self._touch("insert_nodes")

    def move_node(self, node_id: str, from_parent: str | None, to_parent: str | None, index: int) -> None:
        """Move a node under ``to_parent`` at ``index`` (measured after removal)."""

        if self.parent_id(node_id) != from_parent:
            raise BlockNotFoundError(
                message=f"Block {node_id} is not a child of {from_parent or 'the document root'}",
                node_id=node_id,
            )
        if to_parent is not None and (to_parent == node_id or any(a.node_id == node_id for a in self.ancestors(to_parent))):
            raise ValueError("A block cannot be moved inside itself")
        source = self.siblings(from_parent)
        node = source.pop(self.index_of_in(source, node_id))
        target = self.siblings(to_parent)
        index = max(0, min(index, len(target)))
        target.insert(index, node)
        self._parents[node_id] = to_parent
        for parent in {from_parent, to_parent}:
            if parent is not None:
                self._nodes[parent].sync_child_slots()
        self._touch("move_node")

    @staticmethod
    def index_of_in(siblings: Sequence[BlockNode], node_id: str) -> int:
        for index, sibling in enumerate(siblings):
            if sibling.node_id == node_id:
                return index
        raise BlockNotFoundError(node_id=node_id)

    def reset(self, nodes: Sequence[BlockNode], node_ids: Sequence[str] | None = None) -> None:
        """Replace the whole tree in one step.

        When ``node_ids`` matches the number of nodes they are reassigned in
        preorder so references taken before a snapshot stay valid.
        """

        flattened = [item for node in nodes for item in node.iter_tree()]
        if node_ids is not None and len(node_ids) == len(flattened):
            for item, node_id in zip(flattened, node_ids):
                item.node_id = node_id
        elif node_ids is not None:
            LOGGER.debug(
                "Snapshot id count %d does not match %d restored blocks; keeping fresh ids",
                len(node_ids),
                len(flattened),
            )
        self._roots = list(nodes)
        self._nodes.clear()
        self._parents.clear()
        for node in self._roots:
            self._register(node, None)
        if self.selected_id is not None and self.selected_id not in self._nodes:
            self.selected_id = None
        self.highlighted = [node_id for node_id in self.highlighted if node_id in self._nodes]
        self._touch("reset")

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------
    def select(self, node_id: str | None) -> None:
        if node_id is not None:
            self.get(node_id)
        self.selected_id = node_id

    def highlight(self, node_id: str) -> BlockNode:
        node = self.get(node_id)
        self.highlighted.append(node_id)
        return node

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------
    def serialize(self, *, expand_containers: bool = False) -> str:
        return serialize_blocks(self._roots, expand_containers=expand_containers)

    def serialize_node(self, node_id: str, *, expand_containers: bool = True) -> str:
        return serialize_block(self.get(node_id), expand_containers=expand_containers)

    @property
    def content_hash(self) -> str:
        return _hash_text(self.serialize(expand_containers=True))

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def add_listener(self, listener: DocumentListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: DocumentListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _touch(self, operation: str) -> None:
        self.version_id += 1
        self.metadata.updated_at = _utcnow()
        for listener in list(self._listeners):
            try:
                listener(operation, self)
            except Exception:  # pragma: no cover - defensive guard
                LOGGER.exception("Document listener failed after %s", operation)

    def _register(self, node: BlockNode, parent_id: str | None) -> None:
        self._nodes[node.node_id] = node
        self._parents[node.node_id] = parent_id
        for child in node.children:
            self._register(child, node.node_id)

    def _unregister(self, node: BlockNode) -> None:
        for item in node.iter_tree():
            self._nodes.pop(item.node_id, None)
            self._parents.pop(item.node_id, None)
