"""Snapshot capture and accept/decline handling for AI edits.

A snapshot is taken lazily the first time a tool-call chain mutates the
document or the global styles, then committed under the chain's origin
message. Declining restores the oldest pending snapshot part by part.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Mapping, Protocol

from ...chat.message_model import ChatMessage, ConversationSession
from ...editor.blocks import BlockNode, parse_blocks
from ...editor.document_model import BlockDocument
from ...editor.global_styles import GlobalStylesService, StylesSnapshot
from ...errors import ContainerUnavailableError, PartialRestoreError, ToolError

__all__ = [
    "BlockSnapshot",
    "UndoListener",
    "UndoManager",
    "UndoSnapshot",
    "ACCEPTED_NOTICE",
    "DECLINED_NOTICE",
]

LOGGER = logging.getLogger(__name__)

ACCEPTED_NOTICE = "Changes accepted."
DECLINED_NOTICE = "Changes declined and reverted."


# -----------------------------------------------------------------------------
# Snapshot Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class BlockSnapshot:
    """Serialized document plus the external content of its template parts.

    Attributes:
        markup: Document serialization at capture time.
        node_ids: Block ids in document order, reused when restoring.
        container_contents: Stored content of each template part, keyed by ref.
        mirrored_refs: Template parts whose content was mirrored in the tree.
    """

    markup: str
    node_ids: tuple[str, ...] = ()
    container_contents: Mapping[str, str] = field(default_factory=dict)
    mirrored_refs: frozenset[str] = frozenset()


@dataclass(slots=True, frozen=True)
class UndoSnapshot:
    origin_message_id: str
    blocks: BlockSnapshot | None = None
    settings: StylesSnapshot | None = None

    @property
    def is_empty(self) -> bool:
        return self.blocks is None and self.settings is None

    def merge(self, other: "UndoSnapshot") -> "UndoSnapshot":
        """Union two snapshots; parts already present are never replaced."""

        return replace(
            self,
            blocks=self.blocks if self.blocks is not None else other.blocks,
            settings=self.settings if self.settings is not None else other.settings,
        )


class UndoListener(Protocol):
    def on_undo_state_changed(self, pending: bool) -> None:
        ...


# -----------------------------------------------------------------------------
# Undo Manager
# -----------------------------------------------------------------------------


class UndoManager:
    """Keeps pending snapshots keyed by chain origin and applies accept/decline."""

    def __init__(
        self,
        document: BlockDocument,
        *,
        styles: GlobalStylesService | None = None,
        conversation: ConversationSession | None = None,
    ) -> None:
        self._document = document
        self._styles = styles
        self._conversation = conversation
        self._snapshots: "OrderedDict[str, UndoSnapshot]" = OrderedDict()
        self._listeners: List[UndoListener] = []

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------
    async def capture_blocks(self) -> BlockSnapshot:
        document = self._document
        contents: dict[str, str] = {}
        store = document.containers
        for node in document.iter_nodes():
            ref = node.container_ref
            if ref is None or store is None or ref in contents:
                continue
            try:
                contents[ref] = await store.fetch_external_content(ref)
            except ContainerUnavailableError as exc:
                LOGGER.debug("Template part %s not captured: %s", ref, exc)
        return BlockSnapshot(
            markup=document.serialize(),
            node_ids=tuple(node.node_id for node in document.iter_nodes()),
            container_contents=contents,
            mirrored_refs=frozenset(
                node.container_ref for node in document.iter_nodes() if node.children and node.container_ref
            ),
        )

    async def capture_settings(self) -> StylesSnapshot | None:
        if self._styles is None:
            return None
        try:
            return await self._styles.capture()
        except ToolError as exc:
            LOGGER.debug("Global styles not captured: %s", exc)
            return None

    async def capture(self, origin_message_id: str, *, blocks: bool = True, settings: bool = False) -> UndoSnapshot:
        return UndoSnapshot(
            origin_message_id=origin_message_id,
            blocks=await self.capture_blocks() if blocks else None,
            settings=await self.capture_settings() if settings else None,
        )

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------
    def commit(self, snapshot: UndoSnapshot) -> UndoSnapshot:
        """Store ``snapshot`` under its origin, merging with what is already there."""

        if snapshot.is_empty:
            return snapshot
        existing = self._snapshots.get(snapshot.origin_message_id)
        merged = existing.merge(snapshot) if existing is not None else snapshot
        self._snapshots[snapshot.origin_message_id] = merged
        self._notify()
        return merged

    def snapshot_for(self, origin_message_id: str) -> UndoSnapshot | None:
        return self._snapshots.get(origin_message_id)

    @property
    def has_pending(self) -> bool:
        return bool(self._snapshots)

    @property
    def pending(self) -> List[UndoSnapshot]:
        return list(self._snapshots.values())

    def clear(self) -> None:
        self._snapshots.clear()
        self._clear_action_flags()
        self._notify()

    def add_listener(self, listener: UndoListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Accept / Decline
    # ------------------------------------------------------------------
    async def accept(self) -> ChatMessage:
        """Make pending changes permanent and record a notification."""

        if self._styles is not None and any(item.settings is not None for item in self._snapshots.values()):
            await self._styles.commit()
        self._snapshots.clear()
        self._clear_action_flags()
        self._notify()
        return self._append_notice(ACCEPTED_NOTICE)

    async def decline(self) -> ChatMessage:
        """Restore the state captured before the first pending change.

        The document and the global styles are restored independently. If
        either fails, the other is still restored and a
        :class:`PartialRestoreError` naming the failed parts is raised after
        the pending snapshots are cleared.
        """

        blocks = _first(item.blocks for item in self._snapshots.values())
        settings = _first(item.settings for item in self._snapshots.values())
        failures: list[tuple[str, BaseException]] = []
        restored: list[str] = []

        if blocks is not None:
            try:
                self._restore_document(blocks)
                restored.append("document")
            except Exception as exc:
                LOGGER.warning("Document restore failed: %s", exc)
                failures.append(("document", exc))
            if blocks.container_contents:
                try:
                    await self._restore_containers(blocks)
                    restored.append("template_parts")
                except Exception as exc:
                    LOGGER.warning("Template part restore failed: %s", exc)
                    failures.append(("template_parts", exc))

        if settings is not None:
            try:
                if self._styles is None:
                    raise ContainerUnavailableError(message="Global styles service is not configured")
                await self._styles.restore(settings)
                restored.append("global_styles")
            except Exception as exc:
                LOGGER.warning("Global styles restore failed: %s", exc)
                failures.append(("global_styles", exc))

        self._snapshots.clear()
        self._clear_action_flags()
        self._notify()
        if failures:
            raise PartialRestoreError(failures, restored)
        return self._append_notice(DECLINED_NOTICE)

    def _restore_document(self, snapshot: BlockSnapshot) -> None:
        nodes = parse_blocks(snapshot.markup)
        _expand_containers(nodes, snapshot.container_contents, snapshot.mirrored_refs)
        self._document.reset(nodes, snapshot.node_ids)

    async def _restore_containers(self, snapshot: BlockSnapshot) -> None:
        store = self._document.containers
        if store is None:
            raise ContainerUnavailableError(message="No template part store to restore into")
        for ref, content in snapshot.container_contents.items():
            await store.persist_external_content(ref, content)

    def _append_notice(self, text: str) -> ChatMessage:
        notice = ChatMessage.notification(text)
        if self._conversation is not None:
            self._conversation.append(notice)
        return notice

    def _clear_action_flags(self) -> None:
        if self._conversation is None:
            return
        for message in self._conversation.messages:
            message.has_actions = False

    def _notify(self) -> None:
        pending = self.has_pending
        for listener in list(self._listeners):
            listener.on_undo_state_changed(pending)


def _first(items: Iterable[object | None]):
    for item in items:
        if item is not None:
            return item
    return None


def _expand_containers(
    nodes: List[BlockNode], contents: Mapping[str, str], mirrored: frozenset[str], depth: int = 0
) -> None:
    # Template parts may embed further template parts; recursion depth is bounded.
    if depth > 8:
        return
    for node in nodes:
        if node.is_container:
            ref = node.container_ref
            if ref in mirrored and ref in contents and not node.children:
                node.children = parse_blocks(contents[ref])
                _expand_containers(node.children, contents, mirrored, depth + 1)
        else:
            _expand_containers(node.children, contents, mirrored, depth)
