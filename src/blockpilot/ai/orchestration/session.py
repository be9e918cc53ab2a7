"""Chat session controller: owns the conversation and runs one turn at a time."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Sequence

import httpx

from ...chat.message_model import ChatMessage, ConversationSession, new_session_id
from ...editor.document_model import BlockDocument
from ...editor.global_styles import GlobalStylesService
from ...editor.mutations import DocumentMutationExecutor
from ...errors import AbortError, ContainerUnavailableError, PartialRestoreError, StreamBusyError
from ...services.session_store import SessionStore
from ...services.settings import Settings
from ...utils import logging as logging_utils
from ..capabilities import CapabilityProvider
from ..client import AIClient, ClientSettings, TokenUsage, convert_messages_to_openai_format
from ..prompts import build_editor_context, generate_tool_summary, system_prompt, wrap_user_message
from ..tools.base import ToolContext
from ..tools.pattern_customizer import PatternCustomizer
from ..tools.pattern_library import PatternLibrary, RestPatternProvider
from ..tools.registry import ToolRegistry
from ..tools.wiring import build_editor_registry
from .chain import AbortSignal, ChainContext
from .orchestrator import OrchestratorConfig, Sleep, ToolOrchestrator
from .progress import ChatStatus, ProgressBroadcaster, ProgressState
from .streaming import ModelClient, StreamChunk, StreamConsumer, StreamRequest
from .undo import UndoManager

__all__ = ["ChatSession", "ERROR_FALLBACK_TEXT"]

LOGGER = logging.getLogger(__name__)

ERROR_FALLBACK_TEXT = "Sorry, an error occurred."
GENERIC_ERROR = "An error occurred while processing your request."


class ChatSession:
    """Wires the model client, document, tools and undo manager for one editor.

    Collaborators are injected so hosts (and tests) decide which transport,
    stores and providers back the session; :meth:`from_settings` builds the
    default stack from persisted settings.
    """

    def __init__(
        self,
        *,
        client: ModelClient,
        document: BlockDocument,
        settings: Settings | None = None,
        capabilities: CapabilityProvider | None = None,
        styles: GlobalStylesService | None = None,
        patterns: PatternLibrary | None = None,
        customizer: PatternCustomizer | None = None,
        store: SessionStore | None = None,
        registry: ToolRegistry | None = None,
        progress: ProgressBroadcaster | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.document = document
        self.conversation = ConversationSession()
        self.progress = progress or ProgressBroadcaster(delay_scale=self.settings.progress_delay_scale, sleep=sleep)
        self.progress.add_listener(self)
        self.executor = DocumentMutationExecutor(document)
        self.undo = UndoManager(document, styles=styles, conversation=self.conversation)
        self.registry = registry or build_editor_registry()
        self.patterns = patterns
        self.connection_status = "disconnected"
        self.error: str | None = None
        self.usage: TokenUsage | None = None
        self._client = client
        self._capabilities = capabilities
        self._store = store
        self._consumer = StreamConsumer(client)
        self._tool_context = ToolContext(
            executor=self.executor,
            styles=styles,
            patterns=patterns,
            customizer=customizer,
            capabilities=capabilities,
            progress=self.progress,
        )
        self.orchestrator = ToolOrchestrator(
            consumer=self._consumer,
            registry=self.registry,
            tool_context=self._tool_context,
            undo=self.undo,
            conversation=self.conversation,
            progress=self.progress,
            capabilities=capabilities,
            config=OrchestratorConfig.from_settings(self.settings),
            sleep=sleep,
        )
        self._context: ChainContext | None = None
        self._restore()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        document: BlockDocument,
        *,
        capabilities: CapabilityProvider | None = None,
        styles: GlobalStylesService | None = None,
        store: SessionStore | None = None,
    ) -> "ChatSession":
        logging_utils.apply_settings(settings)
        client = AIClient(ClientSettings.from_settings(settings))
        patterns = None
        if settings.pattern_api_url:
            patterns = PatternLibrary(RestPatternProvider(settings.pattern_api_url, timeout=settings.request_timeout))
        return cls(
            client=client,
            document=document,
            settings=settings,
            capabilities=capabilities,
            styles=styles,
            patterns=patterns,
            customizer=PatternCustomizer(client, model=settings.customizer_model),
            store=store or SessionStore(settings.site_url),
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def messages(self) -> List[ChatMessage]:
        return self.conversation.messages

    @property
    def session_id(self) -> str:
        return self.conversation.session_id

    @property
    def status(self) -> ChatStatus:
        return self.progress.status

    @property
    def is_busy(self) -> bool:
        return self._context is not None

    def on_progress(self, state: ProgressState) -> None:
        self.conversation.status = state.status.value

    def _restore(self) -> None:
        if self._store is None:
            return
        stored = self._store.load_session()
        if stored is None:
            return
        self.conversation.session_id = stored.session_id
        self.conversation.messages[:] = stored.messages

    def _persist(self) -> None:
        if self._store is None:
            return
        try:
            self._store.save_session(self.conversation.session_id, self.conversation.messages)
        except OSError as exc:
            LOGGER.warning("Unable to persist chat session: %s", exc)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------
    async def connect(self) -> bool:
        """Connect the capability provider and prepare local data sources."""

        if self._capabilities is None:
            self.connection_status = "connected"
        else:
            self.connection_status = "connecting"
            try:
                await self._capabilities.connect()
                descriptors = await self._capabilities.list_tools()
            except Exception as exc:
                LOGGER.warning("Capability provider connection failed: %s", exc)
                self.connection_status = "disconnected"
            else:
                self.orchestrator.update_provider_tools(descriptors)
                self.connection_status = "connected"
                LOGGER.info("Connected capability provider with %d tool(s)", len(descriptors))

        if self.patterns is not None and not self.patterns.is_ready():
            try:
                await self.patterns.initialize()
            except httpx.HTTPError as exc:
                LOGGER.warning("Pattern index unavailable: %s", exc)
        try:
            await self.executor.hydrate_containers()
        except ContainerUnavailableError as exc:
            LOGGER.warning("Template part content unavailable: %s", exc)
        return self.connection_status == "connected"

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------
    def build_history(self) -> List[Dict[str, Any]]:
        """System prompt plus the recent conversation, the last user turn carrying the editor context."""

        window = max(1, self.settings.history_window)
        recent = [message for message in self.conversation.messages if not message.is_streaming][-window:]
        history = convert_messages_to_openai_format(recent)
        for entry in reversed(history):
            if entry["role"] == "user":
                entry["content"] = wrap_user_message(entry["content"], build_editor_context(self.document))
                break
        return [{"role": "system", "content": system_prompt()}, *history]

    async def send_message(self, text: str) -> ChatMessage:
        """Run one user turn and return the assistant message that answered it."""

        if self.is_busy:
            raise StreamBusyError("A chat turn is already running")
        self.error = None
        self.progress.reset()
        self.conversation.append(ChatMessage.user(text))
        self.progress.set_status(ChatStatus.RECEIVED)
        history = self.build_history()
        assistant = self.conversation.append(ChatMessage.assistant(streaming=True))
        context = ChainContext(origin=assistant, signal=AbortSignal())
        context.extend_history(history)
        self._context = context
        self._tool_context.user_message = text
        self.progress.set_status(ChatStatus.GENERATING)

        try:
            await self._run_turn(assistant, history, context)
        finally:
            self._context = None
            assistant.is_streaming = False
            self._persist()
        return assistant

    async def _run_turn(self, assistant: ChatMessage, history: List[Dict[str, Any]], context: ChainContext) -> None:
        tools = self.orchestrator.available_tools()
        request = StreamRequest(
            messages=history,
            model=self.settings.model,
            tools=tools or None,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
        )

        def on_chunk(chunk: StreamChunk) -> None:
            if chunk.kind == "content":
                assistant.content = chunk.full_text
                assistant.reasoning = ""
            else:
                assistant.reasoning = chunk.reasoning

        try:
            outcome = await self._consumer.stream(
                request, on_chunk, message_id=assistant.message_id, signal=context.signal
            )
        except AbortError:
            LOGGER.debug("Turn %s cancelled while streaming", assistant.message_id)
            return
        except Exception as exc:
            LOGGER.error("Model request failed: %s", exc)
            assistant.content = assistant.content or ERROR_FALLBACK_TEXT
            assistant.error = True
            assistant.is_streaming = False
            self.error = str(exc) or GENERIC_ERROR
            self.progress.set_status(ChatStatus.FAILED)
            self.progress.set_status(ChatStatus.IDLE)
            return

        assistant.is_streaming = False
        assistant.reasoning = ""
        if outcome is None:
            return
        self.usage = outcome.usage or self.usage
        calls = outcome.tool_calls
        assistant.tool_calls = list(calls) if calls else None
        assistant.content = outcome.text or (generate_tool_summary(calls) if calls else "")
        if not calls:
            self.progress.set_status(ChatStatus.COMPLETED)
            self.progress.set_status(ChatStatus.IDLE)
            return
        await self.orchestrator.execute_tool_calls(
            calls, assistant.message_id, history, outcome.text, 0, context=context
        )

    def cancel(self) -> None:
        """Stop the running turn; mutations already applied stay in place."""

        if self._context is not None:
            self._context.signal.abort()
        for message in self.conversation.messages:
            message.is_streaming = False
            message.is_executing_tools = False
        self.error = None
        self.progress.set_status(ChatStatus.IDLE)

    async def new_chat(self) -> str:
        self.cancel()
        self.undo.clear()
        self.conversation.reset(new_session_id())
        self.error = None
        self.usage = None
        self.progress.reset()
        if self._store is not None:
            self._store.clear_session()
        if self.connection_status != "connected":
            await self.connect()
        return self.conversation.session_id

    # ------------------------------------------------------------------
    # Accept / Decline
    # ------------------------------------------------------------------
    async def accept_changes(self) -> ChatMessage | None:
        if not self.undo.has_pending:
            return None
        notice = await self.undo.accept()
        self._persist()
        return notice

    async def decline_changes(self) -> ChatMessage | None:
        if not self.undo.has_pending:
            LOGGER.info("Nothing to decline")
            return None
        try:
            notice = await self.undo.decline()
        except PartialRestoreError as exc:
            LOGGER.warning("Decline restored %s only: %s", exc.restored or "nothing", exc)
            parts = ", ".join(part.replace("_", " ") for part in exc.failed_parts)
            notice = self.conversation.append(
                ChatMessage.notification(f"Some changes could not be reverted ({parts}).")
            )
        self._persist()
        return notice

    async def aclose(self) -> None:
        closer = getattr(self._client, "aclose", None)
        if closer is not None:
            result = closer()
            if asyncio.iscoroutine(result):
                await result
        provider = self.patterns.provider if self.patterns is not None else None
        if isinstance(provider, RestPatternProvider):
            await provider.aclose()

    def pending_messages(self) -> Sequence[ChatMessage]:
        return [message for message in self.conversation.messages if message.has_actions]
