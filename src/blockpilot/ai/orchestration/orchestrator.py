"""Tool orchestration for one chat turn.

Executes the tool calls of a model response, captures the undo snapshot the
first time a call mutates the page, and asks the model for a follow-up. The
follow-up may carry further tool calls, which are queued as the next batch
until the chain runs out of chainable calls or reaches ``max_tool_depth``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, List, Mapping, Sequence

import openai
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from ...chat.message_model import ChatMessage, ConversationSession, ToolCall, ToolResult
from ...errors import AbortError, RateLimitedError, ToolError, ToolExecutionError, UnknownToolError
from ..capabilities import CapabilityProvider, ToolDescriptor, openai_tool_name
from ..prompts import generate_tool_summary
from ..tools.base import ToolContext
from ..tools.registry import ToolRegistry, merge_tool_lists
from .chain import ChainContext
from .progress import ChatStatus, ProgressBroadcaster, ToolActivity
from .streaming import StreamChunk, StreamConsumer, StreamOutcome, StreamRequest
from .undo import UndoManager

__all__ = ["ChainOutcome", "OrchestratorConfig", "ToolBatch", "ToolOrchestrator", "is_rate_limited"]

LOGGER = logging.getLogger(__name__)

FOLLOW_UP_FALLBACK_TEXT = "Done."


@dataclass(slots=True)
class OrchestratorConfig:
    max_tool_depth: int = 5
    follow_up_model: str | None = "gpt-4.1-mini"
    follow_up_temperature: float = 0.2
    follow_up_max_completion_tokens: int = 32000
    follow_up_max_attempts: int = 3
    retry_min_seconds: float = 2.0
    retry_max_seconds: float = 8.0
    summarize_after_tools: bool = True

    @classmethod
    def from_settings(cls, settings: Any) -> "OrchestratorConfig":
        return cls(
            max_tool_depth=settings.max_tool_depth,
            follow_up_model=settings.follow_up_model,
            follow_up_temperature=settings.follow_up_temperature,
            follow_up_max_completion_tokens=settings.follow_up_max_completion_tokens,
            follow_up_max_attempts=settings.follow_up_max_attempts,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
            summarize_after_tools=settings.summarize_after_tools,
        )


@dataclass(slots=True)
class ToolBatch:
    """Tool calls from one model response plus the history that preceded them."""

    calls: List[ToolCall]
    message: ChatMessage
    history: List[Dict[str, Any]]
    assistant_text: str
    depth: int


@dataclass(slots=True)
class ChainOutcome:
    follow_ups: List[ChatMessage] = field(default_factory=list)
    depth: int = 0
    has_changes: bool = False
    aborted: bool = False


def is_rate_limited(exc: BaseException) -> bool:
    """Whether a follow-up failure should be retried."""

    if isinstance(exc, (openai.RateLimitError, RateLimitedError)):
        return True
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    if status == 429:
        return True
    return "429" in str(exc)


Sleep = Callable[[float], Awaitable[None]]


class ToolOrchestrator:
    """Runs tool-call chains as an explicit queue of batches."""

    def __init__(
        self,
        *,
        consumer: StreamConsumer,
        registry: ToolRegistry,
        tool_context: ToolContext,
        undo: UndoManager,
        conversation: ConversationSession,
        progress: ProgressBroadcaster,
        capabilities: CapabilityProvider | None = None,
        config: OrchestratorConfig | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self._consumer = consumer
        self._registry = registry
        self._tool_context = tool_context
        self._undo = undo
        self._conversation = conversation
        self._progress = progress
        self._capabilities = capabilities
        self._config = config or OrchestratorConfig()
        self._sleep: Sleep = sleep or asyncio.sleep
        self._provider_tools: Dict[str, ToolDescriptor] = {}
        self._shadowed: Dict[str, str] = {}

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    # ------------------------------------------------------------------
    # Tool catalogue
    # ------------------------------------------------------------------
    def update_provider_tools(self, descriptors: Sequence[ToolDescriptor]) -> None:
        """Record the provider catalogue and which local tools shadow a provider tool.

        A shadowed provider tool is not advertised to the model, so fallbacks
        from the local tool are forwarded under the provider's own name.
        """

        self._provider_tools = {descriptor.exposed_name: descriptor for descriptor in descriptors}
        self._shadowed = {}
        for descriptor in descriptors:
            registration = self._registry.resolve(descriptor.name)
            if registration is not None:
                self._shadowed.setdefault(registration.name, descriptor.name)

    def provider_ready(self) -> bool:
        # Without a provider the local tools are always available.
        return self._capabilities is None or self._capabilities.is_connected()

    def available_tools(self) -> List[Dict[str, Any]]:
        remote: List[Dict[str, Any]] = []
        if self._capabilities is not None and self._capabilities.is_connected():
            remote = self._capabilities.tools_for_openai()
        return merge_tool_lists(self._registry.to_openai_tools(), remote, self._registry)

    def is_chainable(self, name: str) -> bool:
        if self._registry.has_tool(name):
            return self._registry.is_chainable(name)
        descriptor = self._provider_tools.get(openai_tool_name(name))
        return bool(descriptor and descriptor.read_only)

    # ------------------------------------------------------------------
    # Chain execution
    # ------------------------------------------------------------------
    async def execute_tool_calls(
        self,
        calls: Sequence[ToolCall],
        origin_message_id: str,
        prior_messages: Sequence[Mapping[str, Any]],
        assistant_text: str | None,
        depth: int = 0,
        *,
        context: ChainContext,
    ) -> ChainOutcome:
        """Execute ``calls`` and every chained batch that follows them.

        Never raises: follow-up failures finalize the turn with whatever text
        arrived, and cancellation returns an outcome flagged ``aborted``.
        """

        source = self._conversation.find(origin_message_id) or context.origin
        queue: Deque[ToolBatch] = deque(
            [ToolBatch(list(calls), source, [dict(item) for item in prior_messages], assistant_text or "", depth)]
        )
        outcome = ChainOutcome(depth=depth)
        context.origin.is_executing_tools = True
        self._progress.set_status(ChatStatus.TOOL_CALL)
        try:
            while queue:
                batch = queue.popleft()
                outcome.depth = max(outcome.depth, batch.depth)
                context.max_depth_reached = max(context.max_depth_reached, batch.depth)
                results = await self._run_batch(batch, context)
                if any(result.has_changes for result in results):
                    outcome.has_changes = True
                    self._commit_snapshot(context)

                history = batch.history + self._tool_turn(batch, results)
                context.history = list(history)
                if not any(result.succeeded for result in results):
                    LOGGER.debug("No tool call succeeded at depth %d; skipping follow-up", batch.depth)
                    break

                chainable = (
                    any(self.is_chainable(call.name) for call in batch.calls)
                    and batch.depth < self._config.max_tool_depth
                    and self.provider_ready()
                )
                if not chainable and not self._config.summarize_after_tools:
                    break

                follow_up = await self._follow_up(history, chainable, context)
                outcome.follow_ups.append(follow_up.message)
                if follow_up.result is not None and follow_up.result.tool_calls and chainable:
                    queue.append(
                        ToolBatch(
                            follow_up.result.tool_calls,
                            follow_up.message,
                            history,
                            follow_up.result.text,
                            batch.depth + 1,
                        )
                    )
                    self._progress.set_status(ChatStatus.TOOL_CALL)
        except AbortError:
            LOGGER.info("Tool chain for %s cancelled", context.origin_message_id)
            outcome.aborted = True
        finally:
            context.origin.is_executing_tools = False
            for message in self._conversation.streaming_messages():
                message.is_streaming = False
            self._progress.end_tools()

        if not outcome.aborted:
            self._progress.set_status(ChatStatus.COMPLETED)
            self._progress.set_status(ChatStatus.IDLE)
        return outcome

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------
    async def _run_batch(self, batch: ToolBatch, context: ChainContext) -> List[ToolResult]:
        await self._ensure_snapshot(batch.calls, context)
        await self._progress.update_progress("Preparing to execute actions…", 300)
        activities = [ToolActivity(call.call_id, call.name, dict(call.arguments)) for call in batch.calls]
        self._progress.begin_tools(activities, keep_executed=batch.depth > 0)

        results: List[ToolResult] = []
        try:
            for call, activity in zip(batch.calls, activities):
                context.signal.raise_if_aborted()
                self._progress.start_tool(activity)
                result = await self._dispatch(call)
                activity.is_error = not result.succeeded
                self._progress.finish_tool(activity)
                context.executed_tools.append(call.name)
                results.append(result)
        except AbortError:
            # Mutations applied before the cancel stay in place and remain declinable.
            if results:
                batch.message.tool_results = [*(batch.message.tool_results or []), *results]
            if any(result.has_changes for result in results):
                self._commit_snapshot(context)
            raise

        batch.message.tool_results = [*(batch.message.tool_results or []), *results]
        return results

    async def _ensure_snapshot(self, calls: Sequence[ToolCall], context: ChainContext) -> None:
        targets = {self._registry.mutation_target(call.name) for call in calls}
        snapshot = context.snapshot
        need_blocks = "document" in targets and (snapshot is None or snapshot.blocks is None)
        need_settings = "settings" in targets and (snapshot is None or snapshot.settings is None)
        if not need_blocks and not need_settings:
            return
        captured = await self._undo.capture(context.origin_message_id, blocks=need_blocks, settings=need_settings)
        context.snapshot = captured if snapshot is None else snapshot.merge(captured)
        LOGGER.debug(
            "Captured undo snapshot for %s (blocks=%s, settings=%s)",
            context.origin_message_id,
            need_blocks,
            need_settings,
        )

    def _commit_snapshot(self, context: ChainContext) -> None:
        if context.snapshot is None or context.snapshot.is_empty:
            return
        self._undo.commit(context.snapshot)
        context.origin.has_actions = True

    async def _dispatch(self, call: ToolCall) -> ToolResult:
        try:
            registration = self._registry.resolve(call.name)
            if registration is not None:
                payload = await registration.impl.run(self._tool_context, call.arguments)
                if payload is not None:
                    return ToolResult.success(
                        call.call_id,
                        json.dumps(payload),
                        has_changes=registration.schema.mutates is not None,
                    )
                provider_name = self._provider_name(call.name, registration.name)
                LOGGER.debug("Tool %s had no local answer; forwarding to provider as %s", call.name, provider_name)
                return await self._call_provider(call, provider_name)
            return await self._call_provider(call, call.name)
        except AbortError:
            raise
        except ToolError as exc:
            LOGGER.info("Tool %s failed: %s", call.name, exc)
            await self._progress.update_progress(f"Action failed: {exc.message}", 1000)
            return ToolResult(
                call_id=call.call_id,
                content=[{"type": "text", "text": json.dumps({"success": False, **exc.to_dict()})}],
                error=exc.message,
                is_error=True,
            )
        except Exception as exc:
            LOGGER.exception("Tool %s raised unexpectedly", call.name)
            await self._progress.update_progress(f"Action failed: {exc}", 1000)
            return ToolResult.failure(call.call_id, str(exc) or exc.__class__.__name__)

    def _provider_name(self, name: str, local_name: str) -> str:
        if openai_tool_name(name) in self._provider_tools:
            return name
        return self._shadowed.get(local_name, name)

    async def _call_provider(self, call: ToolCall, name: str) -> ToolResult:
        provider = self._capabilities
        if provider is None or not provider.is_connected():
            raise UnknownToolError(message=f"No handler available for tool {call.name}", details={"tool": call.name})
        await self._progress.update_progress("Communicating with site…", 400)
        try:
            result = await provider.call_tool(name, call.arguments)
        except ToolError:
            raise
        except Exception as exc:
            raise ToolExecutionError(message=f"Tool call failed: {exc}", details={"tool": call.name}) from exc
        await self._progress.update_progress("Processing response…", 300)
        tool_result = ToolResult(call_id=call.call_id, content=list(result.content), is_error=result.is_error)
        if result.is_error:
            tool_result.error = tool_result.text or f"Tool {call.name} reported an error"
        return tool_result

    @staticmethod
    def _tool_turn(batch: ToolBatch, results: Sequence[ToolResult]) -> List[Dict[str, Any]]:
        turn: List[Dict[str, Any]] = [
            {
                "role": "assistant",
                "content": batch.assistant_text or None,
                "tool_calls": [call.to_openai() for call in batch.calls],
            }
        ]
        for result in results:
            turn.append({"role": "tool", "tool_call_id": result.call_id, "content": result.to_tool_message_content()})
        return turn

    # ------------------------------------------------------------------
    # Follow-up
    # ------------------------------------------------------------------
    async def _follow_up(self, history: List[Dict[str, Any]], chainable: bool, context: ChainContext) -> "_FollowUp":
        self._progress.set_status(ChatStatus.SUMMARIZING)
        message = self._conversation.append(ChatMessage.assistant(streaming=True))
        tools = self.available_tools() if chainable else None
        request = StreamRequest(
            messages=history,
            model=self._config.follow_up_model,
            tools=tools or None,
            temperature=self._config.follow_up_temperature,
            max_completion_tokens=self._config.follow_up_max_completion_tokens,
        )

        def on_chunk(chunk: StreamChunk) -> None:
            if chunk.kind == "content":
                message.content = chunk.full_text
                message.reasoning = ""
            else:
                message.reasoning = chunk.reasoning

        result: StreamOutcome | None = None
        try:
            async for attempt in self._retrying():
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        LOGGER.warning(
                            "Follow-up rate limited; retrying (attempt %d/%d)",
                            attempt.retry_state.attempt_number,
                            self._config.follow_up_max_attempts,
                        )
                    message.content = None
                    result = await self._consumer.stream(
                        request, on_chunk, message_id=message.message_id, signal=context.signal
                    )
        except AbortError:
            raise
        except Exception as exc:
            LOGGER.error("Follow-up failed: %s", exc)
            message.content = message.content or FOLLOW_UP_FALLBACK_TEXT
            message.is_streaming = False
            message.reasoning = ""
            return _FollowUp(message, None)

        message.is_streaming = False
        message.reasoning = ""
        if result is not None:
            calls = result.tool_calls if chainable else []
            if not chainable and result.tool_calls:
                LOGGER.debug("Ignoring %d tool call(s) from a summary follow-up", len(result.tool_calls))
            text = result.text
            if not text:
                text = generate_tool_summary(calls) if calls else FOLLOW_UP_FALLBACK_TEXT
            message.content = text
            message.tool_calls = list(calls) or None
        return _FollowUp(message, result)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._config.follow_up_max_attempts)),
            wait=wait_exponential(
                multiplier=self._config.retry_min_seconds,
                min=self._config.retry_min_seconds,
                max=self._config.retry_max_seconds,
            ),
            retry=retry_if_exception(is_rate_limited),
            sleep=self._sleep,
        )


@dataclass(slots=True)
class _FollowUp:
    message: ChatMessage
    result: StreamOutcome | None
