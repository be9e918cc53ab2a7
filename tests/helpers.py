"""Shared test helpers and stub classes.

Reusable fakes for the model client plus a small page fixture with a header
template part. Import from here instead of duplicating them per test file.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Sequence

from blockpilot.ai.client import AIStreamEvent, CompletionResult, TokenUsage
from blockpilot.editor.document_model import BlockDocument, DocumentMetadata, InMemoryContainerStore
from blockpilot.editor.global_styles import GlobalStylesRecord, GlobalStylesService, InMemoryGlobalStylesBackend

HEADER_REF = "demo//header"
HEADER_MARKUP = (
    "<!-- wp:site-title /-->\n\n"
    "<!-- wp:paragraph --><p>Tagline</p><!-- /wp:paragraph -->"
)
PAGE_MARKUP = (
    '<!-- wp:template-part {"slug":"header","theme":"demo","area":"header"} /-->\n\n'
    "<!-- wp:heading --><h2>Welcome</h2><!-- /wp:heading -->\n\n"
    "<!-- wp:paragraph --><p>Hello world</p><!-- /wp:paragraph -->\n\n"
    '<!-- wp:group {"layout":{"type":"constrained"}} --><div class="wp-block-group">'
    "<!-- wp:paragraph --><p>Inside</p><!-- /wp:paragraph --></div><!-- /wp:group -->"
)


def make_document(markup: str = PAGE_MARKUP, *, title: str = "Home") -> BlockDocument:
    store = InMemoryContainerStore({HEADER_REF: HEADER_MARKUP})
    return BlockDocument.from_markup(
        markup, containers=store, metadata=DocumentMetadata(title=title, post_id=42)
    )


def make_styles(*, theme_slugs: Sequence[str] = ("primary",)) -> GlobalStylesService:
    record = GlobalStylesRecord(
        record_id="styles-1",
        settings={
            "color": {
                "palette": {
                    "theme": [{"slug": "primary", "color": "#000000", "name": "Primary"}],
                    "custom": [],
                }
            }
        },
        styles={"typography": {"fontSize": "16px"}},
    )
    return GlobalStylesService(InMemoryGlobalStylesBackend(record, theme_slugs=theme_slugs))


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------


def text(content: str) -> AIStreamEvent:
    return AIStreamEvent(type="content.delta", content=content)


def reasoning(content: str) -> AIStreamEvent:
    return AIStreamEvent(type="reasoning.delta", content=content)


def usage(prompt: int = 10, completion: int = 5) -> AIStreamEvent:
    return AIStreamEvent(
        type="usage",
        usage=TokenUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion),
    )


def tool_call(name: str, arguments: str, *, call_id: str, index: int = 0) -> List[AIStreamEvent]:
    """Events for one complete tool call: the id chunk followed by the finished arguments."""

    return [
        AIStreamEvent(type="tool_calls.function.id", tool_index=index, tool_call_id=call_id, tool_name=name),
        AIStreamEvent(
            type="tool_calls.function.arguments.done",
            tool_index=index,
            tool_name=name,
            tool_arguments=arguments,
        ),
    ]


class ScriptedModelClient:
    """Model client replaying one scripted response per ``stream_chat`` call.

    A scripted entry is either a list of stream events or an exception raised
    when the stream is consumed. Every call records its keyword arguments.
    """

    def __init__(self, turns: Sequence[Sequence[AIStreamEvent] | BaseException] = (), *, completion: str = "") -> None:
        self._turns: List[Sequence[AIStreamEvent] | BaseException] = list(turns)
        self.completion = completion
        self.calls: List[Dict[str, Any]] = []
        self.completions: List[Dict[str, Any]] = []

    def queue(self, *turns: Sequence[AIStreamEvent] | BaseException) -> None:
        self._turns.extend(turns)

    @property
    def remaining(self) -> int:
        return len(self._turns)

    async def stream_chat(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        model: str | None = None,
        tools: Sequence[Mapping[str, Any]] | None = None,
        temperature: float | None = None,
        max_completion_tokens: int | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ):
        self.calls.append(
            {
                "messages": [dict(message) for message in messages],
                "model": model,
                "tools": list(tools) if tools else None,
                "temperature": temperature,
                "max_completion_tokens": max_completion_tokens,
                "max_tokens": max_tokens,
            }
        )
        if not self._turns:
            raise AssertionError("Unexpected model call")
        turn = self._turns.pop(0)
        if isinstance(turn, BaseException):
            raise turn
        for event in turn:
            yield event

    async def complete_chat(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> CompletionResult:
        self.completions.append({"messages": list(messages), "model": model})
        return CompletionResult(content=self.completion)


class RecordingSleep:
    """Async sleep replacement that records requested delays without waiting."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
