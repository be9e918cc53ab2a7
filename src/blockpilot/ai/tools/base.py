"""Base classes for editor tools.

Tools receive their collaborators through :class:`ToolContext` and return a
JSON-serializable payload. Expected failures are raised as
:class:`~blockpilot.errors.ToolError`; the orchestrator turns them into error
tool results. Returning ``None`` means the local source had nothing and the
call should be forwarded to the capability provider.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Mapping

from ...editor.global_styles import GlobalStylesService
from ...editor.mutations import DocumentMutationExecutor
from ...errors import MissingParameterError, ValidationError
from ..capabilities import CapabilityProvider
from .pattern_customizer import PatternCustomizer
from .pattern_library import PatternLibrary
from .registry import MutationTarget, ParameterSchema, ToolCategory, ToolSchema

if TYPE_CHECKING:
    from ..orchestration.progress import ProgressBroadcaster

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolContext:
    """Runtime collaborators available to every tool.

    Attributes:
        executor: Applies block mutations to the open document.
        styles: Global styles service, when the site exposes one.
        patterns: Pattern library, when configured.
        customizer: Rewrites pattern placeholder text.
        capabilities: Provider used for fallbacks.
        progress: Receives human-readable progress messages.
        user_message: Latest user request, used when customizing patterns.
    """

    executor: DocumentMutationExecutor
    styles: GlobalStylesService | None = None
    patterns: PatternLibrary | None = None
    customizer: PatternCustomizer | None = None
    capabilities: CapabilityProvider | None = None
    progress: ProgressBroadcaster | None = None
    user_message: str = ""

    @property
    def page_title(self) -> str:
        return self.executor.document.metadata.title

    async def report(self, message: str, min_duration_ms: int = 400) -> None:
        if self.progress is not None:
            await self.progress.update_progress(message, min_duration_ms)


class EditorTool(ABC):
    """Abstract base class for editor tools.

    Subclasses declare ``name``, ``description`` and ``parameters`` and
    implement :meth:`execute`. ``chainable`` and ``mutates`` feed the
    orchestrator's chaining and snapshot decisions.
    """

    name: ClassVar[str] = ""
    description: ClassVar[str] = ""
    parameters: ClassVar[tuple[ParameterSchema, ...]] = ()
    category: ClassVar[ToolCategory] = ToolCategory.NAVIGATION
    chainable: ClassVar[bool] = False
    mutates: ClassVar[MutationTarget | None] = None

    @classmethod
    def schema(cls) -> ToolSchema:
        return ToolSchema(
            name=cls.name,
            description=cls.description,
            parameters=cls.parameters,
            category=cls.category,
            chainable=cls.chainable,
            mutates=cls.mutates,
        )

    async def run(self, context: ToolContext, params: Mapping[str, Any] | None = None) -> dict[str, Any] | None:
        arguments = dict(params) if params else {}
        self.validate(arguments)
        return await self.execute(context, arguments)

    def validate(self, params: dict[str, Any]) -> None:
        for param in self.parameters:
            if param.required and params.get(param.name) in (None, ""):
                raise MissingParameterError(parameter=param.name)
            value = params.get(param.name)
            if value is not None and param.enum and value not in param.enum:
                raise ValidationError(
                    message=f"Parameter '{param.name}' must be one of {', '.join(map(str, param.enum))}",
                    details={"parameter": param.name, "value": value},
                    suggestion="",
                )

    @abstractmethod
    async def execute(self, context: ToolContext, params: dict[str, Any]) -> dict[str, Any] | None:
        """Run the tool and return the payload reported back to the model."""


def require_string(params: Mapping[str, Any], name: str) -> str:
    value = params.get(name)
    if not isinstance(value, str) or not value.strip():
        raise MissingParameterError(parameter=name)
    return value


def unescape_quotes(content: str) -> str:
    """Undo ``\\"`` escapes the model copies from JSON-encoded tool results."""

    return content.replace('\\"', '"')
