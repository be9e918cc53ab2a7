"""Error types shared by the editor, the tools and the orchestration layer.

Tool-level failures derive from :class:`ToolError` and serialize to the
JSON payload returned to the model. Turn-level failures (cancellation,
rate limiting, partial undo) are plain exceptions handled by the
orchestrator and the chat session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Sequence


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------

class ErrorCode:
    """Constants for error codes used in tool responses."""

    # Content errors
    CONTENT_REQUIRED = "content_required"
    INVALID_CONTENT = "invalid_content"
    INVALID_MARKUP = "invalid_markup"

    # Document errors
    BLOCK_NOT_FOUND = "block_not_found"
    CONTAINER_UNAVAILABLE = "container_unavailable"
    INVALID_POSITION = "invalid_position"

    # Lookup errors
    PATTERN_NOT_FOUND = "pattern_not_found"
    STYLES_UNAVAILABLE = "styles_unavailable"

    # Execution errors
    UNKNOWN_TOOL = "unknown_tool"
    PROVIDER_ERROR = "provider_error"
    OPERATION_CANCELLED = "operation_cancelled"

    # General errors
    INTERNAL_ERROR = "internal_error"
    INVALID_PARAMETER = "invalid_parameter"
    MISSING_PARAMETER = "missing_parameter"


# -----------------------------------------------------------------------------
# Tool Errors
# -----------------------------------------------------------------------------

@dataclass
class ToolError(Exception):
    """Base exception class for all tool errors.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
        suggestion: Actionable guidance for recovery.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for JSON tool responses."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


@dataclass
class ValidationError(ToolError):
    """Malformed tool arguments or malformed replacement markup."""

    error_code: str = field(default=ErrorCode.INVALID_CONTENT)
    message: str = field(default="Content is not valid block markup")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Send serialized block markup starting with <!-- wp:")


@dataclass
class MissingParameterError(ValidationError):
    """A required tool argument was not supplied."""

    error_code: str = field(default=ErrorCode.MISSING_PARAMETER)
    message: str = field(default="A required parameter is missing")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    parameter: str = field(default="")

    def __post_init__(self) -> None:
        if self.parameter and self.message == "A required parameter is missing":
            self.message = f"Missing required parameter: {self.parameter}"
        super().__post_init__()


@dataclass
class BlockNotFoundError(ToolError):
    """The referenced block id does not exist in the document."""

    error_code: str = field(default=ErrorCode.BLOCK_NOT_FOUND)
    message: str = field(default="Block not found")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Use a block id from the current editor context")

    node_id: str | None = field(default=None)

    def __post_init__(self) -> None:
        if self.node_id and self.message == "Block not found":
            self.message = f"Block not found: {self.node_id}"
        super().__post_init__()


@dataclass
class ContainerUnavailableError(ToolError):
    """External content behind a container block could not be read or written."""

    error_code: str = field(default=ErrorCode.CONTAINER_UNAVAILABLE)
    message: str = field(default="Template part content is unavailable")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")


@dataclass
class PatternNotFoundError(ToolError):
    error_code: str = field(default=ErrorCode.PATTERN_NOT_FOUND)
    message: str = field(default="Pattern not found")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Call search-patterns to find a valid slug")


@dataclass
class ToolExecutionError(ToolError):
    """A capability call raised or reported an error."""

    error_code: str = field(default=ErrorCode.PROVIDER_ERROR)
    message: str = field(default="Tool execution failed")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")


@dataclass
class UnknownToolError(ToolError):
    error_code: str = field(default=ErrorCode.UNKNOWN_TOOL)
    message: str = field(default="Unknown tool")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")


# -----------------------------------------------------------------------------
# Turn-level Errors
# -----------------------------------------------------------------------------

class BlockParseError(ValueError):
    """Raised when block markup cannot be tokenized into a tree."""


class AbortError(Exception):
    """Raised when the user cancels a running turn."""

    def __init__(self, message: str = "Turn cancelled") -> None:
        super().__init__(message)


class StreamBusyError(RuntimeError):
    """Raised when a second stream is opened for a message that is already streaming."""


class RateLimitedError(Exception):
    """Raised by model clients that surface rate limiting without an HTTP status."""


class PartialRestoreError(Exception):
    """Raised when declining changes could not restore every captured part."""

    def __init__(self, failures: Sequence[tuple[str, BaseException]], restored: Sequence[str] = ()) -> None:
        self.failures = list(failures)
        self.restored = list(restored)
        parts = ", ".join(f"{part}: {exc}" for part, exc in self.failures)
        super().__init__(f"Failed to restore {parts}")

    @property
    def failed_parts(self) -> list[str]:
        return [part for part, _ in self.failures]
