"""Declarative registry for the editor tools advertised to the model.

Each registration pairs a tool implementation with its schema. The schema
also records how the orchestrator treats the tool: whether its result may
be followed by more tool calls (``chainable``) and which part of the page
it changes (``mutates``), which decides what the undo snapshot captures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Literal, Mapping, Sequence

from ..capabilities import openai_tool_name

__all__ = [
    "MutationTarget",
    "ParameterSchema",
    "ToolCategory",
    "ToolRegistration",
    "ToolRegistry",
    "ToolSchema",
    "merge_tool_lists",
]

LOGGER = logging.getLogger(__name__)

MutationTarget = Literal["document", "settings"]


# -----------------------------------------------------------------------------
# Tool Categories
# -----------------------------------------------------------------------------


class ToolCategory(Enum):
    """Categories of editor tools."""

    BLOCKS = auto()  # Block mutations
    NAVIGATION = auto()  # Reading and highlighting blocks
    STYLES = auto()  # Global styles
    PATTERNS = auto()  # Pattern library


# -----------------------------------------------------------------------------
# Tool Schema Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ParameterSchema:
    """Schema for a single tool parameter.

    Attributes:
        name: Parameter name.
        type: JSON Schema type, or a list of types for nullable values.
        description: Human-readable description.
        required: Whether the parameter is required.
        enum: List of allowed values.
        minimum: Minimum value for numbers.
        maximum: Maximum value for numbers.
        additional_properties: Whether free-form objects are accepted.
    """

    name: str
    type: str | Sequence[str]
    description: str
    required: bool = False
    enum: Sequence[Any] | None = None
    minimum: int | float | None = None
    maximum: int | float | None = None
    additional_properties: bool = False

    def to_json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {
            "type": self.type if isinstance(self.type, str) else list(self.type),
            "description": self.description,
        }
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.minimum is not None:
            schema["minimum"] = self.minimum
        if self.maximum is not None:
            schema["maximum"] = self.maximum
        if self.type == "object":
            schema["additionalProperties"] = self.additional_properties
        return schema


@dataclass(slots=True)
class ToolSchema:
    """Complete schema for a tool.

    Attributes:
        name: Tool name as exposed to the model.
        description: Description shown to the model.
        parameters: List of parameters.
        category: Tool category.
        chainable: Whether the model may call further tools after this one.
        mutates: Which part of the page the tool changes, if any.
    """

    name: str
    description: str
    parameters: Sequence[ParameterSchema] = field(default_factory=list)
    category: ToolCategory = ToolCategory.NAVIGATION
    chainable: bool = False
    mutates: MutationTarget | None = None

    def to_json_schema(self) -> dict[str, Any]:
        properties: dict[str, Any] = {}
        required: list[str] = []
        for param in self.parameters:
            properties[param.name] = param.to_json_schema()
            if param.required:
                required.append(param.name)
        return {"type": "object", "properties": properties, "required": required}


# -----------------------------------------------------------------------------
# Tool Registration
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolRegistration:
    schema: ToolSchema
    impl: Any
    enabled: bool = True

    @property
    def name(self) -> str:
        return self.schema.name


class ToolRegistry:
    """Registry for editor tools.

    Lookups accept the registered name or a namespaced variant produced by a
    capability provider (``blu/edit-block`` or ``blu-edit-block`` resolve to
    ``edit-block``).
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolRegistration] = {}
        self._by_category: dict[ToolCategory, list[str]] = {cat: [] for cat in ToolCategory}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, tool: Any, *, schema: ToolSchema | None = None, enabled: bool = True) -> None:
        tool_schema = schema if schema is not None else tool.schema()
        self._tools[tool_schema.name] = ToolRegistration(schema=tool_schema, impl=tool, enabled=enabled)
        if tool_schema.name not in self._by_category[tool_schema.category]:
            self._by_category[tool_schema.category].append(tool_schema.name)
        LOGGER.debug("Registered tool: %s (category=%s)", tool_schema.name, tool_schema.category.name)

    def unregister(self, name: str) -> bool:
        registration = self._tools.pop(name, None)
        if registration is None:
            return False
        category_list = self._by_category.get(registration.schema.category, [])
        if name in category_list:
            category_list.remove(name)
        LOGGER.debug("Unregistered tool: %s", name)
        return True

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def resolve(self, name: str) -> ToolRegistration | None:
        registration = self._tools.get(name)
        if registration is None:
            exposed = openai_tool_name(name)
            registration = self._tools.get(exposed)
            if registration is None:
                # Only a single leading namespace segment is stripped.
                namespace, sep, local_name = exposed.partition("-")
                if sep and namespace:
                    registration = self._tools.get(local_name)
        if registration is None or not registration.enabled:
            return None
        return registration

    def get_tool(self, name: str) -> Any | None:
        registration = self.resolve(name)
        return registration.impl if registration else None

    def get_schema(self, name: str) -> ToolSchema | None:
        registration = self.resolve(name)
        return registration.schema if registration else None

    def has_tool(self, name: str) -> bool:
        return self.resolve(name) is not None

    def is_chainable(self, name: str) -> bool:
        schema = self.get_schema(name)
        return bool(schema and schema.chainable)

    def mutation_target(self, name: str) -> MutationTarget | None:
        schema = self.get_schema(name)
        return schema.mutates if schema else None

    def list_tools(self, *, category: ToolCategory | None = None) -> list[str]:
        names = self._by_category.get(category, []) if category else list(self._tools)
        return [name for name in names if self._tools[name].enabled]

    def to_openai_tools(self, *, exclude: Sequence[str] = ()) -> list[dict[str, Any]]:
        """Convert enabled tools to the OpenAI function-calling format."""

        skipped = set(exclude)
        tools: list[dict[str, Any]] = []
        for registration in self._tools.values():
            if not registration.enabled or registration.name in skipped:
                continue
            tools.append(
                {
                    "type": "function",
                    "function": {
                        "name": registration.schema.name,
                        "description": registration.schema.description,
                        "parameters": registration.schema.to_json_schema(),
                    },
                }
            )
        return tools

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has_tool(name)


def merge_tool_lists(
    local: Sequence[Mapping[str, Any]], remote: Sequence[Mapping[str, Any]], registry: ToolRegistry
) -> list[dict[str, Any]]:
    """Local tools first, then provider tools that no local tool already handles."""

    merged = [dict(tool) for tool in local]
    for tool in remote:
        name = str(tool.get("function", {}).get("name", ""))
        if name and registry.has_tool(name):
            continue
        merged.append(dict(tool))
    return merged
