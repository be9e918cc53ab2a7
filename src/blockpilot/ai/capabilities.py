"""Capability provider interface and the in-process implementation.

A capability provider is whatever transport exposes server-side tools to the
assistant. The chat session only needs to list the tools, advertise them to
the model and forward calls it has no local handler for.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Protocol, runtime_checkable

from ..errors import ToolExecutionError, UnknownToolError

__all__ = [
    "CapabilityProvider",
    "CapabilityResult",
    "LocalCapabilityProvider",
    "ToolDescriptor",
    "normalize_input_schema",
    "openai_tool_name",
]

LOGGER = logging.getLogger(__name__)


def openai_tool_name(name: str) -> str:
    """Function names may not contain ``/``; ``blu/edit-block`` becomes ``blu-edit-block``."""

    return name.replace("/", "-")


def normalize_input_schema(schema: Any) -> Dict[str, Any]:
    """Coerce a provider schema into an object schema the model API accepts."""

    if not isinstance(schema, Mapping) or not schema:
        return {"type": "object", "properties": {}, "required": []}
    required = schema.get("required")
    return {
        "type": schema.get("type") or "object",
        "properties": dict(schema.get("properties") or {}),
        "required": list(required) if isinstance(required, (list, tuple)) else [],
    }


@dataclass(slots=True)
class ToolDescriptor:
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = field(default_factory=dict)
    annotations: Dict[str, Any] = field(default_factory=dict)

    @property
    def exposed_name(self) -> str:
        return openai_tool_name(self.name)

    @property
    def read_only(self) -> bool:
        return bool(self.annotations.get("readonly") or self.annotations.get("readOnlyHint"))

    @property
    def destructive(self) -> bool:
        return bool(self.annotations.get("destructiveHint"))

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.exposed_name,
                "description": self.description or "",
                "parameters": normalize_input_schema(self.input_schema),
            },
        }


@dataclass(slots=True)
class CapabilityResult:
    """Result of a provider call: a list of content items plus an error flag."""

    content: List[Dict[str, Any]] = field(default_factory=list)
    is_error: bool = False

    @classmethod
    def text(cls, text: str, *, is_error: bool = False) -> "CapabilityResult":
        return cls(content=[{"type": "text", "text": text}], is_error=is_error)


@runtime_checkable
class CapabilityProvider(Protocol):
    async def connect(self) -> None:
        ...

    async def list_tools(self) -> List[ToolDescriptor]:
        ...

    async def call_tool(self, name: str, arguments: Mapping[str, Any]) -> CapabilityResult:
        ...

    def is_connected(self) -> bool:
        ...

    def tools_for_openai(self) -> List[Dict[str, Any]]:
        ...


ToolCallable = Callable[[Dict[str, Any]], Any]


class LocalCapabilityProvider:
    """In-process provider backed by registered Python callables.

    Tools are addressed either by their registered name or by the exposed
    OpenAI-safe name. A callable may return a :class:`CapabilityResult`, a
    string, or any JSON-serializable value; coroutines are awaited. A tool
    registered without a callable is advertised but answers with an error.
    """

    def __init__(self, *, connect_error: BaseException | None = None) -> None:
        self._tools: Dict[str, ToolDescriptor] = {}
        self._handlers: Dict[str, ToolCallable | None] = {}
        self._connected = False
        self._connect_error = connect_error
        self.calls: List[tuple[str, Dict[str, Any]]] = []

    def register(
        self,
        name: str,
        handler: ToolCallable | None = None,
        *,
        description: str = "",
        input_schema: Mapping[str, Any] | None = None,
        read_only: bool = False,
        destructive: bool = False,
    ) -> ToolDescriptor:
        annotations: Dict[str, Any] = {}
        if read_only:
            annotations["readOnlyHint"] = True
        if destructive:
            annotations["destructiveHint"] = True
        descriptor = ToolDescriptor(
            name=name,
            description=description,
            input_schema=dict(input_schema or {}),
            annotations=annotations,
        )
        self._tools[name] = descriptor
        self._handlers[name] = handler
        LOGGER.debug("Registered capability: %s", name)
        return descriptor

    async def connect(self) -> None:
        if self._connect_error is not None:
            raise self._connect_error
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    async def list_tools(self) -> List[ToolDescriptor]:
        return list(self._tools.values())

    def tools_for_openai(self) -> List[Dict[str, Any]]:
        return [descriptor.to_openai() for descriptor in self._tools.values()]

    def descriptor(self, name: str) -> ToolDescriptor | None:
        resolved = self._resolve(name)
        return self._tools.get(resolved) if resolved else None

    async def call_tool(self, name: str, arguments: Mapping[str, Any]) -> CapabilityResult:
        if not self._connected:
            raise ToolExecutionError(message="Capability provider is not connected")
        resolved = self._resolve(name)
        if resolved is None:
            raise UnknownToolError(message=f"Unknown tool: {name}", details={"tool": name})
        self.calls.append((resolved, dict(arguments)))
        handler = self._handlers.get(resolved)
        if handler is None:
            return CapabilityResult.text(json.dumps({"error": f"Tool {resolved} is not available"}), is_error=True)
        try:
            value = handler(dict(arguments))
            if inspect.isawaitable(value):
                value = await value
        except Exception as exc:
            raise ToolExecutionError(message=f"Tool call failed: {exc}", details={"tool": resolved}) from exc
        return _coerce_result(value)

    def _resolve(self, name: str) -> str | None:
        if name in self._tools:
            return name
        for registered in self._tools:
            if openai_tool_name(registered) == name:
                return registered
        return None


def _coerce_result(value: Any) -> CapabilityResult:
    if isinstance(value, CapabilityResult):
        return value
    if value is None:
        return CapabilityResult()
    if isinstance(value, str):
        return CapabilityResult.text(value)
    return CapabilityResult.text(json.dumps(value))
