"""Editor tools exposed to the model."""

from .registry import ParameterSchema, ToolCategory, ToolRegistry, ToolSchema

__all__ = ["ParameterSchema", "ToolCategory", "ToolRegistry", "ToolSchema"]
