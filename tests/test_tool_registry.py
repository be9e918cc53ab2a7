"""Tests for the editor tool registry."""

from __future__ import annotations

from blockpilot.ai.tools.registry import ToolCategory, merge_tool_lists
from blockpilot.ai.tools.wiring import BUILTIN_TOOLS, build_editor_registry


def _function(tools: list[dict], name: str) -> dict:
    return next(tool["function"] for tool in tools if tool["function"]["name"] == name)


def test_builtin_registry_exposes_every_tool() -> None:
    registry = build_editor_registry()

    assert len(registry) == len(BUILTIN_TOOLS) == 10
    assert registry.list_tools() == [
        "edit-block",
        "add-section",
        "delete-block",
        "move-block",
        "update-global-styles",
        "get-block-markup",
        "highlight-block",
        "get-global-styles",
        "search-patterns",
        "get-pattern-markup",
    ]
    assert registry.list_tools(category=ToolCategory.PATTERNS) == ["search-patterns", "get-pattern-markup"]


def test_chainable_and_mutation_flags() -> None:
    registry = build_editor_registry()

    chainable = {name for name in registry.list_tools() if registry.is_chainable(name)}
    assert chainable == {
        "get-block-markup",
        "highlight-block",
        "get-global-styles",
        "search-patterns",
        "get-pattern-markup",
        "add-section",
    }
    assert {name: registry.mutation_target(name) for name in registry.list_tools() if registry.mutation_target(name)} == {
        "edit-block": "document",
        "add-section": "document",
        "delete-block": "document",
        "move-block": "document",
        "update-global-styles": "settings",
    }


def test_resolve_accepts_namespaced_names() -> None:
    registry = build_editor_registry()

    assert registry.get_schema("blu/edit-block").name == "edit-block"
    assert registry.get_schema("blu-edit-block").name == "edit-block"
    assert "blu/get-site-info" not in registry
    assert registry.resolve("unknown") is None


def test_resolve_strips_only_one_namespace_segment() -> None:
    registry = build_editor_registry()

    assert registry.resolve("acme-bulk-delete-block") is None
    assert registry.resolve("acme/bulk-delete-block") is None
    assert registry.get_schema("acme/delete-block").name == "delete-block"


def test_disabled_tools_are_hidden() -> None:
    registry = build_editor_registry(disabled=("delete-block",))

    assert "delete-block" not in registry
    assert "delete-block" not in registry.list_tools()
    assert all(tool["function"]["name"] != "delete-block" for tool in registry.to_openai_tools())


def test_unregister_removes_tool() -> None:
    registry = build_editor_registry()

    assert registry.unregister("highlight-block")
    assert not registry.unregister("highlight-block")
    assert "highlight-block" not in registry.list_tools(category=ToolCategory.NAVIGATION)


def test_openai_schema_shapes() -> None:
    tools = build_editor_registry().to_openai_tools()

    edit = _function(tools, "edit-block")
    assert edit["parameters"]["required"] == ["client_id", "block_content"]
    add = _function(tools, "add-section")
    assert add["parameters"]["properties"]["after_client_id"]["type"] == ["string", "null"]
    assert add["parameters"]["required"] == []
    move = _function(tools, "move-block")
    assert move["parameters"]["properties"]["position"]["enum"] == ["before", "after"]
    styles = _function(tools, "update-global-styles")
    assert styles["parameters"]["properties"]["settings"]["additionalProperties"] is True
    search = _function(tools, "search-patterns")
    assert search["parameters"]["properties"]["limit"]["minimum"] == 1


def test_merge_tool_lists_skips_remote_duplicates() -> None:
    registry = build_editor_registry()
    local = registry.to_openai_tools()
    remote = [
        {"type": "function", "function": {"name": "blu-edit-block", "description": "", "parameters": {}}},
        {"type": "function", "function": {"name": "blu-get-site-info", "description": "", "parameters": {}}},
        {"type": "function", "function": {"name": "acme-bulk-delete-block", "description": "", "parameters": {}}},
    ]

    merged = merge_tool_lists(local, remote, registry)

    assert len(merged) == len(local) + 2
    assert [tool["function"]["name"] for tool in merged[-2:]] == ["blu-get-site-info", "acme-bulk-delete-block"]
