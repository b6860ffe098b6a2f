"""Tests for the tool registry and the Tool base class."""

from __future__ import annotations

import json
from typing import Any

from completion_harness.tools import registry as registry_module
from completion_harness.tools.base import Tool
from completion_harness.tools.registry import ToolRegistry, clip_output
from completion_harness.types import ToolParameter, ToolResult


class CurrencyTool(Tool):
    name = "convert_currency"
    description = "Convert an amount between currencies."
    parameters = [
        ToolParameter(name="amount", type="number", description="Amount"),
        ToolParameter(name="to", type="string", description="Target currency",
                      required=False, default="EUR", enum=["EUR", "USD"]),
    ]

    async def execute(self, **kwargs: Any) -> ToolResult:
        return ToolResult(success=True, output=f"{kwargs['amount']} {kwargs.get('to', 'EUR')}")


class BrokenTool(Tool):
    name = "broken"
    description = "Always raises."
    parameters: list[ToolParameter] = []

    async def execute(self, **kwargs: Any) -> ToolResult:
        raise RuntimeError("intentional failure")


class ChattyTool(Tool):
    name = "chatty"
    description = "Produces a lot of output."
    max_output = 100
    parameters: list[ToolParameter] = []

    async def execute(self, **kwargs: Any) -> ToolResult:
        return ToolResult(success=True, output="x" * 500)


class TestClipOutput:
    def test_short_text_unchanged(self):
        assert clip_output("hello", 100) == ("hello", 0)

    def test_keeps_head_and_tail(self):
        text, dropped = clip_output("A" * 100 + "B" * 100, 100)
        assert dropped == 100
        assert text.startswith("A" * 25)
        assert text.endswith("B" * 75)
        assert "[100 chars truncated]" in text


class TestToolBase:
    def test_input_schema(self):
        schema = CurrencyTool().to_input_schema()
        assert schema["required"] == ["amount"]
        assert schema["properties"]["to"] == {
            "type": "string",
            "description": "Target currency",
            "enum": ["EUR", "USD"],
            "default": "EUR",
        }

    def test_prompt_description(self):
        desc = CurrencyTool().to_prompt_description()
        assert "<name>convert_currency</name>" in desc
        schema_text = desc.split("<arguments>")[1].split("</arguments>")[0]
        assert json.loads(schema_text)["type"] == "object"


class TestToolRegistry:
    def test_register_and_get(self):
        reg = ToolRegistry()
        tool = CurrencyTool()
        reg.register(tool)
        assert reg.get("convert_currency") is tool
        assert reg.get("nonexistent") is None
        assert reg.tool_names() == ["convert_currency"]
        assert len(reg) == 1

    async def test_execute_success(self):
        reg = ToolRegistry()
        reg.register(CurrencyTool())
        result = await reg.execute("convert_currency", {"amount": 3, "to": "USD"})
        assert result.success
        assert result.output == "3 USD"

    async def test_execute_unknown_tool(self):
        reg = ToolRegistry()
        reg.register(CurrencyTool())
        result = await reg.execute("unknown", {})
        assert not result.success
        assert "Available: convert_currency" in result.error

    async def test_execute_catches_exception(self):
        reg = ToolRegistry()
        reg.register(BrokenTool())
        result = await reg.execute("broken", {})
        assert not result.success
        assert "intentional failure" in result.error

    async def test_execute_truncates_output(self):
        reg = ToolRegistry()
        reg.register(ChattyTool())
        result = await reg.execute("chatty", {})
        assert result.success
        assert "truncated" in result.output
        assert len(result.output) < 500

    async def test_execute_missing_required_argument(self):
        reg = ToolRegistry()
        reg.register(CurrencyTool())
        result = await reg.execute("convert_currency", {"to": "USD"})
        assert not result.success
        assert "Missing required argument(s) for convert_currency: amount" in result.error

    async def test_truncation_recorded_in_metadata(self):
        reg = ToolRegistry([ChattyTool()])
        result = await reg.execute("chatty", {})
        assert result.metadata["truncated_chars"] == 400

    def test_unregister_and_contains(self):
        reg = ToolRegistry([CurrencyTool()])
        assert "convert_currency" in reg
        assert reg.unregister("convert_currency")
        assert "convert_currency" not in reg
        assert not reg.unregister("convert_currency")


class _EntryPoint:
    def __init__(self, name, obj):
        self.name = name
        self._obj = obj

    def load(self):
        if isinstance(self._obj, Exception):
            raise self._obj
        return self._obj


class TestDiscover:
    def test_loads_classes_instances_and_skips_failures(self, monkeypatch):
        eps = [
            _EntryPoint("currency", CurrencyTool),
            _EntryPoint("chatty", ChattyTool()),
            _EntryPoint("bad", ImportError("missing dependency")),
            _EntryPoint("junk", 42),
        ]
        monkeypatch.setattr(registry_module, "entry_points", lambda group: eps)
        reg = ToolRegistry()
        assert reg.discover() == 2
        assert sorted(reg.tool_names()) == ["chatty", "convert_currency"]
