"""Tests for tool-use markup parsing and the tool-usage prompt."""

from completion_harness.llm.tool_use import ToolUseParser, build_tool_system_prompt
from completion_harness.tools.base import Tool
from completion_harness.types import ToolParameter, ToolResult


class ReadFileTool(Tool):
    name = "read_file"
    description = "Read a file"
    parameters = [ToolParameter(name="path", type="string", description="File path")]

    async def execute(self, **kwargs) -> ToolResult:
        return ToolResult(success=True, output="")


class TestMarkup:
    def test_single_call(self):
        text = (
            "Let me look.\n<tool_use>\n  <name>read_file</name>\n"
            '  <arguments>{"path": "main.py"}</arguments>\n</tool_use>'
        )
        calls = ToolUseParser().parse(text, round_index=2)
        assert len(calls) == 1
        assert calls[0].name == "read_file"
        assert calls[0].arguments == {"path": "main.py"}
        assert calls[0].id == "read_file-2-0"
        assert calls[0].raw.startswith("<tool_use>")

    def test_multiple_calls_in_order(self):
        text = (
            "<tool_use><name>a</name><arguments>{}</arguments></tool_use>"
            "<tool_use><name>b</name><arguments>{\"x\": 1}</arguments></tool_use>"
        )
        calls = ToolUseParser().parse(text)
        assert [c.name for c in calls] == ["a", "b"]
        assert [c.id for c in calls] == ["a-0-0", "b-0-1"]

    def test_fenced_arguments(self):
        text = '<tool_use><name>a</name><arguments>```json\n{"k": "v"}\n```</arguments></tool_use>'
        assert ToolUseParser().parse(text)[0].arguments == {"k": "v"}

    def test_invalid_arguments_kept_as_input(self):
        text = "<tool_use><name>a</name><arguments>not json</arguments></tool_use>"
        assert ToolUseParser().parse(text)[0].arguments == {"input": "not json"}

    def test_no_markup(self):
        assert ToolUseParser(["read_file"]).parse("Just an answer.") == []
        assert ToolUseParser().parse("") == []


class TestBareJson:
    def test_known_tool(self):
        parser = ToolUseParser(["read_file"])
        calls = parser.parse('Sure: {"tool": "read_file", "args": {"path": "a/{b}.py"}}')
        assert len(calls) == 1
        assert calls[0].arguments == {"path": "a/{b}.py"}

    def test_unknown_tool_ignored(self):
        parser = ToolUseParser(["read_file"])
        assert parser.parse('{"tool": "rm_rf", "args": {}}') == []

    def test_disabled_without_tool_names(self):
        assert ToolUseParser().parse('{"tool": "read_file", "args": {}}') == []


class TestSystemPrompt:
    def test_wraps_user_prompt(self):
        prompt = build_tool_system_prompt("Be concise.", [ReadFileTool()])
        assert "<name>read_file</name>" in prompt
        assert '"path"' in prompt
        assert prompt.rstrip().endswith("Be concise.")
        assert '{"key": "value"}' in prompt

    def test_no_tools_returns_prompt(self):
        assert build_tool_system_prompt("Be concise.", []) == "Be concise."
