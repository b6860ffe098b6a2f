"""Prompt-based tool use: markup parsing and the tool-usage system prompt.

The model is told to request a tool with::

    <tool_use>
      <name>read_file</name>
      <arguments>{"path": "main.py"}</arguments>
    </tool_use>

Bare ``{"tool": "<name>", "args": {...}}`` objects naming a registered
tool are accepted as well.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any, Sequence

from completion_harness.types import ToolCall

if TYPE_CHECKING:
    from completion_harness.tools.base import Tool

_logger = logging.getLogger(__name__)

_TOOL_USE_PATTERN = re.compile(
    r"<tool_use>\s*<name>\s*(.*?)\s*</name>\s*"
    r"<arguments>\s*(.*?)\s*</arguments>\s*</tool_use>",
    re.DOTALL,
)


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------

def _extract_balanced_json(text: str, start: int) -> str | None:
    """Extract a balanced JSON object starting at *start* (must be ``{``).

    Handles nested braces and quoted strings so that
    ``{"args": {"k": "v"}}`` is captured in full.
    """
    if start >= len(text) or text[start] != "{":
        return None
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if escape:
            escape = False
            continue
        if ch == "\\":
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def _loads_lenient(raw: str) -> Any:
    """``json.loads`` with a single repair pass for markdown fences."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        cleaned = raw.strip()
        for prefix in ("```json", "```"):
            if cleaned.startswith(prefix):
                cleaned = cleaned[len(prefix) :]
        if cleaned.endswith("```"):
            cleaned = cleaned[:-3]
        return json.loads(cleaned.strip())


def _parse_arguments(raw: str) -> dict[str, Any]:
    if not raw.strip():
        return {}
    try:
        args = _loads_lenient(raw)
    except json.JSONDecodeError:
        _logger.warning("Tool arguments are not valid JSON: %r", raw[:200])
        return {"input": raw}
    if isinstance(args, dict):
        return args
    return {"input": args}


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class ToolUseParser:
    """Finds tool invocations in accumulated answer text.

    ``tool_names`` enables the bare-JSON fallback for registered tools.
    """

    def __init__(self, tool_names: Sequence[str] | None = None) -> None:
        self._tool_names = set(tool_names) if tool_names else set()
        if self._tool_names:
            escaped = "|".join(re.escape(n) for n in sorted(self._tool_names))
            self._known_tool_pattern: re.Pattern[str] | None = re.compile(
                r'\{\s*"tool"\s*:\s*"(' + escaped + r')"'
            )
        else:
            self._known_tool_pattern = None

    def parse(self, text: str, round_index: int = 0) -> list[ToolCall]:
        """Return tool calls in the order they appear in *text*."""
        if not text:
            return []
        found: list[tuple[str, dict[str, Any], str]] = []
        for match in _TOOL_USE_PATTERN.finditer(text):
            name = match.group(1).strip()
            if name:
                found.append((name, _parse_arguments(match.group(2)), match.group(0)))
        if not found:
            found = self._parse_bare_json(text)

        return [
            ToolCall(
                id=f"{name}-{round_index}-{position}",
                name=name,
                arguments=args,
                raw=raw,
            )
            for position, (name, args, raw) in enumerate(found)
        ]

    def _parse_bare_json(self, text: str) -> list[tuple[str, dict[str, Any], str]]:
        if self._known_tool_pattern is None:
            return []
        found: list[tuple[str, dict[str, Any], str]] = []
        for match in self._known_tool_pattern.finditer(text):
            obj = _extract_balanced_json(text, match.start())
            if not obj:
                continue
            try:
                data = json.loads(obj)
            except json.JSONDecodeError:
                continue
            args = data.get("args", data.get("arguments", {}))
            if isinstance(args, str):
                args = _parse_arguments(args)
            if not isinstance(args, dict):
                args = {"input": args}
            found.append((data["tool"], args, obj))
        return found


# ---------------------------------------------------------------------------
# System prompt
# ---------------------------------------------------------------------------

_TOOL_USE_PROMPT = """\
In this environment you have access to a set of tools you can use to answer \
the user's question. You can use one or more tools per message, and will \
receive the result of each tool use in the next message.

## Tool Use Formatting

Tool use is formatted using XML-style tags. The tool name is enclosed in \
<name></name> and the arguments are a single JSON object enclosed in \
<arguments></arguments>:

<tool_use>
  <name>tool_name</name>
  <arguments>{{"key": "value"}}</arguments>
</tool_use>

After a tool use, stop and wait for the result. Only use the tools listed \
below, and never invent a result yourself.

## Available Tools

{available_tools}

## User Instructions

{user_prompt}
"""


def build_tool_system_prompt(user_prompt: str, tools: Sequence[Tool]) -> str:
    """Wrap *user_prompt* with instructions for the given tools."""
    if not tools:
        return user_prompt
    available = "\n".join(t.to_prompt_description() for t in tools)
    return _TOOL_USE_PROMPT.format(
        available_tools=f"<tools>\n{available}\n</tools>",
        user_prompt=user_prompt or "(none)",
    )
