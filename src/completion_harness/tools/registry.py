"""ToolRegistry: the tool runner behind tool-call resumption."""

from __future__ import annotations

import logging
from importlib.metadata import entry_points
from typing import Any, Iterator

from completion_harness.tools.base import Tool
from completion_harness.types import ToolResult

_logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "completion_harness.tools"


def clip_output(text: str, limit: int) -> tuple[str, int]:
    """Shorten *text* to about *limit* chars.  Returns ``(text, dropped)``.

    The head keeps a quarter of *limit* and the tail keeps the rest.
    """
    dropped = len(text) - limit
    if limit <= 0 or dropped <= 0:
        return text, 0
    head = limit // 4
    tail = text[len(text) - (limit - head):]
    return f"{text[:head]}\n\n... [{dropped} chars truncated] ...\n\n{tail}", dropped


class ToolRegistry:
    """Tools available to a session, looked up by the name the model uses."""

    def __init__(self, tools: list[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            _logger.warning("Tool %s registered twice; keeping the newer one", tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def list_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def tool_names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self.list_tools())

    def __len__(self) -> int:
        return len(self._tools)

    async def execute(self, tool_name: str, arguments: dict[str, Any]) -> ToolResult:
        """Run *tool_name* with model-supplied *arguments*.

        Unknown tools, missing required arguments and exceptions raised by
        the tool all come back as a failed ``ToolResult`` so the model can
        correct itself in the next round.
        """
        tool = self._tools.get(tool_name)
        if tool is None:
            known = ", ".join(self._tools) or "(none)"
            return ToolResult(
                success=False,
                output="",
                error=f"Unknown tool: {tool_name}. Available: {known}",
            )

        missing = [
            p.name for p in tool.parameters
            if p.required and p.name not in arguments
        ]
        if missing:
            return ToolResult(
                success=False,
                output="",
                error=f"Missing required argument(s) for {tool_name}: {', '.join(missing)}",
            )

        try:
            result = await tool.execute(**arguments)
        except Exception as e:
            _logger.warning("Tool %s raised: %s", tool_name, e, exc_info=True)
            return ToolResult(
                success=False,
                output="",
                error=f"Tool '{tool_name}' execution failed: {type(e).__name__}: {e}",
            )

        output, dropped = clip_output(result.output, tool.max_output)
        if dropped:
            result = ToolResult(
                success=result.success,
                output=output,
                error=result.error,
                metadata={**result.metadata, "truncated_chars": dropped},
            )
        return result

    def discover(self) -> int:
        """Register tools advertised under the ``completion_harness.tools``
        entry point group.  Returns how many were added.

        An entry point may name a ``Tool`` subclass, a ``Tool`` instance or
        a factory returning one.  Broken plugins are logged and skipped.
        """
        added = 0
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                obj = ep.load()
                if isinstance(obj, Tool):
                    tool = obj
                elif callable(obj):
                    tool = obj()
                else:
                    tool = None
                if not isinstance(tool, Tool):
                    _logger.warning("Entry point %s did not provide a Tool: %r", ep.name, obj)
                    continue
            except Exception:
                _logger.exception("Failed to load tool plugin: %s", ep.name)
                continue
            self.register(tool)
            added += 1
            _logger.info("Discovered plugin tool: %s", tool.name)
        return added
