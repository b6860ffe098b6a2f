"""Tool base class.

A tool is advertised to the model inside the system prompt (see
``llm.tool_use.build_tool_system_prompt``) and run by the ``ToolRegistry``
when the model answers with ``<tool_use>`` markup.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any

from completion_harness.types import ToolParameter, ToolResult


def parameter_schema(param: ToolParameter) -> dict[str, Any]:
    """JSON schema fragment for a single parameter."""
    schema: dict[str, Any] = {"type": param.type, "description": param.description}
    if param.enum:
        schema["enum"] = list(param.enum)
    if param.default is not None:
        schema["default"] = param.default
    return schema


class Tool(ABC):
    """Something the model may call between rounds.

    Subclasses declare ``name``, ``description`` and ``parameters`` on the
    class and implement ``execute``.  Output longer than ``max_output``
    characters is clipped by the registry.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    max_output: int = 5000

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        ...

    def to_input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {p.name: parameter_schema(p) for p in self.parameters},
            "required": [p.name for p in self.parameters if p.required],
        }

    def to_prompt_description(self) -> str:
        arguments = json.dumps(self.to_input_schema(), ensure_ascii=False)
        lines = [
            "<tool>",
            f"  <name>{self.name}</name>",
            f"  <description>{self.description}</description>",
            f"  <arguments>{arguments}</arguments>",
            "</tool>",
        ]
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"
