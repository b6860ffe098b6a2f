"""LLM client and request parameters for Completion Harness."""

from completion_harness.llm.client import AsyncLLMClient
from completion_harness.llm.params import (
    OMIT,
    RequestParameterBuilder,
    RequestParameters,
    resolve_family,
)
from completion_harness.llm.tool_use import ToolUseParser, build_tool_system_prompt

__all__ = [
    "OMIT",
    "AsyncLLMClient",
    "RequestParameterBuilder",
    "RequestParameters",
    "ToolUseParser",
    "build_tool_system_prompt",
    "resolve_family",
]
