"""Tools for Completion Harness."""

from completion_harness.tools.base import Tool
from completion_harness.tools.registry import ToolRegistry

__all__ = ["Tool", "ToolRegistry"]
