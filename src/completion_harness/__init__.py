"""Completion Harness - streaming chat completions with tool-call resumption."""

__version__ = "0.1.0"
