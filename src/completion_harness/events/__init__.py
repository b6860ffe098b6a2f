"""Lifecycle events for Completion Harness."""

from completion_harness.events.bus import EventBus

__all__ = ["EventBus"]
