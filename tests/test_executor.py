"""Tests for the Executor."""

import pytest

from completion_harness.core.executor import Executor
from completion_harness.events.bus import EventBus
from completion_harness.tools.base import Tool
from completion_harness.tools.registry import ToolRegistry
from completion_harness.types import (
    AgentEvent,
    EventType,
    InvocationStatus,
    ProgressEvent,
    ToolCall,
    ToolParameter,
    ToolResult,
)


class EchoTool(Tool):
    name = "echo"
    description = "Echo input"
    parameters = [ToolParameter(name="text", type="string", description="Text to echo")]

    async def execute(self, **kwargs) -> ToolResult:
        return ToolResult(success=True, output=f"Echo: {kwargs.get('text', '')}")


class FailTool(Tool):
    name = "fail"
    description = "Always fails"
    parameters = []

    async def execute(self, **kwargs) -> ToolResult:
        return ToolResult(success=False, output="", error="Always fails")


class RaisingRunner:
    async def execute(self, tool_name, arguments):
        raise RuntimeError("runner exploded")


@pytest.fixture
def registry():
    reg = ToolRegistry()
    reg.register(EchoTool())
    reg.register(FailTool())
    return reg


@pytest.fixture
def event_bus():
    return EventBus()


class TestExecution:
    async def test_single_tool(self, registry):
        log = []
        records = await Executor(registry, log).execute([
            ToolCall(id="echo-0-0", name="echo", arguments={"text": "hello"}),
        ])
        assert len(records) == 1
        assert records[0].status is InvocationStatus.DONE
        assert records[0].result.output == "Echo: hello"
        assert log == records

    async def test_order_preserved(self, registry):
        log = []
        calls = [
            ToolCall(id="echo-0-0", name="echo", arguments={"text": "1"}),
            ToolCall(id="fail-0-1", name="fail", arguments={}),
            ToolCall(id="echo-0-2", name="echo", arguments={"text": "3"}),
        ]
        records = await Executor(registry, log).execute(calls, round_index=0)
        assert [r.id for r in records] == ["echo-0-0", "fail-0-1", "echo-0-2"]
        assert records[1].status is InvocationStatus.ERROR

    async def test_runner_exception_becomes_error_result(self):
        log = []
        records = await Executor(RaisingRunner(), log).execute([
            ToolCall(id="x-0-0", name="x", arguments={}),
        ])
        assert records[0].status is InvocationStatus.ERROR
        assert "runner exploded" in records[0].result.error

    async def test_unknown_tool(self, registry):
        records = await Executor(registry, []).execute([
            ToolCall(id="nope-0-0", name="nope", arguments={}),
        ])
        assert "Unknown tool" in records[0].result.error


class TestProgress:
    async def test_two_reports_per_invocation(self, registry):
        events: list[ProgressEvent] = []
        await Executor(registry, [], events.append).execute([
            ToolCall(id="echo-1-0", name="echo", arguments={"text": "hi"}),
        ], round_index=1)
        assert len(events) == 2
        assert events[0].tool_invocations[0].status is InvocationStatus.INVOKING
        assert events[1].tool_invocations[0].status is InvocationStatus.DONE
        assert events[1].round_index == 1

    async def test_earlier_snapshot_not_mutated(self, registry):
        events: list[ProgressEvent] = []
        await Executor(registry, [], events.append).execute([
            ToolCall(id="echo-0-0", name="echo", arguments={"text": "hi"}),
        ])
        assert events[0].tool_invocations[0].result is None


class TestEvents:
    async def test_success_events(self, registry, event_bus):
        received: list[AgentEvent] = []
        event_bus.subscribe("*", received.append)
        await Executor(registry, [], event_bus=event_bus).execute([
            ToolCall(id="echo-0-0", name="echo", arguments={"text": "hi"}),
        ])
        assert [e.type for e in received] == [EventType.TOOL_EXECUTING, EventType.TOOL_EXECUTED]

    async def test_failure_events(self, registry, event_bus):
        received: list[AgentEvent] = []
        event_bus.subscribe(EventType.TOOL_ERROR, received.append)
        await Executor(registry, [], event_bus=event_bus).execute([
            ToolCall(id="fail-0-0", name="fail", arguments={}),
        ])
        assert len(received) == 1
        assert received[0].data["error"] == "Always fails"
