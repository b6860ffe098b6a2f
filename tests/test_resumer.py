"""Tests for PendingRequestChain and ToolCallResumer."""

import pytest

from completion_harness.core.executor import Executor
from completion_harness.core.resumer import PendingRequestChain, ToolCallResumer
from completion_harness.core.stream import StreamConsumer
from completion_harness.events.bus import EventBus
from completion_harness.llm.tool_use import ToolUseParser
from completion_harness.tools.base import Tool
from completion_harness.tools.registry import ToolRegistry
from completion_harness.types import (
    Assistant,
    EventType,
    InvocationStatus,
    Model,
    SessionMetrics,
    SessionOutcome,
    ToolInvocationRecord,
    ToolParameter,
    ToolResult,
)

INITIAL = [{"role": "system", "content": "sys"}, {"role": "user", "content": "q"}]


def tool_use(name: str, args: str = "{}") -> str:
    return f"<tool_use><name>{name}</name><arguments>{args}</arguments></tool_use>"


class LookupTool(Tool):
    name = "lookup"
    description = "Look something up"
    parameters = [ToolParameter(name="key", type="string", description="Key", required=False)]

    def __init__(self):
        self.calls = []

    async def execute(self, **kwargs) -> ToolResult:
        self.calls.append(kwargs)
        return ToolResult(success=True, output=f"value of {kwargs.get('key')}")


class ScriptedSender:
    """Answers every round with the next scripted text as a stream."""

    def __init__(self, *texts):
        self.texts = list(texts)
        self.requests = []

    async def __call__(self, messages, round_index):
        self.requests.append((list(messages), round_index))
        text = self.texts.pop(0)
        return _stream([{"choices": [{"delta": {"content": text}}]}])


async def _stream(chunks):
    for chunk in chunks:
        yield chunk


class Harness:
    def __init__(self, *texts, max_rounds=0, role="tool"):
        self.tool = LookupTool()
        registry = ToolRegistry()
        registry.register(self.tool)
        self.log: list[ToolInvocationRecord] = []
        self.events = []
        self.bus = EventBus()
        self.chain = PendingRequestChain(INITIAL, role)
        self.sender = ScriptedSender(*texts)
        self.resumer = ToolCallResumer(
            parser=ToolUseParser(["lookup"]),
            executor=Executor(registry, self.log, self.events.append, self.bus),
            chain=self.chain,
            send_round=self.sender,
            consumer=StreamConsumer(
                model=Model(id="gpt-4o"),
                assistant=Assistant(),
                metrics=SessionMetrics(),
                invocation_log=self.log,
                report=self.events.append,
            ),
            max_rounds=max_rounds,
            event_bus=self.bus,
        )


class TestPendingRequestChain:
    def test_tool_role_message(self):
        chain = PendingRequestChain(INITIAL)
        record = ToolInvocationRecord(
            id="lookup-0-0", tool="lookup", arguments={"key": "x"}, round_index=0,
            status=InvocationStatus.DONE, result=ToolResult(success=True, output="42"),
        )
        added = chain.append_round("calling", [record])
        assert added == 2
        assert chain.messages[-2:] == [
            {
                "role": "assistant",
                "content": "calling",
                "tool_calls": [{
                    "id": "lookup-0-0",
                    "type": "function",
                    "function": {"name": "lookup", "arguments": '{"key": "x"}'},
                }],
            },
            {"role": "tool", "tool_call_id": "lookup-0-0", "content": "42"},
        ]

    def test_every_tool_message_answers_a_tool_call(self):
        chain = PendingRequestChain(INITIAL)
        records = [
            ToolInvocationRecord(
                id=f"lookup-0-{i}", tool="lookup", arguments={}, round_index=0,
                result=ToolResult(success=True, output=str(i)),
            )
            for i in range(2)
        ]
        chain.append_round("two calls", records)
        assistant, *results = chain.messages[-3:]
        assert [c["id"] for c in assistant["tool_calls"]] == [
            m["tool_call_id"] for m in results
        ]

    def test_user_role_has_no_tool_calls(self):
        chain = PendingRequestChain(INITIAL, tool_result_role="user")
        record = ToolInvocationRecord(
            id="lookup-0-0", tool="lookup", arguments={}, round_index=0,
            result=ToolResult(success=True, output="42"),
        )
        chain.append_round("calling", [record])
        assert chain.messages[-2] == {"role": "assistant", "content": "calling"}

    def test_user_role_message(self):
        chain = PendingRequestChain(INITIAL, tool_result_role="user")
        record = ToolInvocationRecord(
            id="lookup-0-0", tool="lookup", arguments={}, round_index=0,
            result=ToolResult(success=False, output="", error="boom"),
        )
        message = chain.tool_result_message(record)
        assert message["role"] == "user"
        assert "[Tool Error] boom" in message["content"]

    def test_initial_messages_not_shared(self):
        initial = list(INITIAL)
        chain = PendingRequestChain(initial)
        chain.append_round("x", [])
        assert len(initial) == 2
        assert len(chain) == 3


class TestResume:
    @pytest.mark.asyncio
    async def test_no_markers_no_follow_up(self):
        h = Harness()
        result = await h.resumer.resume("Plain answer.", 0)
        assert result.outcome is SessionOutcome.COMPLETED
        assert result.rounds == 1
        assert len(h.chain) == len(INITIAL)
        assert h.sender.requests == []

    @pytest.mark.asyncio
    async def test_one_marker_one_follow_up(self):
        h = Harness("The answer is 42.")
        result = await h.resumer.resume("Checking. " + tool_use("lookup", '{"key": "x"}'), 0)
        assert h.tool.calls == [{"key": "x"}]
        assert len(h.chain) == len(INITIAL) + 2
        assert len(h.sender.requests) == 1
        messages, round_index = h.sender.requests[0]
        assert round_index == 1
        assert messages[-1] == {
            "role": "tool", "tool_call_id": "lookup-0-0", "content": "value of x",
        }
        assert result.outcome is SessionOutcome.COMPLETED
        assert result.text == "The answer is 42."
        assert result.rounds == 2

    @pytest.mark.asyncio
    async def test_chained_rounds(self):
        h = Harness(tool_use("lookup", '{"key": "b"}'), "done")
        result = await h.resumer.resume(tool_use("lookup", '{"key": "a"}'), 0)
        assert [c["key"] for c in h.tool.calls] == ["a", "b"]
        assert [r.id for r in h.log] == ["lookup-0-0", "lookup-1-0"]
        assert result.rounds == 3
        # Second request carries everything from the first plus two more
        assert len(h.sender.requests[1][0]) == len(h.sender.requests[0][0]) + 2

    @pytest.mark.asyncio
    async def test_round_limit(self):
        h = Harness(tool_use("lookup"), tool_use("lookup"), max_rounds=2)
        limits = []
        h.bus.subscribe(EventType.ROUND_LIMIT, limits.append)
        result = await h.resumer.resume(tool_use("lookup"), 0)
        assert result.outcome is SessionOutcome.ROUND_LIMIT_EXCEEDED
        assert result.rounds == 2
        assert len(h.tool.calls) == 1
        assert [c.name for c in result.pending_calls] == ["lookup"]
        assert len(limits) == 1

    @pytest.mark.asyncio
    async def test_unbounded_when_zero(self):
        texts = [tool_use("lookup")] * 5 + ["end"]
        h = Harness(*texts, max_rounds=0)
        result = await h.resumer.resume(tool_use("lookup"), 0)
        assert result.outcome is SessionOutcome.COMPLETED
        assert result.rounds == 7
