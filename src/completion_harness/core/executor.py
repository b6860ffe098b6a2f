"""Executor: runs parsed tool calls and keeps the invocation log.

Tools run one at a time, in the order the model requested them.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Protocol

from completion_harness.core.stream import ProgressSink, deliver
from completion_harness.events.bus import EventBus
from completion_harness.types import (
    EventType,
    InvocationStatus,
    ProgressEvent,
    SessionMetrics,
    ToolCall,
    ToolInvocationRecord,
    ToolResult,
)

_logger = logging.getLogger(__name__)


class ToolRunner(Protocol):
    """Anything that can execute a tool by name (e.g. ``ToolRegistry``)."""

    async def execute(self, tool_name: str, arguments: dict[str, Any]) -> ToolResult:
        ...


class Executor:
    """Runs tool calls through a ``ToolRunner``.

    Every invocation is appended to the shared log; its entry is replaced
    (never mutated) when the result arrives, so snapshots already handed
    to the caller stay as they were.

    Usage::

        executor = Executor(registry, log, report, event_bus)
        records = await executor.execute(tool_calls, round_index=0)
    """

    def __init__(
        self,
        runner: ToolRunner,
        invocation_log: list[ToolInvocationRecord],
        report: ProgressSink | None = None,
        event_bus: EventBus | None = None,
        metrics: SessionMetrics | None = None,
    ) -> None:
        self._runner = runner
        self._log = invocation_log
        self._report = report
        self._event_bus = event_bus
        self._metrics = metrics

    async def execute(
        self,
        tool_calls: list[ToolCall],
        round_index: int = 0,
    ) -> list[ToolInvocationRecord]:
        """Execute *tool_calls* sequentially.  Returns their final records."""
        records: list[ToolInvocationRecord] = []
        for tc in tool_calls:
            records.append(await self._execute_one(tc, round_index))
        return records

    async def _execute_one(self, tc: ToolCall, round_index: int) -> ToolInvocationRecord:
        record = ToolInvocationRecord(
            id=tc.id,
            tool=tc.name,
            arguments=tc.arguments,
            round_index=round_index,
        )
        position = len(self._log)
        self._log.append(record)
        await self._emit(EventType.TOOL_EXECUTING, {
            "id": tc.id,
            "tool": tc.name,
            "arguments": tc.arguments,
            "round": round_index,
        })
        await self._progress(round_index)

        try:
            result = await self._runner.execute(tc.name, tc.arguments)
        except Exception as e:
            _logger.warning("Tool %s failed: %s", tc.name, e)
            result = ToolResult(
                success=False,
                output="",
                error=f"Tool '{tc.name}' execution failed: {type(e).__name__}: {e}",
            )

        status = InvocationStatus.DONE if result.success else InvocationStatus.ERROR
        record = dataclasses.replace(record, status=status, result=result)
        self._log[position] = record

        if result.success:
            await self._emit(EventType.TOOL_EXECUTED, {
                "id": tc.id,
                "tool": tc.name,
                "output_length": len(result.output),
            })
        else:
            await self._emit(EventType.TOOL_ERROR, {
                "id": tc.id,
                "tool": tc.name,
                "error": result.error,
            })
        await self._progress(round_index)
        return record

    async def _progress(self, round_index: int) -> None:
        if self._report is None:
            return
        metrics = self._metrics.snapshot() if self._metrics else {}
        await deliver(self._report, ProgressEvent(
            metrics=metrics,
            tool_invocations=tuple(self._log),
            round_index=round_index,
        ))

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._event_bus:
            await self._event_bus.publish(event_type, **data)
