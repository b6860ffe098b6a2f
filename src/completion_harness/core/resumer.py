"""Tool-call resumption: execute requested tools and continue the chat.

    text -> parse tool calls -> execute -> extend chain -> new round -> text

The loop ends when a round's text requests no tool, when the round is
paused, or when ``max_rounds`` would be exceeded.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence

from completion_harness.core.executor import Executor
from completion_harness.core.stream import StreamConsumer
from completion_harness.events.bus import EventBus
from completion_harness.llm.tool_use import ToolUseParser
from completion_harness.types import (
    EventType,
    SessionOutcome,
    ToolCall,
    ToolInvocationRecord,
    ToolResult,
)

_logger = logging.getLogger(__name__)

# (messages, round_index) -> transport response for that round
RoundSender = Callable[[list[dict[str, Any]], int], Awaitable[Any]]


class PendingRequestChain:
    """Message list resent on every round.  Only ever appended to."""

    def __init__(
        self,
        messages: Sequence[dict[str, Any]],
        tool_result_role: str = "tool",
    ) -> None:
        self._messages: list[dict[str, Any]] = list(messages)
        self._tool_result_role = tool_result_role

    @property
    def messages(self) -> list[dict[str, Any]]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def tool_result_message(self, record: ToolInvocationRecord) -> dict[str, Any]:
        result = record.result or ToolResult(success=False, output="", error="no result")
        content = result.to_message()
        if self._tool_result_role == "user":
            return {
                "role": "user",
                "content": f"Here is the result of tool call {record.id}:\n{content}",
            }
        return {"role": "tool", "tool_call_id": record.id, "content": content}

    def assistant_message(
        self, text: str, records: Sequence[ToolInvocationRecord],
    ) -> dict[str, Any]:
        """The round's assistant turn.

        With tool-role results, the turn also lists the calls so every
        ``tool`` message answers a ``tool_calls`` entry with the same id.
        """
        message: dict[str, Any] = {"role": "assistant", "content": text}
        if records and self._tool_result_role == "tool":
            message["tool_calls"] = [
                {
                    "id": r.id,
                    "type": "function",
                    "function": {
                        "name": r.tool,
                        "arguments": json.dumps(r.arguments, ensure_ascii=False),
                    },
                }
                for r in records
            ]
        return message

    def append_round(self, text: str, records: Sequence[ToolInvocationRecord]) -> int:
        """Append the round's assistant text and one message per tool result."""
        added = [self.assistant_message(text, records)]
        added.extend(self.tool_result_message(r) for r in records)
        self._messages.extend(added)
        return len(added)


@dataclass
class ResumeResult:
    outcome: SessionOutcome
    text: str
    rounds: int
    pending_calls: list[ToolCall] = field(default_factory=list)


class ToolCallResumer:
    """Runs the tool-call loop that follows round 0.

    ``max_rounds`` counts every round including round 0; 0 means
    unbounded.
    """

    def __init__(
        self,
        parser: ToolUseParser,
        executor: Executor,
        chain: PendingRequestChain,
        send_round: RoundSender,
        consumer: StreamConsumer,
        max_rounds: int = 0,
        event_bus: EventBus | None = None,
    ) -> None:
        self._parser = parser
        self._executor = executor
        self._chain = chain
        self._send_round = send_round
        self._consumer = consumer
        self._max_rounds = max_rounds
        self._event_bus = event_bus

    async def resume(self, text: str, round_index: int = 0) -> ResumeResult:
        while True:
            calls = self._parser.parse(text, round_index)
            if not calls:
                return ResumeResult(SessionOutcome.COMPLETED, text, round_index + 1)

            if self._max_rounds and round_index + 1 >= self._max_rounds:
                _logger.warning(
                    "Round limit %d reached with %d pending tool call(s)",
                    self._max_rounds, len(calls),
                )
                if self._event_bus:
                    await self._event_bus.publish(
                        EventType.ROUND_LIMIT,
                        max_rounds=self._max_rounds,
                        pending=[c.name for c in calls],
                    )
                return ResumeResult(
                    SessionOutcome.ROUND_LIMIT_EXCEEDED, text, round_index + 1, calls,
                )

            records = await self._executor.execute(calls, round_index)
            self._chain.append_round(text, records)

            round_index += 1
            _logger.info(
                "Resuming with round %d after %d tool call(s)", round_index, len(records),
            )
            response = await self._send_round(self._chain.messages, round_index)
            output = await self._consumer.consume(response, round_index)
            if output.paused:
                return ResumeResult(SessionOutcome.PAUSED, output.text, round_index + 1)
            text = output.text
