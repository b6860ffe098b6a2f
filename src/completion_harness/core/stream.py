"""StreamConsumer: drives one round's response and reports progress."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable

from completion_harness.core.cancellation import PauseToken
from completion_harness.core.phase import ReasoningPhaseTracker
from completion_harness.llm.models import is_hunyuan_search_model, is_zhipu_model
from completion_harness.types import (
    Assistant,
    Model,
    ProgressEvent,
    SessionMetrics,
    StreamDelta,
    ToolInvocationRecord,
)

_logger = logging.getLogger(__name__)

# Sync or async callable receiving every ProgressEvent
ProgressSink = Callable[[ProgressEvent], Any]


async def deliver(sink: ProgressSink, event: ProgressEvent) -> None:
    result = sink(event)
    if inspect.isawaitable(result):
        await result


@dataclass
class RoundOutput:
    """What one round produced."""

    text: str = ""
    paused: bool = False
    usage: dict[str, Any] | None = None
    finish_reason: str | None = None
    deltas: int = 0


class StreamConsumer:
    """Consumes a round's response in either streaming or single-shot mode.

    Metrics and the phase tracker are shared by every round of a session,
    so first-token and end-of-thinking times are recorded once.
    """

    def __init__(
        self,
        *,
        model: Model,
        assistant: Assistant,
        metrics: SessionMetrics,
        invocation_log: list[ToolInvocationRecord],
        report: ProgressSink,
        streaming: bool = True,
        pause: PauseToken | None = None,
        tracker: ReasoningPhaseTracker | None = None,
    ) -> None:
        self._model = model
        self._assistant = assistant
        self._metrics = metrics
        self._log = invocation_log
        self._report = report
        self._streaming = streaming
        self._pause = pause
        self._tracker = tracker or ReasoningPhaseTracker()

    async def consume(self, response: Any, round_index: int = 0) -> RoundOutput:
        if not self._streaming:
            return await self._consume_single(response, round_index)
        return await self._consume_stream(response, round_index)

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    async def _consume_single(self, response: dict[str, Any], round_index: int) -> RoundOutput:
        choices = response.get("choices") or [{}]
        choice = choices[0] if isinstance(choices[0], dict) else {}
        message = choice.get("message") or {}
        text = message.get("content")
        if not isinstance(text, str):
            text = ""
        reasoning = message.get("reasoning_content") or message.get("reasoning") or ""
        usage = response.get("usage") or None

        now = self._metrics.elapsed_ms()
        self._metrics.update(now, usage)
        metrics = self._metrics.snapshot()
        metrics["time_first_token_millsec"] = 0

        await deliver(self._report, ProgressEvent(
            text=text,
            reasoning_content=reasoning if isinstance(reasoning, str) else "",
            usage=usage,
            metrics=metrics,
            citations=response.get("citations"),
            tool_invocations=tuple(self._log),
            round_index=round_index,
        ))
        return RoundOutput(
            text=text,
            usage=usage,
            finish_reason=choice.get("finish_reason"),
            deltas=1,
        )

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _consume_stream(
        self,
        stream: AsyncIterator[dict[str, Any]],
        round_index: int,
    ) -> RoundOutput:
        output = RoundOutput()
        buffer: list[str] = []
        first_delta = True

        try:
            async for chunk in stream:
                if self._pause is not None and self._pause.is_paused:
                    _logger.info("Round %d paused after %d deltas", round_index, output.deltas)
                    output.paused = True
                    break

                delta = StreamDelta.from_chunk(chunk)
                output.deltas += 1
                if delta.content:
                    buffer.append(delta.content)
                self._tracker.observe(delta)

                now = self._metrics.elapsed_ms()
                self._metrics.mark_first_token(now)
                if not self._metrics.first_content.is_set and self._tracker.classify(delta):
                    self._metrics.mark_first_content(now)
                self._metrics.update(now, delta.usage)

                if delta.usage:
                    output.usage = delta.usage
                if delta.finish_reason:
                    output.finish_reason = delta.finish_reason

                await deliver(self._report, ProgressEvent(
                    text=delta.content,
                    reasoning_content=delta.reasoning_content,
                    usage=delta.usage,
                    metrics=self._metrics.snapshot(),
                    web_search=self._web_search(delta, first_delta),
                    annotations=delta.annotations,
                    citations=delta.citations,
                    tool_invocations=tuple(self._log),
                    round_index=round_index,
                ))
                first_delta = False
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        output.text = "".join(buffer)
        return output

    def _web_search(self, delta: StreamDelta, first_delta: bool) -> Any:
        if not self._assistant.enable_web_search:
            return None
        if is_zhipu_model(self._model) and delta.finish_reason == "stop":
            return delta.raw.get("web_search")
        if first_delta and is_hunyuan_search_model(self._model):
            search_info = delta.raw.get("search_info") or {}
            return search_info.get("search_results")
        return None
