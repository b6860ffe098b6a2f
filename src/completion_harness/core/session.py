"""CompletionSession: the single entry point for a chat completion.

    history -> window -> assemble -> round 0 -> stream -> tool rounds

The session owns no generation logic itself; it wires the assembler,
parameter builder, stream consumer and tool-call resumer together,
manages the abort handle and publishes lifecycle events.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Sequence

from completion_harness.config import HarnessConfig
from completion_harness.core.assembler import (
    AttachmentReader,
    LocalAttachmentReader,
    MessageAssembler,
)
from completion_harness.core.cancellation import AbortRegistry, PauseToken
from completion_harness.core.executor import Executor, ToolRunner
from completion_harness.core.history import select_context_window
from completion_harness.core.resumer import (
    PendingRequestChain,
    ResumeResult,
    ToolCallResumer,
)
from completion_harness.core.stream import ProgressSink, StreamConsumer
from completion_harness.errors import SessionAborted
from completion_harness.events.bus import EventBus
from completion_harness.llm.models import is_openai_o_series
from completion_harness.llm.params import RequestParameterBuilder
from completion_harness.llm.tool_use import ToolUseParser, build_tool_system_prompt
from completion_harness.tools.base import Tool
from completion_harness.types import (
    Assistant,
    ConversationMessage,
    EventType,
    Model,
    SessionMetrics,
    SessionOutcome,
    SessionResult,
    ToolInvocationRecord,
)

_logger = logging.getLogger(__name__)

FORMATTING_DIRECTIVE = "Formatting re-enabled"

FilterSink = Callable[[list[ConversationMessage]], Any]


class CompletionSession:
    """Runs completion sessions against one OpenAI-compatible endpoint.

    Parameters
    ----------
    client:
        Transport exposing ``send_completion(params, abort=, timeout=)``
        (normally an ``AsyncLLMClient``).
    config:
        Harness configuration; the active profile selects provider quirks.
    runner:
        Tool runner (normally a ``ToolRegistry``).  Without one, tool
        markup in the output is left alone.
    reader:
        Attachment reader for message files.
    aborts:
        Registry of abort handles, shared with whoever may cancel.
    event_bus:
        Event bus for lifecycle events (optional).
    """

    def __init__(
        self,
        client: Any,
        config: HarnessConfig | None = None,
        *,
        runner: ToolRunner | None = None,
        reader: AttachmentReader | None = None,
        aborts: AbortRegistry | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._client = client
        self._config = config or HarnessConfig()
        profile = self._config.active_profile
        self._builder = RequestParameterBuilder(profile)
        self._assembler = MessageAssembler(
            reader or LocalAttachmentReader("."),
            provider_id=profile.provider,
            not_support_array_content=profile.not_support_array_content,
        )
        self._runner = runner
        self._aborts = aborts or AbortRegistry()
        self._event_bus = event_bus or EventBus()

    @property
    def aborts(self) -> AbortRegistry:
        return self._aborts

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    def abort(self, message_id: str, reason: str = "aborted by user") -> bool:
        """Hard-cancel the session started by *message_id*."""
        return self._aborts.abort(message_id, reason)

    # ------------------------------------------------------------------
    # Request assembly
    # ------------------------------------------------------------------

    def resolve_model(self, assistant: Assistant) -> Model:
        return assistant.model or self._config.default_model

    def build_system_message(
        self,
        assistant: Assistant,
        model: Model,
        tools: Sequence[Tool] = (),
    ) -> dict[str, Any]:
        message = {"role": "system", "content": assistant.prompt or ""}
        if is_openai_o_series(model):
            message = {
                "role": "developer",
                "content": f"{FORMATTING_DIRECTIVE}\n{message['content']}",
            }
        if tools:
            message["content"] = build_tool_system_prompt(message["content"], tools)
        return message

    async def build_messages(
        self,
        filtered: Sequence[ConversationMessage],
        model: Model,
        system_message: dict[str, Any],
    ) -> list[dict[str, Any]]:
        assembled = [await self._assembler.assemble(m, model) for m in filtered]
        if not system_message["content"]:
            return assembled
        return [system_message, *assembled]

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def run(
        self,
        messages: Sequence[ConversationMessage],
        assistant: Assistant | None = None,
        *,
        on_progress: ProgressSink,
        on_filter_messages: FilterSink | None = None,
        tools: Sequence[Tool] | None = None,
        pause: PauseToken | None = None,
    ) -> SessionResult:
        """Run one session until the model stops requesting tools.

        Raises
        ------
        TransportError
            A round's request failed.
        SessionAborted
            The abort handle fired, including after the last round ended.
        """
        assistant = assistant or self._config.assistant.build()
        settings = assistant.settings
        model = self.resolve_model(assistant)
        if self._runner is None:
            tools = []
        elif tools is None:
            tools = self._runner.list_tools() if hasattr(self._runner, "list_tools") else []
        tools = list(tools)

        system_message = self.build_system_message(assistant, model, tools)
        filtered = select_context_window(messages, settings.context_count)
        if on_filter_messages is not None:
            result = on_filter_messages(list(filtered))
            if inspect.isawaitable(result):
                await result

        req_messages = await self.build_messages(filtered, model, system_message)
        params = self._builder.build(assistant, model, req_messages)

        last_user = next((m for m in reversed(filtered) if m.role == "user"), None)
        handle, cleanup = self._aborts.create(last_user.id if last_user else None)

        metrics = SessionMetrics()
        invocation_log: list[ToolInvocationRecord] = []
        consumer = StreamConsumer(
            model=model,
            assistant=assistant,
            metrics=metrics,
            invocation_log=invocation_log,
            report=on_progress,
            streaming=params.stream,
            pause=pause,
        )
        chain = PendingRequestChain(req_messages, self._config.tool_result_role)

        async def send_round(chain_messages: list[dict[str, Any]], round_index: int) -> Any:
            await self._event_bus.publish(
                EventType.ROUND_STARTED, round=round_index, messages=len(chain_messages),
            )
            return await self._client.send_completion(
                params.with_messages(chain_messages),
                abort=handle,
                timeout=self._config.request_timeout,
            )

        _logger.info(
            "Session started: model=%s messages=%d tools=%d",
            model.id, len(req_messages), len(tools),
        )
        await self._event_bus.publish(
            EventType.SESSION_STARTED,
            model=model.id,
            message_id=handle.key,
            messages=len(req_messages),
        )

        try:
            response = await send_round(chain.messages, 0)
            output = await consumer.consume(response, 0)
            if output.paused:
                resumed = ResumeResult(SessionOutcome.PAUSED, output.text, 1)
            elif not tools:
                resumed = ResumeResult(SessionOutcome.COMPLETED, output.text, 1)
            else:
                resumer = ToolCallResumer(
                    parser=ToolUseParser([t.name for t in tools]),
                    executor=Executor(
                        self._runner, invocation_log, on_progress, self._event_bus, metrics,
                    ),
                    chain=chain,
                    send_round=send_round,
                    consumer=consumer,
                    max_rounds=self._config.max_rounds,
                    event_bus=self._event_bus,
                )
                resumed = await resumer.resume(output.text, 0)
        except SessionAborted as e:
            await self._event_bus.publish(EventType.SESSION_CANCELLED, reason=e.reason)
            raise
        except Exception as e:
            await self._event_bus.publish(
                EventType.SESSION_ERROR, error=f"{type(e).__name__}: {e}",
            )
            raise
        finally:
            cleanup()

        # The abort may have fired after the last delta arrived.
        if handle.aborted:
            await self._event_bus.publish(EventType.SESSION_CANCELLED, reason=handle.reason)
            handle.raise_if_aborted()

        result = SessionResult(
            outcome=resumed.outcome,
            text=resumed.text,
            rounds=resumed.rounds,
            tool_invocations=list(invocation_log),
            metrics=metrics.snapshot(),
        )
        _logger.info(
            "Session finished: outcome=%s rounds=%d tools=%d",
            result.outcome.value, result.rounds, len(result.tool_invocations),
        )
        await self._event_bus.publish(
            EventType.SESSION_DONE,
            outcome=result.outcome.value,
            rounds=result.rounds,
            response=result.text[:500],
        )
        return result
