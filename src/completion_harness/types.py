"""Shared data types for Completion Harness."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Conversation types
# ---------------------------------------------------------------------------

class FileType(enum.Enum):
    """Kinds of files a message can carry."""

    IMAGE = "image"
    TEXT = "text"
    DOCUMENT = "document"
    OTHER = "other"


@dataclass(frozen=True)
class Attachment:
    """A stored file attached to a conversation message."""

    id: str
    ext: str
    origin_name: str
    type: FileType = FileType.TEXT

    @property
    def storage_name(self) -> str:
        return f"{self.id}{self.ext}"

    @property
    def is_textual(self) -> bool:
        return self.type in (FileType.TEXT, FileType.DOCUMENT)


@dataclass(frozen=True)
class ConversationMessage:
    """A stored chat message.

    ``content`` is plain text or an ordered sequence of OpenAI-style
    content parts (``{"type": "text", ...}`` / ``{"type": "image_url", ...}``).
    ``type`` is ``"text"`` for dialog entries and ``"clear"`` for a context
    reset marker.
    """

    role: str  # system, developer, user, assistant, tool
    content: str | tuple[dict[str, Any], ...] = ""
    attachments: tuple[Attachment, ...] = ()
    id: str = ""
    type: str = "text"
    is_preset: bool = False

    @property
    def text(self) -> str:
        """Text of the message, joining text parts for structured content."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(
            part.get("text", "") for part in self.content
            if part.get("type") == "text"
        )


@dataclass(frozen=True)
class Model:
    """A model offered by a provider.

    ``capabilities`` holds explicit tags (``"vision"``, ``"reasoning"``,
    ``"web_search"``) that override name-based detection.
    """

    id: str
    provider: str = ""
    name: str = ""
    capabilities: tuple[str, ...] = ()


DEFAULT_MAX_TOKENS = 4096
DEFAULT_CONTEXT_COUNT = 5


@dataclass(frozen=True)
class AssistantSettings:
    """Generation settings of an assistant."""

    temperature: float | None = 0.7
    top_p: float | None = 1.0
    context_count: int = DEFAULT_CONTEXT_COUNT
    max_tokens: int | None = None
    stream_output: bool = True
    reasoning_effort: str | None = None  # low | medium | high
    custom_parameters: dict[str, Any] = field(default_factory=dict)

    @property
    def effective_max_tokens(self) -> int:
        return self.max_tokens or DEFAULT_MAX_TOKENS


@dataclass(frozen=True)
class Assistant:
    """Configured persona: system prompt, model and generation settings."""

    id: str = "default"
    name: str = "Default Assistant"
    prompt: str = ""
    model: Model | None = None
    settings: AssistantSettings = field(default_factory=AssistantSettings)
    enable_web_search: bool = False


# ---------------------------------------------------------------------------
# Streaming types
# ---------------------------------------------------------------------------

# Reasoning text arrives under different keys depending on the provider.
REASONING_FIELDS = ("reasoning_content", "reasoning", "thinking")


@dataclass(frozen=True)
class StreamDelta:
    """One incremental unit of a streamed completion."""

    content: str = ""
    reasoning_content: str = ""
    finish_reason: str | None = None
    usage: dict[str, Any] | None = None
    citations: list[Any] | None = None
    annotations: list[Any] | None = None
    has_reasoning: bool = False
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_chunk(cls, chunk: dict[str, Any]) -> StreamDelta:
        """Read a ``chat.completion.chunk`` permissively.

        Missing or malformed fields default to empty values.
        """
        choices = chunk.get("choices") or [{}]
        choice = choices[0] if isinstance(choices[0], dict) else {}
        delta = choice.get("delta")
        if not isinstance(delta, dict):
            delta = {}

        reasoning = ""
        has_reasoning = False
        for key in REASONING_FIELDS:
            value = delta.get(key)
            if value:
                has_reasoning = True
                if not reasoning and isinstance(value, str):
                    reasoning = value

        content = delta.get("content")
        return cls(
            content=content if isinstance(content, str) else "",
            reasoning_content=reasoning,
            finish_reason=choice.get("finish_reason"),
            usage=chunk.get("usage") or None,
            citations=chunk.get("citations"),
            annotations=delta.get("annotations"),
            has_reasoning=has_reasoning,
            raw=chunk,
        )


class SetOnce(Generic[T]):
    """A value that accepts exactly one write.

    Later writes are rejected: ``set()`` returns False and the stored
    value is kept.
    """

    __slots__ = ("_value", "_is_set")

    def __init__(self) -> None:
        self._value: T | None = None
        self._is_set = False

    def set(self, value: T) -> bool:
        if self._is_set:
            return False
        self._value = value
        self._is_set = True
        return True

    @property
    def is_set(self) -> bool:
        return self._is_set

    def get(self, default: T | None = None) -> T | None:
        return self._value if self._is_set else default

    def __repr__(self) -> str:
        if self._is_set:
            return f"SetOnce({self._value!r})"
        return "SetOnce(<unset>)"


class SessionMetrics:
    """Timing milestones of one completion session, in milliseconds.

    ``first_token`` is the elapsed time to the first delta and
    ``first_content`` the elapsed time to the end of the reasoning phase.
    Both are written once.
    """

    def __init__(self, clock: Any = time.monotonic) -> None:
        self._clock = clock
        self.start = clock()
        self.first_token: SetOnce[float] = SetOnce()
        self.first_content: SetOnce[float] = SetOnce()
        self.completion_tokens: int | None = None
        self.time_completion_ms: float = 0.0
        self.time_thinking_ms: float = 0.0

    def elapsed_ms(self) -> float:
        return (self._clock() - self.start) * 1000

    def mark_first_token(self, now_ms: float) -> bool:
        return self.first_token.set(max(0.0, now_ms))

    def mark_first_content(self, now_ms: float) -> bool:
        # Never earlier than the first token.
        floor = self.first_token.get(0.0) or 0.0
        return self.first_content.set(max(floor, now_ms))

    def update(self, now_ms: float, usage: dict[str, Any] | None = None) -> None:
        """Recompute derived values for the delta observed at *now_ms*."""
        self.time_completion_ms = now_ms
        self.time_thinking_ms = self.first_content.get(0.0) or 0.0
        if usage and usage.get("completion_tokens") is not None:
            self.completion_tokens = usage["completion_tokens"]

    def snapshot(self) -> dict[str, Any]:
        return {
            "completion_tokens": self.completion_tokens,
            "time_completion_millsec": self.time_completion_ms,
            "time_first_token_millsec": self.first_token.get(0.0),
            "time_thinking_millsec": self.time_thinking_ms,
        }


# ---------------------------------------------------------------------------
# Tool types
# ---------------------------------------------------------------------------

@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    type: str  # string, integer, number, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


@dataclass
class ToolCall:
    """Tool invocation parsed from model output."""

    id: str
    name: str
    arguments: dict[str, Any]
    raw: str = ""


@dataclass
class ToolResult:
    """Result of a tool execution."""

    success: bool
    output: str
    error: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> str:
        if self.success:
            return self.output
        if self.output:
            return f"[Tool Error] {self.error}\n{self.output}"
        return f"[Tool Error] {self.error}"


class InvocationStatus(enum.Enum):
    INVOKING = "invoking"
    DONE = "done"
    ERROR = "error"


@dataclass
class ToolInvocationRecord:
    """Entry of the session-wide tool invocation log."""

    id: str
    tool: str
    arguments: dict[str, Any]
    round_index: int
    status: InvocationStatus = InvocationStatus.INVOKING
    result: ToolResult | None = None


@dataclass(frozen=True)
class ProgressEvent:
    """One progress report delivered to the caller's sink."""

    text: str = ""
    reasoning_content: str = ""
    usage: dict[str, Any] | None = None
    metrics: dict[str, Any] = field(default_factory=dict)
    web_search: Any = None
    annotations: list[Any] | None = None
    citations: list[Any] | None = None
    tool_invocations: tuple[ToolInvocationRecord, ...] = ()
    round_index: int = 0


# ---------------------------------------------------------------------------
# Session types
# ---------------------------------------------------------------------------

class SessionOutcome(enum.Enum):
    COMPLETED = "completed"
    PAUSED = "paused"
    ROUND_LIMIT_EXCEEDED = "round_limit_exceeded"


@dataclass
class SessionResult:
    """What a finished session hands back to the caller."""

    outcome: SessionOutcome
    text: str = ""
    rounds: int = 1
    tool_invocations: list[ToolInvocationRecord] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Lifecycle events published on the EventBus."""

    SESSION_STARTED = "session.started"
    SESSION_DONE = "session.done"
    SESSION_ERROR = "session.error"
    SESSION_CANCELLED = "session.cancelled"

    ROUND_STARTED = "round.started"
    ROUND_LIMIT = "round.limit"

    TOOL_EXECUTING = "tool.executing"
    TOOL_EXECUTED = "tool.executed"
    TOOL_ERROR = "tool.error"


@dataclass
class AgentEvent:
    """Event emitted via the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
