"""Core session components for Completion Harness."""

from completion_harness.core.assembler import LocalAttachmentReader, MessageAssembler
from completion_harness.core.cancellation import AbortHandle, AbortRegistry, PauseToken
from completion_harness.core.executor import Executor
from completion_harness.core.phase import ReasoningPhaseTracker
from completion_harness.core.resumer import PendingRequestChain, ToolCallResumer
from completion_harness.core.session import CompletionSession
from completion_harness.core.stream import StreamConsumer

__all__ = [
    "AbortHandle",
    "AbortRegistry",
    "CompletionSession",
    "Executor",
    "LocalAttachmentReader",
    "MessageAssembler",
    "PauseToken",
    "PendingRequestChain",
    "ReasoningPhaseTracker",
    "StreamConsumer",
    "ToolCallResumer",
]
