"""Detection of the end of a response's reasoning phase."""

from __future__ import annotations

from completion_harness.types import StreamDelta

# Emitted by some providers between the thinking and the answer.
RESPONSE_MARKER = "###Response"
THINK_END_MARKER = "</think>"


class ReasoningPhaseTracker:
    """Classifies deltas as thinking or answering.

    ``has_reasoning_content`` is sticky: once a delta carried reasoning
    text it stays true for the rest of the session.
    """

    def __init__(self) -> None:
        self.has_reasoning_content = False
        self.last_answer_fragment = ""

    def observe(self, delta: StreamDelta) -> None:
        """Record that reasoning text was seen, without classifying."""
        if delta.has_reasoning:
            self.has_reasoning_content = True

    def classify(self, delta: StreamDelta) -> bool:
        """True when *delta* ends the reasoning phase.

        May keep returning True for later answer deltas; callers latch the
        first occurrence.
        """
        if not delta.content:
            return False

        # A marker may be split across two consecutive fragments.
        combined = self.last_answer_fragment + delta.content
        self.last_answer_fragment = delta.content
        if RESPONSE_MARKER in combined or delta.content == THINK_END_MARKER:
            return True

        if delta.has_reasoning:
            self.has_reasoning_content = True

        return self.has_reasoning_content
