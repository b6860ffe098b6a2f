"""Selection of the conversation window sent with a request."""

from __future__ import annotations

from typing import Sequence

from completion_harness.types import ConversationMessage

CLEAR_MARKER = "clear"


def take_right(messages: Sequence[ConversationMessage], count: int) -> list[ConversationMessage]:
    """The last *count* messages (none for a non-positive count)."""
    if count <= 0:
        return []
    return list(messages[-count:])


def filter_context_messages(messages: Sequence[ConversationMessage]) -> list[ConversationMessage]:
    """Drop everything up to and including the last context-clear marker,
    plus any other non-dialog entries."""
    start = 0
    for i, m in enumerate(messages):
        if m.type == CLEAR_MARKER:
            start = i + 1
    return [m for m in messages[start:] if m.type == "text"]


def filter_empty_messages(messages: Sequence[ConversationMessage]) -> list[ConversationMessage]:
    return [m for m in messages if m.text.strip() or m.attachments]


def filter_user_role_start_messages(
    messages: Sequence[ConversationMessage],
) -> list[ConversationMessage]:
    """Drop leading entries before the first user message."""
    for i, m in enumerate(messages):
        if m.role == "user":
            return list(messages[i:])
    return list(messages)


def select_context_window(
    messages: Sequence[ConversationMessage],
    context_count: int,
) -> list[ConversationMessage]:
    """Trailing ``context_count + 1`` messages, cleaned for sending."""
    window = take_right(messages, context_count + 1)
    return filter_user_role_start_messages(
        filter_empty_messages(filter_context_messages(window))
    )
