"""Exception hierarchy for Completion Harness."""

from __future__ import annotations


class HarnessError(Exception):
    """Base exception for all Completion Harness errors."""


class ConfigError(HarnessError):
    """Configuration file could not be interpreted."""


class TransportError(HarnessError):
    """A completion request failed on the wire.

    Not retried.  The originating ``httpx`` exception is chained as
    ``__cause__``.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SessionAborted(HarnessError):
    """The session was hard-cancelled through its abort handle."""

    def __init__(self, key: str, reason: str = "aborted") -> None:
        super().__init__(f"Session {key or '<anonymous>'} aborted: {reason}")
        self.key = key
        self.reason = reason


class AttachmentReadError(HarnessError):
    """An attachment could not be read from storage."""
