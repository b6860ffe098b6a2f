"""Cooperative cancellation: a pause token and keyed abort handles.

``PauseToken`` stops the current round between deltas without raising.
``AbortHandle`` is a hard cancel: it interrupts an in-flight transport
call and is re-checked once when the session ends.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from typing import Any, Awaitable, Callable, TypeVar

from completion_harness.errors import SessionAborted

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class PauseToken:
    """Pause flag checked before every streamed delta.

    Backed by a ``threading.Event`` so a signal handler or UI thread can
    set it while the event loop is consuming a stream.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def pause(self) -> None:
        self._event.set()

    def resume(self) -> None:
        self._event.clear()

    @property
    def is_paused(self) -> bool:
        return self._event.is_set()


class AbortHandle:
    """Hard-cancellation handle for one session."""

    def __init__(self, key: str = "") -> None:
        self.key = key
        self._reason: str | None = None
        self._waiters: set[asyncio.Future[None]] = set()

    @property
    def aborted(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason

    def abort(self, reason: str = "aborted") -> None:
        if self._reason is not None:
            return
        self._reason = reason
        _logger.info("Abort requested for %s: %s", self.key or "<anonymous>", reason)
        for waiter in list(self._waiters):
            if not waiter.done():
                waiter.set_result(None)

    def error(self) -> SessionAborted:
        return SessionAborted(self.key, self._reason or "aborted")

    def raise_if_aborted(self) -> None:
        if self._reason is not None:
            raise self.error()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable*, cancelling it if the handle is aborted first."""
        if self.aborted:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise self.error()
        task = asyncio.ensure_future(awaitable)
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.add(waiter)
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            self._waiters.discard(waiter)
            if not waiter.done():
                waiter.cancel()
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        if task in done:
            return task.result()
        raise self.error()


class AbortRegistry:
    """Abort handles keyed by the id of the message that started a session."""

    def __init__(self) -> None:
        self._handles: dict[str, AbortHandle] = {}

    def create(self, key: str | None) -> tuple[AbortHandle, Callable[[], None]]:
        """Register a handle for *key*.  Returns ``(handle, cleanup)``."""
        handle = AbortHandle(key or "")
        if key:
            self._handles[key] = handle

        def cleanup() -> None:
            if key and self._handles.get(key) is handle:
                del self._handles[key]

        return handle, cleanup

    def abort(self, key: str, reason: str = "aborted by user") -> bool:
        """Abort the session registered under *key*.  False if none is active."""
        handle = self._handles.get(key)
        if handle is None:
            return False
        handle.abort(reason)
        return True

    def active_keys(self) -> list[str]:
        return list(self._handles)

    def __contains__(self, key: Any) -> bool:
        return key in self._handles
