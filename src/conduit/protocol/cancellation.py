"""Caller-owned cancellation handle shared by one execution call."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationHandle:
    """Cooperative abort signal for a single execution call.

    Raising the handle is idempotent: the first ``cancel()`` records the
    reason and fires registered callbacks, later calls do nothing.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled by caller") -> None:
        """Raise the handle.  Re-raising an already-raised handle is a no-op."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("cancellation callback failed")

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run *callback* on cancellation (immediately if already raised)."""
        if self._event.is_set():
            callback()
            return
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def wait(self) -> None:
        """Block until the handle is raised."""
        await self._event.wait()

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable* unless the handle is raised first.

        If the handle wins, the pending work is cancelled and
        ``ExecutionCancelled`` is raised.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            pending = not task.done()
            if pending:
                task.cancel()
        if pending:
            await asyncio.gather(task, return_exceptions=True)
            self.raise_if_cancelled()
        return task.result()

    def raise_if_cancelled(self) -> None:
        """Raise ``ExecutionCancelled`` if the handle has been raised."""
        if self._event.is_set():
            from conduit.errors import ExecutionCancelled

            raise ExecutionCancelled(self._reason or "cancelled")

    def __repr__(self) -> str:
        state = f"cancelled ({self._reason})" if self.cancelled else "active"
        return f"<CancellationHandle {state}>"
