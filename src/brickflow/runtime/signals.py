"""Cooperative cancellation.

An :class:`AbortSignal` is handed down from the top-level ``reduce`` call
to every step and sub-pipeline. Aborting it makes in-flight and pending
steps fail with :class:`~brickflow.errors.CancelError`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, TypeVar

from brickflow.errors import CancelError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AbortSignal:
    """A one-shot cancellation flag that coroutines can await."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._children: list[AbortSignal] = []

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def abort(self, reason: str = "Execution was cancelled") -> None:
        """Abort this signal and every linked child signal."""
        if self.aborted:
            return
        self._reason = reason
        self._event.set()
        logger.debug("Abort signal triggered: %s", reason)
        for child in self._children:
            child.abort(reason)

    def linked(self) -> AbortSignal:
        """Return a child signal aborted together with this one.

        The child can also be aborted on its own without affecting the
        parent.
        """
        child = AbortSignal()
        if self.aborted:
            child.abort(self._reason or "Execution was cancelled")
        else:
            self._children.append(child)
        return child

    def throw_if_aborted(self) -> None:
        """Raise :class:`CancelError` if the signal was aborted."""
        if self.aborted:
            raise CancelError(self._reason or "Execution was cancelled")

    async def wait(self) -> None:
        """Block until the signal is aborted."""
        await self._event.wait()


async def run_with_signal(
    awaitable: Awaitable[T], signal: AbortSignal | None
) -> T:
    """Await *awaitable*, cancelling it if *signal* aborts first.

    Raises:
        CancelError: If the signal aborts before *awaitable* settles.
    """
    if signal is None:
        return await awaitable
    signal.throw_if_aborted()

    task: asyncio.Future[Any] = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task.done():
        return task.result()

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as exc:
        logger.debug("Cancelled task raised while shutting down: %s", exc)
    raise CancelError(signal.reason or "Execution was cancelled")
