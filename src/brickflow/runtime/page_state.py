"""Shared mod variable store.

Control-flow bricks that outlive a single step (``WithCache``,
``WithAsyncModVariable``) coordinate through a :class:`PageStateStore`.
Writes are keyed by mod component so that two mods never see each
other's variables.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Callable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

StatePredicate = Callable[[Any], bool]


@runtime_checkable
class PageStateStore(Protocol):
    """Protocol for the page state collaborator."""

    async def get_state(self, key: str, *, namespace: str | None = None) -> Any: ...

    async def set_state(
        self, key: str, value: Any, *, namespace: str | None = None
    ) -> None: ...

    async def compare_and_set(
        self,
        key: str,
        expected_request_id: str | None,
        value: Any,
        *,
        namespace: str | None = None,
    ) -> bool: ...

    async def wait_for(
        self,
        key: str,
        predicate: StatePredicate,
        *,
        namespace: str | None = None,
    ) -> Any: ...


class MemoryPageState:
    """In-memory :class:`PageStateStore` for a single event loop.

    Every method completes without yielding between its read and its
    write, so each call is atomic with respect to other coroutines.
    Waiters are woken through an :class:`asyncio.Condition` on every
    write.
    """

    def __init__(self) -> None:
        self._values: dict[tuple[str | None, str], Any] = {}
        self._condition: asyncio.Condition | None = None

    @property
    def _changed(self) -> asyncio.Condition:
        # Created lazily so the store can be built outside a running loop
        if self._condition is None:
            self._condition = asyncio.Condition()
        return self._condition

    def snapshot(self, namespace: str | None = None) -> dict[str, Any]:
        """Return a deep copy of every variable in *namespace*."""
        return {
            key: copy.deepcopy(value)
            for (ns, key), value in self._values.items()
            if ns == namespace
        }

    async def get_state(self, key: str, *, namespace: str | None = None) -> Any:
        return copy.deepcopy(self._values.get((namespace, key)))

    async def set_state(
        self, key: str, value: Any, *, namespace: str | None = None
    ) -> None:
        async with self._changed:
            self._values[(namespace, key)] = copy.deepcopy(value)
            self._changed.notify_all()

    async def compare_and_set(
        self,
        key: str,
        expected_request_id: str | None,
        value: Any,
        *,
        namespace: str | None = None,
    ) -> bool:
        """Write *value* only if the stored entry belongs to *expected_request_id*.

        An entry without a ``requestId`` (cleared, or overwritten with a
        plain value) is not owned by any request and always matches.

        Returns:
            ``True`` if the value was written, ``False`` if another
            request has taken over the key.
        """
        async with self._changed:
            current = self._values.get((namespace, key))
            current_request_id = (
                current.get("requestId") if isinstance(current, dict) else None
            )
            if current_request_id is not None and current_request_id != expected_request_id:
                logger.debug(
                    "Skipping write to %s: request %s superseded by %s",
                    key,
                    expected_request_id,
                    current_request_id,
                )
                return False
            self._values[(namespace, key)] = copy.deepcopy(value)
            self._changed.notify_all()
            return True

    async def wait_for(
        self,
        key: str,
        predicate: StatePredicate,
        *,
        namespace: str | None = None,
    ) -> Any:
        """Block until the value at *key* satisfies *predicate* and return it."""
        async with self._changed:
            await self._changed.wait_for(
                lambda: predicate(self._values.get((namespace, key)))
            )
            return copy.deepcopy(self._values.get((namespace, key)))
