"""Pipeline event system for observability.

The reducer emits a :class:`PipelineEvent` at the start and end of every
run and step. Listeners subscribe per event type and can narrow the
subscription to one brick or to the steps of one sub-pipeline.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)


class PipelineEventType(str, enum.Enum):
    """Lifecycle events of a run and its steps."""

    PIPELINE_START = "pipeline_start"
    PIPELINE_COMPLETE = "pipeline_complete"
    PIPELINE_FAILED = "pipeline_failed"
    STEP_START = "step_start"
    STEP_COMPLETE = "step_complete"
    STEP_SKIPPED = "step_skipped"
    STEP_FAIL = "step_fail"


@dataclass
class PipelineEvent:
    """A single pipeline lifecycle event.

    Attributes:
        type: The event category.
        run_id: Run the event belongs to.
        brick_id: Brick of the step (empty for run-level events).
        instance_id: Instance id of the step.
        label: Display name of the step, as used in step log messages.
        branches: Sub-pipeline path, as ``"key:counter"`` strings.
        timestamp: UNIX epoch when the event occurred.
        data: Event-specific payload.
    """

    type: PipelineEventType
    run_id: str = ""
    brick_id: str = ""
    instance_id: str = ""
    label: str = ""
    branches: list[str] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def depth(self) -> int:
        """Nesting depth of the step; 0 for the top-level pipeline."""
        return len(self.branches)

    def within(self, branch_key: str) -> bool:
        """Return whether the event comes from inside a ``branch_key`` sub-pipeline."""
        return any(label.split(":", 1)[0] == branch_key for label in self.branches)


EventCallback = Callable[[PipelineEvent], Coroutine[Any, Any, None]]


@dataclass
class _Subscription:
    callback: EventCallback
    brick_id: str | None = None
    branch_key: str | None = None

    def matches(self, event: PipelineEvent) -> bool:
        if self.brick_id is not None and event.brick_id != self.brick_id:
            return False
        return self.branch_key is None or event.within(self.branch_key)


class PipelineEventEmitter:
    """Dispatches pipeline events to async listeners.

    Listener errors are logged and never interrupt the run.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[PipelineEventType, list[_Subscription]] = {}

    @property
    def listeners(self) -> dict[PipelineEventType, list[EventCallback]]:
        """Callbacks registered for each event type."""
        return {
            event_type: [sub.callback for sub in subs]
            for event_type, subs in self._subscriptions.items()
        }

    def on(
        self,
        event_type: PipelineEventType,
        callback: EventCallback,
        *,
        brick_id: str | None = None,
        branch_key: str | None = None,
    ) -> None:
        """Register *callback* for *event_type*.

        Args:
            event_type: The event category to listen for.
            callback: Async callable invoked with the event.
            brick_id: Only deliver events of steps running this brick.
            branch_key: Only deliver events of steps nested in a
                sub-pipeline with this key, e.g. ``"body"``.
        """
        self._subscriptions.setdefault(event_type, []).append(
            _Subscription(callback, brick_id=brick_id, branch_key=branch_key)
        )

    def on_all(self, callback: EventCallback, **filters: Any) -> None:
        """Register *callback* for every event type, with :meth:`on` filters."""
        for event_type in PipelineEventType:
            self.on(event_type, callback, **filters)

    async def emit(self, event: PipelineEvent) -> None:
        """Deliver *event* to every matching listener."""
        for sub in self._subscriptions.get(event.type, []):
            if not sub.matches(event):
                continue
            try:
                await sub.callback(event)
            except Exception as exc:
                logger.error(
                    "Event listener error for %s (%s): %s",
                    event.type.value,
                    event.label or event.brick_id or event.run_id,
                    exc,
                )
