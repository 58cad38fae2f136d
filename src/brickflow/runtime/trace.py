"""Trace records of brick runs.

The reducer appends an entry before each step runs and completes it when
the step exits. Tracing is a side channel: recorder failures are logged
and never change the outcome of a pipeline.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class TraceRecord:
    """Input and outcome of one brick run.

    Attributes:
        run_id: Run the record belongs to.
        instance_id: Instance id of the step.
        brick_id: Brick that ran.
        branches: Sub-pipeline path, as ``"key:counter"`` strings.
        template_context: Context the config was rendered against.
        rendered_args: Rendered config, ``None`` if rendering failed.
        render_error: Serialized rendering error, if any.
        output: Brick output.
        error: Serialized brick error, if any.
        skipped_run: Whether the step's condition was falsy.
        started_at: UNIX epoch of the entry.
        finished_at: UNIX epoch of the exit, ``None`` while running.
    """

    run_id: str
    instance_id: str
    brick_id: str
    branches: list[str] = field(default_factory=list)
    template_context: Any = None
    rendered_args: Any = None
    render_error: dict[str, Any] | None = None
    output: Any = None
    error: dict[str, Any] | None = None
    skipped_run: bool = False
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None

    @property
    def is_final(self) -> bool:
        return self.finished_at is not None


class TraceRecorder:
    """In-memory store of :class:`TraceRecord` entries."""

    def __init__(self) -> None:
        self._records: list[TraceRecord] = []

    @property
    def records(self) -> list[TraceRecord]:
        return list(self._records)

    def for_run(self, run_id: str) -> list[TraceRecord]:
        return [r for r in self._records if r.run_id == run_id]

    def latest(self, instance_id: str) -> TraceRecord | None:
        """Return the most recent record for *instance_id*."""
        for record in reversed(self._records):
            if record.instance_id == instance_id:
                return record
        return None

    def add_entry(self, record: TraceRecord) -> None:
        self._records.append(record)

    def add_exit(
        self,
        record: TraceRecord,
        *,
        output: Any = None,
        error: dict[str, Any] | None = None,
        skipped_run: bool = False,
    ) -> None:
        record.output = output
        record.error = error
        record.skipped_run = skipped_run
        record.finished_at = time.time()

    def clear(self, run_id: str | None = None) -> None:
        if run_id is None:
            self._records.clear()
        else:
            self._records = [r for r in self._records if r.run_id != run_id]
