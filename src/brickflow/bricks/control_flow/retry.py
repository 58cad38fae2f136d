"""Retry brick."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from brickflow.bricks.base import PIPELINE_SCHEMA, Transformer, pipeline_arg, properties_to_schema
from brickflow.errors import PropError, is_cancel_error
from brickflow.runtime.models import Branch

if TYPE_CHECKING:
    from brickflow.runtime.reducer import BrickOptions

DEFAULT_MAX_RETRIES = 3


@dataclass
class BackoffConfig:
    """Delay between attempts of a retried body.

    Raises:
        ValueError: If any value is negative or the factor is below 1.
    """

    interval_millis: float = 0
    backoff_factor: float = 1.0
    max_delay_seconds: float = 60.0
    jitter: bool = False

    def __post_init__(self) -> None:
        if self.interval_millis < 0:
            raise ValueError(f"interval_millis must be >= 0, got {self.interval_millis}")
        if self.backoff_factor < 1:
            raise ValueError(f"backoff_factor must be >= 1, got {self.backoff_factor}")
        if self.max_delay_seconds < 0:
            raise ValueError(f"max_delay_seconds must be >= 0, got {self.max_delay_seconds}")

    def delay_for_attempt(self, attempt: int) -> float:
        """Return the delay in seconds before retry number *attempt* (1-based).

        Uses exponential backoff: ``interval * factor^(attempt - 1)``,
        capped at ``max_delay_seconds`` and optionally jittered to
        ``[0.5x, 1.5x]``.
        """
        delay = (self.interval_millis / 1000) * (self.backoff_factor ** (attempt - 1))
        delay = min(delay, self.max_delay_seconds)
        if self.jitter:
            delay *= random.uniform(0.5, 1.5)
        return max(0.0, delay)


class Retry(Transformer):
    """Runs a pipeline until it succeeds, up to ``1 + maxRetries`` times.

    On exhaustion the last attempt's error is raised as-is. Cancellation
    is never retried.
    """

    id = "@brickflow/retry"
    name = "Retry"
    description = "Retry bricks on error"
    input_schema = properties_to_schema(
        {
            "body": {**PIPELINE_SCHEMA, "description": "The bricks to run"},
            "maxRetries": {
                "type": "integer",
                "minimum": 0,
                "description": "The maximum number of retries after the first attempt",
                "default": DEFAULT_MAX_RETRIES,
            },
            "intervalMillis": {
                "type": "number",
                "minimum": 0,
                "description": "Delay before the first retry, in milliseconds",
                "default": 0,
            },
            "backoffFactor": {
                "type": "number",
                "minimum": 1,
                "description": "Multiplier applied to the delay after each retry",
                "default": 1,
            },
        },
        ["body"],
    )

    async def transform(self, args: dict[str, Any], options: BrickOptions) -> Any:
        body = pipeline_arg(self.id, args, "body")
        max_retries = args.get("maxRetries", DEFAULT_MAX_RETRIES)
        if not isinstance(max_retries, int) or isinstance(max_retries, bool) or max_retries < 0:
            raise PropError(
                "maxRetries must be a non-negative integer", self.id, "maxRetries", max_retries
            )
        try:
            backoff = BackoffConfig(
                interval_millis=args.get("intervalMillis", 0),
                backoff_factor=args.get("backoffFactor", 1),
            )
        except ValueError as exc:
            raise PropError(str(exc), self.id, "intervalMillis", args.get("intervalMillis")) from exc

        max_attempts = max_retries + 1
        last_error: Exception | None = None

        for attempt in range(max_attempts):
            if attempt > 0:
                delay = backoff.delay_for_attempt(attempt)
                options.logger.info(
                    "Retrying (attempt %d/%d) after %.1fs", attempt + 1, max_attempts, delay
                )
                await asyncio.sleep(delay)

            try:
                return await options.run_pipeline(body, Branch("body", attempt))
            except Exception as exc:
                if is_cancel_error(exc):
                    raise
                options.logger.warning(
                    "Attempt %d/%d failed: %s", attempt + 1, max_attempts, exc
                )
                last_error = exc

        assert last_error is not None  # At least one attempt always runs
        raise last_error
