"""Background execution brick backed by a mod variable."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Any

from brickflow.bricks.base import PIPELINE_SCHEMA, Transformer, pipeline_arg, properties_to_schema
from brickflow.bricks.control_flow.mod_variable import (
    error_state,
    is_async_state,
    pending_state,
    state_key_arg,
    success_state,
)
from brickflow.errors import CancelError
from brickflow.runtime.models import Branch

if TYPE_CHECKING:
    from brickflow.runtime.expressions import PipelineExpression
    from brickflow.runtime.reducer import BrickOptions

logger = logging.getLogger(__name__)


class WithAsyncModVariable(Transformer):
    """Starts ``body`` in the background and returns ``{"requestId": ...}``.

    The ``stateKey`` mod variable tracks the request's status and, once
    it settles, its data or error. A newer request for the same variable
    supersedes older ones: their results are dropped.
    """

    id = "@brickflow/async"
    name = "Run with Async Mod Variable"
    description = "Run bricks asynchronously and store the status and result in a Mod Variable"
    default_output_key = "async"
    input_schema = properties_to_schema(
        {
            "body": {**PIPELINE_SCHEMA, "description": "The bricks to run asynchronously"},
            "stateKey": {
                "type": "string",
                "description": "The Mod Variable to store the status and data in",
            },
        },
        ["body", "stateKey"],
    )
    output_schema = {
        "type": "object",
        "properties": {"requestId": {"type": "string"}},
        "required": ["requestId"],
        "additionalProperties": False,
    }

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        """Number of bodies still running in the background."""
        return len(self._tasks)

    async def cancel_pending(self) -> None:
        """Cancel every background body and wait for them to finish."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def transform(self, args: dict[str, Any], options: BrickOptions) -> Any:
        state_key = state_key_arg(self.id, args)
        body = pipeline_arg(self.id, args, "body")
        request_id = str(uuid.uuid4())

        current = await options.page_state.get_state(
            state_key, namespace=options.mod_component_id
        )
        await options.page_state.set_state(
            state_key,
            pending_state(current if is_async_state(current) else None, request_id),
            namespace=options.mod_component_id,
        )

        # Keep a reference so the task isn't garbage collected mid-flight
        task = asyncio.create_task(self._run_body(state_key, request_id, body, options))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        return {"requestId": request_id}

    async def _run_body(
        self,
        state_key: str,
        request_id: str,
        body: PipelineExpression,
        options: BrickOptions,
    ) -> None:
        try:
            data = await options.run_pipeline(body, Branch("body", 0))
        except asyncio.CancelledError as exc:
            # Don't leave the variable fetching forever
            await options.page_state.compare_and_set(
                state_key, request_id,
                error_state(request_id, CancelError(str(exc) or "Cancelled")),
                namespace=options.mod_component_id,
            )
            raise
        except Exception as exc:
            options.logger.warning("Background request %s failed: %s", request_id, exc)
            settled = await options.page_state.compare_and_set(
                state_key, request_id, error_state(request_id, exc),
                namespace=options.mod_component_id,
            )
        else:
            settled = await options.page_state.compare_and_set(
                state_key, request_id, success_state(request_id, data),
                namespace=options.mod_component_id,
            )
        if not settled:
            logger.debug("Dropping result of superseded request %s for %s", request_id, state_key)
