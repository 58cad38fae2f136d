"""Memoizing brick backed by a mod variable.

Concurrency is coordinated entirely through the page state store: each
request claims the variable by writing a fresh ``requestId``, and
settles it with :meth:`PageStateStore.compare_and_set`, so only the most
recent request can publish a value.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import TYPE_CHECKING, Any

from brickflow.bricks.base import PIPELINE_SCHEMA, Transformer, pipeline_arg, properties_to_schema
from brickflow.bricks.control_flow.mod_variable import (
    error_state,
    is_async_state,
    now_millis,
    pending_state,
    state_key_arg,
    success_state,
)
from brickflow.errors import (
    BusinessError,
    CancelError,
    ContextError,
    PropError,
    deserialize_error,
)
from brickflow.runtime.models import Branch

if TYPE_CHECKING:
    from brickflow.runtime.expressions import PipelineExpression
    from brickflow.runtime.reducer import BrickOptions

_SUPERSEDED = "Value generation was superseded"
_INVALID_SHAPE = "Invalid cache shape. Cache value was overwritten."


def _is_expired(entry: dict[str, Any], now: int) -> bool:
    expires_at = entry.get("expiresAt")
    return expires_at is not None and now >= expires_at


class WithCache(Transformer):
    """Runs ``body`` and caches the result in the ``stateKey`` mod variable.

    * A fresh successful value is returned without running ``body``.
    * Callers arriving while a request is in flight wait for it and
      share its value or error, unless that request's TTL has elapsed.
    * ``forceFetch``, a stale or failed value, or an expired in-flight
      request start a new request. The request it replaces fails with
      :class:`CancelError` when it settles.
    """

    id = "@brickflow/cache"
    name = "Run with Cache"
    description = "Run bricks and cache the status and result in a Mod Variable"
    default_output_key = "cachedValue"
    input_schema = properties_to_schema(
        {
            "body": {**PIPELINE_SCHEMA, "description": "The bricks to run"},
            "stateKey": {
                "type": "string",
                "description": "The Mod Variable to store the status and data in",
            },
            "ttl": {
                "type": "number",
                "minimum": 0,
                "description": "Time-to-live of the cached value in seconds",
            },
            "forceFetch": {
                "type": "boolean",
                "description": "Ignore the cached value and always run the body",
                "default": False,
            },
        },
        ["body", "stateKey"],
    )

    async def transform(self, args: dict[str, Any], options: BrickOptions) -> Any:
        state_key = state_key_arg(self.id, args)
        body = pipeline_arg(self.id, args, "body")
        ttl = args.get("ttl")
        if ttl is not None and (not isinstance(ttl, (int, float)) or ttl < 0):
            raise PropError("ttl must be a non-negative number", self.id, "ttl", ttl)
        force_fetch = bool(args.get("forceFetch", False))

        current = await options.page_state.get_state(
            state_key, namespace=options.mod_component_id
        )
        if current is not None and not is_async_state(current):
            raise BusinessError(_INVALID_SHAPE)

        if current is not None and not force_fetch and not _is_expired(current, now_millis()):
            if current["isFetching"]:
                options.logger.debug("Waiting for in-flight request %s", current["requestId"])
                return await self._wait_for_settled(state_key, current["requestId"], options)
            if current["isSuccess"]:
                options.logger.debug("Returning cached value for %s", state_key)
                return current["data"]

        return await self._generate_value(state_key, current, body, ttl, options)

    async def _wait_for_settled(
        self, state_key: str, request_id: str, options: BrickOptions
    ) -> Any:
        # A cleared variable is filled again when the request settles
        def settled(value: Any) -> bool:
            return value is not None and (
                not is_async_state(value)
                or value["requestId"] != request_id
                or not value["isFetching"]
            )

        entry = await options.page_state.wait_for(
            state_key, settled, namespace=options.mod_component_id
        )
        if not is_async_state(entry):
            raise BusinessError(_INVALID_SHAPE)
        if entry["requestId"] != request_id:
            raise CancelError(_SUPERSEDED)
        if entry["isError"]:
            raise deserialize_error(entry["error"])
        return entry["data"]

    async def _generate_value(
        self,
        state_key: str,
        current: dict[str, Any] | None,
        body: PipelineExpression,
        ttl: float | None,
        options: BrickOptions,
    ) -> Any:
        store = options.page_state
        namespace = options.mod_component_id
        request_id = str(uuid.uuid4())
        started_at = now_millis()

        await store.set_state(
            state_key,
            pending_state(
                current,
                request_id,
                expires_at=None if ttl is None else started_at + int(ttl * 1000),
            ),
            namespace=namespace,
        )
        options.logger.debug("Started request %s for %s", request_id, state_key)

        try:
            data = await options.run_pipeline(body, Branch("body", 0))
        except asyncio.CancelledError as exc:
            # Release waiters of an aborted request
            await store.compare_and_set(
                state_key, request_id, error_state(request_id, CancelError(str(exc) or "Cancelled")),
                namespace=namespace,
            )
            raise
        except Exception as exc:
            if not await store.compare_and_set(
                state_key, request_id, error_state(request_id, exc), namespace=namespace
            ):
                raise CancelError(_SUPERSEDED) from exc
            raise ContextError(
                "An error occurred generating the cached value", cause=exc
            ) from exc

        # TTL runs from the moment the value is stored
        expires_at = None if ttl is None else now_millis() + int(ttl * 1000)
        if not await store.compare_and_set(
            state_key,
            request_id,
            success_state(request_id, data, expires_at=expires_at),
            namespace=namespace,
        ):
            options.logger.debug("Request %s for %s was superseded", request_id, state_key)
            raise CancelError(_SUPERSEDED)
        return data
