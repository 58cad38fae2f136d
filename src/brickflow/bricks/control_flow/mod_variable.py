"""Async state shape shared by the stateful control-flow bricks.

Mirrors the RTK Query hook result: ``isLoading`` is only true for the
first request, ``isFetching`` for any request in flight, and ``data``
keeps the last successful value while a refetch runs.
"""

from __future__ import annotations

import time
from typing import Any

from brickflow.errors import PropError, serialize_error

_REQUIRED_FLAGS = ("isLoading", "isFetching", "isSuccess", "isError")


def now_millis() -> int:
    return int(time.time() * 1000)


def state_key_arg(brick_id: str, args: dict[str, Any]) -> str:
    """Return the ``stateKey`` argument.

    Raises:
        PropError: If the key is missing or blank.
    """
    state_key = args.get("stateKey")
    if not isinstance(state_key, str) or not state_key.strip():
        raise PropError("Mod Variable Name is required", brick_id, "stateKey", state_key)
    return state_key


def is_async_state(value: Any) -> bool:
    """Return ``True`` if *value* has the async state shape."""
    if not isinstance(value, dict):
        return False
    if not all(isinstance(value.get(flag), bool) for flag in _REQUIRED_FLAGS):
        return False
    if not isinstance(value.get("requestId"), str):
        return False
    expires_at = value.get("expiresAt")
    return expires_at is None or isinstance(expires_at, (int, float))


def pending_state(
    current: dict[str, Any] | None,
    request_id: str,
    *,
    expires_at: int | None = None,
) -> dict[str, Any]:
    """State of a new request, keeping the previous data or error."""
    if current is None:
        return {
            "isLoading": True,
            "isFetching": True,
            "isSuccess": False,
            "isError": False,
            "currentData": None,
            "data": None,
            "requestId": request_id,
            "error": None,
            "expiresAt": expires_at,
        }
    return {
        **current,
        "requestId": request_id,
        "expiresAt": expires_at,
        "isFetching": True,
        "currentData": None,
    }


def success_state(
    request_id: str, data: Any, *, expires_at: int | None = None
) -> dict[str, Any]:
    return {
        "isLoading": False,
        "isFetching": False,
        "isSuccess": True,
        "isError": False,
        "currentData": data,
        "data": data,
        "requestId": request_id,
        "error": None,
        "expiresAt": expires_at,
    }


def error_state(request_id: str, error: BaseException) -> dict[str, Any]:
    return {
        "isLoading": False,
        "isFetching": False,
        "isSuccess": False,
        "isError": True,
        "currentData": None,
        "data": None,
        "requestId": request_id,
        "error": serialize_error(error),
        "expiresAt": None,
    }
