"""Control-flow bricks that run nested pipelines."""

from brickflow.bricks.control_flow.async_variable import WithAsyncModVariable
from brickflow.bricks.control_flow.branching import IfElse, TryExcept
from brickflow.bricks.control_flow.loops import ForEach, MapValues
from brickflow.bricks.control_flow.retry import BackoffConfig, Retry
from brickflow.bricks.control_flow.with_cache import WithCache

__all__ = [
    "BackoffConfig",
    "ForEach",
    "IfElse",
    "MapValues",
    "Retry",
    "TryExcept",
    "WithAsyncModVariable",
    "WithCache",
]
