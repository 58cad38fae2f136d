"""Conditional and error-handling bricks."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from brickflow.bricks.base import PIPELINE_SCHEMA, Transformer, pipeline_arg, properties_to_schema
from brickflow.errors import (
    HeadlessModeError,
    get_root_cause,
    is_cancel_error,
    serialize_error,
)
from brickflow.runtime.evaluator import boolean
from brickflow.runtime.models import Branch, validate_output_key

if TYPE_CHECKING:
    from brickflow.runtime.reducer import BrickOptions

DEFAULT_ERROR_KEY = "error"


class IfElse(Transformer):
    """Runs the ``if`` pipeline when ``condition`` is truthy, else ``else``."""

    id = "@brickflow/if-else"
    name = "If-Else"
    description = "Run bricks conditionally"
    input_schema = properties_to_schema(
        {
            "condition": {
                "type": ["boolean", "string", "number", "null"],
                "description": "The condition to check",
            },
            "if": {**PIPELINE_SCHEMA, "description": "The bricks to run if the condition is true"},
            "else": {**PIPELINE_SCHEMA, "description": "The bricks to run if the condition is false"},
        },
        ["if"],
    )

    async def transform(self, args: dict[str, Any], options: BrickOptions) -> Any:
        if boolean(args.get("condition")):
            return await options.run_pipeline(pipeline_arg(self.id, args, "if"), Branch("if", 0))
        else_body = pipeline_arg(self.id, args, "else", required=False)
        if else_body is None:
            return None
        return await options.run_pipeline(else_body, Branch("else", 0))


class TryExcept(Transformer):
    """Runs ``try``; on failure runs ``except`` with the error bound, if given.

    Without an ``except`` pipeline the error is swallowed and the brick
    returns ``None``. Cancellation and headless-mode signals always
    propagate.
    """

    id = "@brickflow/try-catch"
    name = "Try-Except"
    description = "Try to run bricks, and run other bricks if there's an error"
    input_schema = properties_to_schema(
        {
            "try": {**PIPELINE_SCHEMA, "description": "The bricks to try"},
            "except": {**PIPELINE_SCHEMA, "description": "The bricks to run if there's an error"},
            "errorKey": {
                "type": "string",
                "description": "Variable for the error in the except branch, without the leading @",
                "default": DEFAULT_ERROR_KEY,
            },
        },
        ["try"],
    )

    async def transform(self, args: dict[str, Any], options: BrickOptions) -> Any:
        try_body = pipeline_arg(self.id, args, "try")
        except_body = pipeline_arg(self.id, args, "except", required=False)
        error_key = validate_output_key(args.get("errorKey") or DEFAULT_ERROR_KEY)

        try:
            return await options.run_pipeline(try_body, Branch("try", 0))
        except HeadlessModeError:
            raise
        except Exception as exc:
            if is_cancel_error(exc):
                raise
            if except_body is None:
                options.logger.info("Ignoring error in try branch: %s", exc)
                return None
            options.logger.info("Running except branch after error: %s", exc)
            return await options.run_pipeline(
                except_body,
                Branch("except", 0),
                {f"@{error_key}": serialize_error(get_root_cause(exc))},
            )
