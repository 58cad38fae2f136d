"""Built-in utility bricks."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from brickflow.bricks.base import Effect, Transformer, properties_to_schema
from brickflow.errors import BusinessError

if TYPE_CHECKING:
    from brickflow.runtime.reducer import BrickOptions

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class IdentityTransformer(Transformer):
    """Returns its arguments unchanged."""

    id = "@brickflow/identity"
    name = "Identity Function"
    description = "Returns the object passed into it"
    input_schema = {"type": "object", "additionalProperties": True}

    async def transform(self, args: dict[str, Any], options: BrickOptions) -> Any:
        return args


class ThrowError(Transformer):
    """Raises a :class:`BusinessError` with the configured message."""

    id = "@brickflow/error"
    name = "Raise business error"
    description = "Raise an error to stop the pipeline"
    input_schema = properties_to_schema(
        {
            "message": {
                "type": "string",
                "description": "The error message",
            },
        },
        ["message"],
    )

    async def transform(self, args: dict[str, Any], options: BrickOptions) -> Any:
        raise BusinessError(args["message"])


class LogEffect(Effect):
    """Writes a message to the step logger."""

    id = "@brickflow/log"
    name = "Log To Console"
    description = "Log a message to the runtime logger"
    input_schema = properties_to_schema(
        {
            "message": {"type": "string", "description": "The message to log"},
            "level": {
                "type": "string",
                "enum": sorted(_LOG_LEVELS),
                "default": "info",
            },
            "data": {"description": "Additional data to include with the message"},
        },
        ["message"],
    )

    async def effect(self, args: dict[str, Any], options: BrickOptions) -> None:
        level = _LOG_LEVELS[args.get("level", "info")]
        if "data" in args:
            options.logger.log(level, "%s %r", args["message"], args["data"])
        else:
            options.logger.log(level, "%s", args["message"])
