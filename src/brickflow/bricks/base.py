"""Brick dispatch contract.

A brick is a reusable unit of behaviour invoked by a pipeline step. The
reducer only ever calls :meth:`Brick.run`; the kind-specific bases map
that call to a method named after what the brick does, so a concrete
brick reads as ``transform``, ``effect``, ``render`` or ``read``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar

from brickflow.errors import PropError
from brickflow.runtime.expressions import PipelineExpression
from brickflow.runtime.models import BrickKind

if TYPE_CHECKING:
    from brickflow.runtime.reducer import BrickOptions

JsonSchema = dict[str, Any]


def properties_to_schema(
    properties: dict[str, JsonSchema],
    required: list[str] | None = None,
) -> JsonSchema:
    """Build an object schema from a mapping of property schemas."""
    schema: JsonSchema = {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "type": "object",
        "properties": properties,
    }
    if required:
        schema["required"] = list(required)
    return schema


# Nested pipelines are validated in their wire form
PIPELINE_SCHEMA: JsonSchema = {
    "type": "object",
    "properties": {
        "__type__": {"const": "pipeline"},
        "__value__": {"type": "array"},
    },
    "required": ["__type__", "__value__"],
}


def pipeline_arg(
    brick_id: str, args: dict[str, Any], prop: str, *, required: bool = True
) -> PipelineExpression | None:
    """Return the nested pipeline passed as *prop*.

    Raises:
        PropError: If the argument is not a pipeline, or is missing and
            *required*.
    """
    value = args.get(prop)
    if value is None and not required:
        return None
    if not isinstance(value, PipelineExpression):
        raise PropError(f"Expected a pipeline for {prop}", brick_id, prop, value)
    return value


class Brick(ABC):
    """Base class of all bricks.

    Class attributes:
        id: Registry id, e.g. ``"@brickflow/identity"``.
        name: Human-readable name.
        description: One-line description shown in brick listings.
        kind: Declared semantics; decides how outputs are folded.
        input_schema: JSON Schema of the rendered arguments.
        output_schema: JSON Schema of the output, checked but not enforced.
        default_output_key: Suggested output key for editors.
        is_root_aware: Whether the brick consumes ``options.root``.
    """

    id: ClassVar[str]
    name: ClassVar[str] = ""
    description: ClassVar[str] = ""
    kind: ClassVar[BrickKind]
    input_schema: ClassVar[JsonSchema] = properties_to_schema({})
    output_schema: ClassVar[JsonSchema | None] = None
    default_output_key: ClassVar[str | None] = None
    is_root_aware: ClassVar[bool] = False

    @abstractmethod
    async def run(self, args: dict[str, Any], options: BrickOptions) -> Any:
        """Run the brick with rendered *args*."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id}>"


class Transformer(Brick):
    """Computes a value from its arguments."""

    kind = BrickKind.TRANSFORMER

    async def run(self, args: dict[str, Any], options: BrickOptions) -> Any:
        return await self.transform(args, options)

    @abstractmethod
    async def transform(self, args: dict[str, Any], options: BrickOptions) -> Any: ...


class Effect(Brick):
    """Performs a side effect; its return value is ignored."""

    kind = BrickKind.EFFECT

    async def run(self, args: dict[str, Any], options: BrickOptions) -> Any:
        await self.effect(args, options)
        return None

    @abstractmethod
    async def effect(self, args: dict[str, Any], options: BrickOptions) -> None: ...


class Renderer(Brick):
    """Produces content to display."""

    kind = BrickKind.RENDERER

    async def run(self, args: dict[str, Any], options: BrickOptions) -> Any:
        return await self.render(args, options)

    @abstractmethod
    async def render(self, args: dict[str, Any], options: BrickOptions) -> Any: ...


class Reader(Brick):
    """Reads data from the root element it is given."""

    kind = BrickKind.READER
    is_root_aware = True

    async def run(self, args: dict[str, Any], options: BrickOptions) -> Any:
        return await self.read(options.root, options)

    @abstractmethod
    async def read(self, root: Any, options: BrickOptions) -> Any: ...
