"""Loop bricks.

Both bricks run their ``body`` once per element, in order, binding the
element as ``@<elementKey>`` and its position as ``@index``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from brickflow.bricks.base import PIPELINE_SCHEMA, Transformer, pipeline_arg, properties_to_schema
from brickflow.errors import BusinessError
from brickflow.runtime.models import Branch, validate_output_key

if TYPE_CHECKING:
    from brickflow.runtime.reducer import BrickOptions

DEFAULT_ELEMENT_KEY = "element"

_LOOP_SCHEMA = properties_to_schema(
    {
        "elements": {
            "type": "array",
            "description": "The elements to loop over",
        },
        "body": {**PIPELINE_SCHEMA, "description": "The bricks to run for each element"},
        "elementKey": {
            "type": "string",
            "description": "The element key/variable for the body of the loop, without the leading @",
            "default": DEFAULT_ELEMENT_KEY,
        },
    },
    ["elements", "body"],
)


async def _iterate(brick_id: str, args: dict[str, Any], options: BrickOptions) -> list[Any]:
    elements = args.get("elements")
    if not isinstance(elements, list):
        raise BusinessError(f"Expected a list of elements, got {type(elements).__name__}")
    body = pipeline_arg(brick_id, args, "body")
    element_key = validate_output_key(args.get("elementKey") or DEFAULT_ELEMENT_KEY)

    results = []
    for index, element in enumerate(elements):
        options.logger.debug("Running loop body for element %d of %d", index + 1, len(elements))
        results.append(
            await options.run_pipeline(
                body,
                Branch("body", index),
                {f"@{element_key}": element, "@index": index},
            )
        )
    return results


class ForEach(Transformer):
    """Runs a pipeline for each element and returns the last iteration's value."""

    id = "@brickflow/for-each"
    name = "For-Each Loop"
    description = "Loop over elements in a list/array, returning the value of the last iteration"
    input_schema = _LOOP_SCHEMA

    async def transform(self, args: dict[str, Any], options: BrickOptions) -> Any:
        results = await _iterate(self.id, args, options)
        return results[-1] if results else None


class MapValues(Transformer):
    """Runs a pipeline for each element and returns every iteration's value."""

    id = "@brickflow/map"
    name = "Map Loop"
    description = "Loop over elements in a list/array, returning the value of each iteration"
    input_schema = _LOOP_SCHEMA

    async def transform(self, args: dict[str, Any], options: BrickOptions) -> Any:
        return await _iterate(self.id, args, options)
