"""Expression model.

A step's config is plain JSON in which some values are *expressions*:
deferred computations evaluated against the execution context. On the
wire an expression is an envelope::

    {"__type__": "var", "__value__": "@input.name"}

In memory each kind is its own frozen dataclass, so the reducer never has
to guess the shape of a config value at runtime. Literals stay plain
Python values.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Union

from brickflow.errors import PipelineConfigurationError

if TYPE_CHECKING:
    from brickflow.runtime.models import Step

TYPE_KEY = "__type__"
VALUE_KEY = "__value__"


@dataclass(frozen=True)
class VarExpression:
    """Reference to a dotted, optionally ``@``-prefixed, path in the context."""

    kind: ClassVar[str] = "var"
    value: str


@dataclass(frozen=True)
class MustacheExpression:
    """Logic-less mustache template."""

    kind: ClassVar[str] = "mustache"
    value: str


@dataclass(frozen=True)
class NunjucksExpression:
    """Nunjucks/Jinja-style template supporting loops and filters."""

    kind: ClassVar[str] = "nunjucks"
    value: str


@dataclass(frozen=True)
class PipelineExpression:
    """A nested pipeline, run by the brick that receives it."""

    kind: ClassVar[str] = "pipeline"
    value: tuple[Step, ...]


@dataclass(frozen=True)
class DeferExpression:
    """An un-evaluated sub-tree, evaluated later by the consuming brick."""

    kind: ClassVar[str] = "defer"
    value: Any


TemplateExpression = Union[MustacheExpression, NunjucksExpression]
Expression = Union[
    VarExpression,
    MustacheExpression,
    NunjucksExpression,
    PipelineExpression,
    DeferExpression,
]

EXPRESSION_TYPES: dict[str, type] = {
    cls.kind: cls
    for cls in (
        VarExpression,
        MustacheExpression,
        NunjucksExpression,
        PipelineExpression,
        DeferExpression,
    )
}

TEMPLATE_ENGINES = frozenset({"mustache", "nunjucks", "var"})


def is_expression(value: Any) -> bool:
    return isinstance(value, tuple(EXPRESSION_TYPES.values()))


def is_template_expression(value: Any) -> bool:
    return isinstance(value, (MustacheExpression, NunjucksExpression))


def is_pipeline_expression(value: Any) -> bool:
    return isinstance(value, PipelineExpression)


def is_envelope(value: Any) -> bool:
    """Return ``True`` if *value* is a serialized expression envelope."""
    return isinstance(value, dict) and TYPE_KEY in value and VALUE_KEY in value


def to_expression(kind: str, value: Any) -> Expression:
    """Build an expression of *kind* from an already-parsed *value*.

    For ``pipeline`` the value may be a list of steps or of step dicts.
    """
    cls = EXPRESSION_TYPES.get(kind)
    if cls is None:
        raise PipelineConfigurationError(f"Unknown expression type: {kind!r}")
    if cls is PipelineExpression:
        from brickflow.runtime.models import Step, parse_pipeline

        if all(isinstance(step, Step) for step in value):
            return PipelineExpression(tuple(value))
        return PipelineExpression(parse_pipeline(value))
    return cls(value)


def parse_expressions(value: Any) -> Any:
    """Deep-walk JSON *value*, converting envelopes into expressions."""
    if is_envelope(value):
        kind = value[TYPE_KEY]
        payload = value[VALUE_KEY]
        if kind == "pipeline":
            return to_expression(kind, payload or [])
        if kind == "defer":
            return DeferExpression(parse_expressions(payload))
        if kind not in EXPRESSION_TYPES:
            raise PipelineConfigurationError(f"Unknown expression type: {kind!r}")
        if not isinstance(payload, str):
            raise PipelineConfigurationError(
                f"Expected a string for {kind} expression, got {type(payload).__name__}"
            )
        return to_expression(kind, payload)
    if isinstance(value, dict):
        return {k: parse_expressions(v) for k, v in value.items()}
    if isinstance(value, list):
        return [parse_expressions(v) for v in value]
    return value


def serialize_expressions(value: Any) -> Any:
    """Inverse of :func:`parse_expressions`."""
    if isinstance(value, PipelineExpression):
        from brickflow.runtime.models import serialize_pipeline

        return {TYPE_KEY: value.kind, VALUE_KEY: serialize_pipeline(value.value)}
    if isinstance(value, DeferExpression):
        return {TYPE_KEY: value.kind, VALUE_KEY: serialize_expressions(value.value)}
    if is_expression(value):
        return {TYPE_KEY: value.kind, VALUE_KEY: value.value}
    if isinstance(value, dict):
        return {k: serialize_expressions(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_expressions(v) for v in value]
    return value
