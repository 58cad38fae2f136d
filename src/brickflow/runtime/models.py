"""Pipeline data models.

Defines the core structures for pipeline definitions, execution options
and initial values used throughout the runtime.
"""

from __future__ import annotations

import enum
import re
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from brickflow.errors import OutputKeyError, PipelineConfigurationError
from brickflow.runtime.expressions import (
    TEMPLATE_ENGINES,
    parse_expressions,
    serialize_expressions,
)

if TYPE_CHECKING:
    from brickflow.runtime.signals import AbortSignal


class ApiVersion(str, enum.Enum):
    """Data-flow contract of a pipeline."""

    V1 = "v1"
    V2 = "v2"
    V3 = "v3"


class BrickKind(str, enum.Enum):
    """Declared semantics of a brick; decides default output folding."""

    EFFECT = "effect"
    TRANSFORMER = "transformer"
    RENDERER = "renderer"
    READER = "reader"


class RootMode(str, enum.Enum):
    """Which root element a step's brick receives."""

    INHERIT = "inherit"
    DOCUMENT = "document"
    ELEMENT = "element"


_OUTPUT_KEY_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

# Namespaces seeded by the runtime itself. ``input`` and ``options`` may be
# rebound by a step, the rest may not.
RESERVED_OUTPUT_KEYS = frozenset({"mod", "brickflow"})


def validate_output_key(key: str) -> str:
    """Return *key* if it is a valid output key.

    Raises:
        OutputKeyError: If *key* is not an identifier or is reserved.
    """
    if not isinstance(key, str) or not _OUTPUT_KEY_RE.match(key):
        raise OutputKeyError(f"Invalid output key: {key!r}")
    if key in RESERVED_OUTPUT_KEYS:
        raise OutputKeyError(f"Output key is reserved: {key!r}")
    return key


@dataclass(frozen=True)
class Step:
    """A single brick invocation in a pipeline.

    Attributes:
        brick_id: Registry id of the brick to run.
        config: Brick arguments; values may be expressions.
        output_key: Name under which the output is exposed as ``@<key>``.
        if_: Optional condition; the step is skipped when it is falsy.
        instance_id: Unique id of this step, used for tracing.
        root_mode: Which root element the brick receives.
        label: Human-readable label used in logs.
        template_engine: Engine used to render plain strings for
            pipelines without explicit rendering (v1/v2).
        notify_progress: Whether to log progress for this step at INFO.
        wire_keys: Keys of the parsed wire object, in their original order.
            Empty for steps built in code.
        wire_extras: Wire values the fields above can't represent, such
            as unknown keys or an empty ``outputKey``.
    """

    brick_id: str
    config: dict[str, Any] = field(default_factory=dict)
    output_key: str | None = None
    if_: Any = None
    instance_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    root_mode: RootMode = RootMode.INHERIT
    label: str | None = None
    template_engine: str = "mustache"
    notify_progress: bool = False
    wire_keys: tuple[str, ...] = field(default=(), compare=False, repr=False)
    wire_extras: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        if not self.brick_id:
            raise PipelineConfigurationError("Pipeline stage is missing a brick id")
        if self.output_key is not None:
            validate_output_key(self.output_key)
        if self.template_engine not in TEMPLATE_ENGINES:
            raise PipelineConfigurationError(
                f"Unknown template engine: {self.template_engine!r}"
            )

    @property
    def has_condition(self) -> bool:
        return self.if_ is not None


Pipeline = tuple[Step, ...]

_STEP_WIRE_KEYS = (
    "id",
    "outputKey",
    "if",
    "label",
    "templateEngine",
    "rootMode",
    "notifyProgress",
    "instanceId",
    "config",
)

# Keys whose empty wire values are normalized away when parsing
_NULLABLE_WIRE_KEYS = ("outputKey", "rootMode", "instanceId", "config")


def parse_step(data: dict[str, Any]) -> Step:
    """Parse a single wire-format step."""
    if not isinstance(data, dict):
        raise PipelineConfigurationError(
            f"Expected a step object, got {type(data).__name__}"
        )
    brick_id = data.get("id")
    if not brick_id:
        raise PipelineConfigurationError("Pipeline stage is missing a brick id")

    kwargs: dict[str, Any] = {
        "brick_id": brick_id,
        "config": parse_expressions(data.get("config") or {}),
        "output_key": data.get("outputKey") or None,
        "if_": parse_expressions(data["if"]) if "if" in data else None,
        "label": data.get("label"),
        "template_engine": data.get("templateEngine", "mustache"),
        "notify_progress": bool(data.get("notifyProgress", False)),
        "wire_keys": tuple(data),
        "wire_extras": {
            key: value
            for key, value in data.items()
            if key not in _STEP_WIRE_KEYS or (key in _NULLABLE_WIRE_KEYS and not value)
        },
    }
    if data.get("instanceId"):
        kwargs["instance_id"] = data["instanceId"]
    if data.get("rootMode"):
        try:
            kwargs["root_mode"] = RootMode(data["rootMode"])
        except ValueError as exc:
            raise PipelineConfigurationError(
                f"Invalid rootMode: {data['rootMode']!r}"
            ) from exc
    return Step(**kwargs)


def parse_pipeline(data: Any) -> Pipeline:
    """Parse a wire-format pipeline (a step or list of steps)."""
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, (list, tuple)):
        raise PipelineConfigurationError(
            f"Expected a list of steps, got {type(data).__name__}"
        )
    return tuple(parse_step(item) for item in data)


def _wire_value(step: Step, key: str) -> Any:
    if key == "id":
        return step.brick_id
    if key == "outputKey" and step.output_key is not None:
        return step.output_key
    if key == "if":
        return serialize_expressions(step.if_)
    if key == "label":
        return step.label
    if key == "templateEngine":
        return step.template_engine
    if key == "rootMode" and (step.root_mode != RootMode.INHERIT or key not in step.wire_extras):
        return step.root_mode.value
    if key == "notifyProgress":
        return step.notify_progress
    if key == "instanceId" and key not in step.wire_extras:
        return step.instance_id
    if key == "config" and step.config:
        return serialize_expressions(step.config)
    return step.wire_extras.get(key)


def serialize_step(step: Step) -> dict[str, Any]:
    """Return the wire-format dict for *step*.

    A parsed step is written back with the keys it was read with, in
    the same order. Fields set since parsing are appended after them.
    """
    canonical = _canonical_wire(step)
    if not step.wire_keys:
        return canonical

    data = {key: _wire_value(step, key) for key in step.wire_keys}
    for key, value in canonical.items():
        # A generated instance id or empty config was never on the wire
        if key in data or key == "instanceId" or (key == "config" and not step.config):
            continue
        data[key] = value
    return data


def _canonical_wire(step: Step) -> dict[str, Any]:
    data: dict[str, Any] = {"id": step.brick_id}
    if step.output_key:
        data["outputKey"] = step.output_key
    if step.if_ is not None:
        data["if"] = serialize_expressions(step.if_)
    if step.label:
        data["label"] = step.label
    if step.template_engine != "mustache":
        data["templateEngine"] = step.template_engine
    if step.root_mode != RootMode.INHERIT:
        data["rootMode"] = step.root_mode.value
    if step.notify_progress:
        data["notifyProgress"] = True
    data["instanceId"] = step.instance_id
    data["config"] = serialize_expressions(step.config)
    return data


def serialize_pipeline(pipeline: Pipeline) -> list[dict[str, Any]]:
    return [serialize_step(step) for step in pipeline]


@dataclass
class InitialValues:
    """Values seeding the context of a top-level pipeline run.

    Attributes:
        input: Invocation arguments, exposed as ``@input``.
        options_args: Mod options chosen at activation, exposed as ``@options``.
        service_context: Integration configurations, keyed ``@<name>``.
        root: Opaque root element handle passed to root-aware bricks.
    """

    input: dict[str, Any] = field(default_factory=dict)
    options_args: dict[str, Any] = field(default_factory=dict)
    service_context: dict[str, Any] = field(default_factory=dict)
    root: Any = None


@dataclass(frozen=True)
class Branch:
    """A sub-pipeline execution, used to correlate trace records.

    Attributes:
        key: Static name of the branch (e.g. ``"body"``).
        counter: Monotonic counter of executions of the branch.
    """

    key: str
    counter: int = 0


@dataclass
class ReduceOptions:
    """Options controlling a single ``reduce`` call.

    Attributes:
        validate_input: Validate rendered args against input schemas.
        log_values: Log rendered inputs and outputs at DEBUG.
        headless: Raise :class:`~brickflow.errors.HeadlessModeError`
            when a renderer is reached.
        autoescape: HTML-escape values interpolated into templates.
        run_id: Correlates trace records of one run.
        mod_component_id: Owner of page state written by bricks.
        branches: Sub-pipeline path of the current execution.
        abort_signal: Cancels the run when aborted.
    """

    validate_input: bool = True
    log_values: bool = False
    headless: bool = False
    autoescape: bool = True
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    mod_component_id: str | None = None
    branches: tuple[Branch, ...] = ()
    abort_signal: AbortSignal | None = None
