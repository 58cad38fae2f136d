"""Input validation and pipeline linting.

:class:`JsonSchemaValidator` checks rendered brick arguments against the
brick's input schema at run time. :func:`lint_pipeline` statically
checks a parsed pipeline for mistakes before it runs.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from jsonschema import Draft7Validator

from brickflow.runtime.expressions import (
    DeferExpression,
    PipelineExpression,
    serialize_expressions,
)
from brickflow.runtime.models import ApiVersion, BrickKind, Pipeline, Step

if TYPE_CHECKING:
    from brickflow.bricks.registry import BrickRegistry

logger = logging.getLogger(__name__)

# Output keys that rebind a variable seeded by the runtime
_SHADOWING_KEYS = frozenset({"input", "options"})


@dataclass
class ValidationResult:
    """Outcome of validating a value against a schema.

    Attributes:
        valid: Whether the value matched.
        errors: ``{"path": ..., "message": ...}`` dicts, one per violation.
    """

    valid: bool
    errors: list[dict[str, str]] = field(default_factory=list)


@runtime_checkable
class SchemaValidator(Protocol):
    """Protocol for the input validation collaborator."""

    def validate(self, schema: dict[str, Any], value: Any) -> ValidationResult: ...


def _drop_none(value: Any) -> Any:
    # Unset optional arguments render to None; the schema should treat them as absent
    if isinstance(value, dict):
        return {k: _drop_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_drop_none(v) for v in value]
    return value


def _prepare(value: Any) -> Any:
    # Nested pipelines are validated in their wire form
    return serialize_expressions(_drop_none(value))


def _format_path(path: Any) -> str:
    return ".".join(str(part) for part in path)


class JsonSchemaValidator:
    """:class:`SchemaValidator` backed by :mod:`jsonschema` (Draft 7)."""

    def validate(self, schema: dict[str, Any], value: Any) -> ValidationResult:
        validator = Draft7Validator(schema)
        errors = [
            {"path": _format_path(error.absolute_path), "message": error.message}
            for error in sorted(
                validator.iter_errors(_prepare(value)),
                key=lambda e: list(map(str, e.absolute_path)),
            )
        ]
        return ValidationResult(valid=not errors, errors=errors)


# ---------------------------------------------------------------------------
# Linting
# ---------------------------------------------------------------------------


class LintLevel(str, enum.Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class LintFinding:
    """A single lint finding."""

    level: LintLevel
    message: str
    path: str = ""
    brick_id: str | None = None
    rule: str = ""

    def __str__(self) -> str:
        location = f" ({self.path})" if self.path else ""
        rule_tag = f" [{self.rule}]" if self.rule else ""
        return f"[{self.level.value.upper()}]{location}{rule_tag} {self.message}"


def has_errors(findings: list[LintFinding]) -> bool:
    """Return True if any finding is an error (not just a warning)."""
    return any(f.level == LintLevel.ERROR for f in findings)


def lint_pipeline(
    pipeline: Pipeline,
    registry: BrickRegistry,
    version: ApiVersion | str = ApiVersion.V3,
) -> list[LintFinding]:
    """Run all lint checks on *pipeline*, including nested pipelines.

    Args:
        pipeline: The pipeline to lint.
        registry: Registry used to resolve brick ids and kinds.
        version: API version the pipeline runs under.

    Returns:
        A list of :class:`LintFinding` findings, possibly empty.
    """
    findings: list[LintFinding] = []
    _lint_steps(pipeline, registry, ApiVersion(version), "pipeline", findings)
    return findings


def _lint_steps(
    pipeline: Pipeline,
    registry: BrickRegistry,
    version: ApiVersion,
    path: str,
    findings: list[LintFinding],
) -> None:
    last = len(pipeline) - 1
    for index, step in enumerate(pipeline):
        step_path = f"{path}[{index}]"
        brick = registry.lookup(step.brick_id)
        if brick is None:
            findings.append(
                LintFinding(
                    level=LintLevel.ERROR,
                    message=f"Unknown brick '{step.brick_id}'",
                    path=step_path,
                    brick_id=step.brick_id,
                    rule="brick_known",
                )
            )
        else:
            _check_output_key(step, brick.kind, version, index == last, step_path, findings)

        if version == ApiVersion.V3:
            _check_literal_templates(step.config, step, f"{step_path}.config", findings)

        for key, sub_pipeline in _nested_pipelines(step.config, f"{step_path}.config"):
            _lint_steps(sub_pipeline, registry, version, key, findings)


def _check_output_key(
    step: Step,
    kind: BrickKind,
    version: ApiVersion,
    is_last: bool,
    path: str,
    findings: list[LintFinding],
) -> None:
    if step.output_key in _SHADOWING_KEYS:
        findings.append(
            LintFinding(
                level=LintLevel.WARNING,
                message=f"Output key '{step.output_key}' shadows the built-in @{step.output_key}",
                path=path,
                brick_id=step.brick_id,
                rule="output_key_shadowing",
            )
        )
    if kind == BrickKind.EFFECT and step.output_key:
        findings.append(
            LintFinding(
                level=LintLevel.WARNING,
                message="Effects do not produce output; the output key is ignored",
                path=path,
                brick_id=step.brick_id,
                rule="effect_output_key",
            )
        )
    if (
        version == ApiVersion.V2
        and kind in (BrickKind.TRANSFORMER, BrickKind.READER)
        and not step.output_key
        and not is_last
    ):
        findings.append(
            LintFinding(
                level=LintLevel.WARNING,
                message="Output is discarded: set an output key to use it in later steps",
                path=path,
                brick_id=step.brick_id,
                rule="output_key_required",
            )
        )


def _check_literal_templates(
    value: Any, step: Step, path: str, findings: list[LintFinding]
) -> None:
    if isinstance(value, str):
        if "{{" in value and "}}" in value:
            findings.append(
                LintFinding(
                    level=LintLevel.INFO,
                    message="Plain string looks like a template but is not rendered",
                    path=path,
                    brick_id=step.brick_id,
                    rule="literal_template",
                )
            )
    elif isinstance(value, dict):
        for key, item in value.items():
            _check_literal_templates(item, step, f"{path}.{key}", findings)
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            _check_literal_templates(item, step, f"{path}[{index}]", findings)


def _nested_pipelines(value: Any, path: str):
    if isinstance(value, PipelineExpression):
        yield path, value.value
    elif isinstance(value, DeferExpression):
        yield from _nested_pipelines(value.value, path)
    elif isinstance(value, dict):
        for key, item in value.items():
            yield from _nested_pipelines(item, f"{path}.{key}")
    elif isinstance(value, (list, tuple)) and not isinstance(value, str):
        for index, item in enumerate(value):
            yield from _nested_pipelines(item, f"{path}[{index}]")
