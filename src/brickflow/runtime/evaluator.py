"""Expression evaluator.

Resolves expressions in a step's config against the execution context.
Variable lookups are lenient: a missing path resolves to ``None`` instead
of raising, because variables in user-authored pipelines are optional.

Pipeline and defer expressions are returned unchanged. The reducer is the
only component that runs steps; a brick receiving a pipeline expression
runs it through ``options.run_pipeline``.
"""

from __future__ import annotations

import re
from typing import Any

from brickflow.runtime.expressions import (
    MustacheExpression,
    NunjucksExpression,
    VarExpression,
    is_expression,
)
from brickflow.runtime.templates import render_template

_TRUTHY_STRINGS = frozenset({"true", "t", "yes", "y", "on", "1"})

# Plain strings treated as variable references when rendering implicitly
_IMPLICIT_VAR_RE = re.compile(r"^@[\w-]+(\??\.[\w-]+)*$")


def boolean(value: Any) -> bool:
    """Interpret a rendered condition as a boolean.

    Strings are truthy only when they spell a boolean (``"true"``,
    ``"yes"``, ``"1"``, ...), so a template that renders to arbitrary
    text does not accidentally enable a step.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY_STRINGS
    if isinstance(value, (int, float)):
        return value != 0
    return False


def _split_path(path: str) -> list[str]:
    return [part.rstrip("?") for part in path.replace("?.", ".").split(".") if part]


def get_prop_by_path(obj: Any, path: str) -> Any:
    """Return the value at dotted *path* in *obj*, or ``None`` if missing.

    Supports ``@``-prefixed roots (``@input.name``), optional chaining
    (``@input?.name``) and integer indexes into lists (``items.0``).
    """
    current = obj
    for part in _split_path(path):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return None
        else:
            return None
    return current


def evaluate(expression: Any, context: dict[str, Any], *, autoescape: bool = True) -> Any:
    """Evaluate a single *expression* against *context*.

    Literals are returned as-is.

    Raises:
        TemplateRenderError: If a template expression fails to render.
    """
    if isinstance(expression, VarExpression):
        return get_prop_by_path(context, expression.value)
    if isinstance(expression, MustacheExpression):
        return render_template("mustache", expression.value, context, autoescape=autoescape)
    if isinstance(expression, NunjucksExpression):
        return render_template("nunjucks", expression.value, context, autoescape=autoescape)
    # Pipeline and defer expressions are consumed by the receiving brick
    return expression


def _render_implicit(value: str, context: dict[str, Any], engine: str, autoescape: bool) -> Any:
    if _IMPLICIT_VAR_RE.match(value):
        return get_prop_by_path(context, value)
    if engine == "var":
        return get_prop_by_path(context, value)
    return render_template(engine, value, context, autoescape=autoescape)


def map_args(
    config: Any,
    context: dict[str, Any],
    *,
    implicit_render: str | None = None,
    autoescape: bool = True,
) -> Any:
    """Deep-walk *config*, evaluating every expression against *context*.

    Args:
        config: Step config (or any sub-tree of one).
        context: The template context.
        implicit_render: Template engine applied to plain strings, or
            ``None`` to treat plain strings as literals.
        autoescape: HTML-escape values interpolated into templates.

    Returns:
        A new structure with all expressions resolved. Pipeline and defer
        expressions are kept as-is for the consuming brick.
    """
    if is_expression(config):
        return evaluate(config, context, autoescape=autoescape)
    if isinstance(config, dict):
        return {
            key: map_args(value, context, implicit_render=implicit_render, autoescape=autoescape)
            for key, value in config.items()
        }
    if isinstance(config, (list, tuple)):
        return [
            map_args(value, context, implicit_render=implicit_render, autoescape=autoescape)
            for value in config
        ]
    if isinstance(config, str) and implicit_render is not None:
        return _render_implicit(config, context, implicit_render, autoescape)
    return config
