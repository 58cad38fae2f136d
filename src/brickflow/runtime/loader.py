"""Pipeline definition loader.

Reads pipeline definitions from JSON or YAML files using ``PyYAML``
(JSON is a subset of YAML, so one loader handles both). YAML documents
may use short-hand tags for expressions::

    - id: "@brickflow/identity"
      outputKey: greeting
      config:
        message: !mustache "Hello {{ @input.name }}"
        count: !var "@input.count"

Each tag is expanded to its ``{"__type__": ..., "__value__": ...}``
envelope before the steps are parsed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from brickflow.errors import PipelineConfigurationError
from brickflow.runtime.expressions import TYPE_KEY, VALUE_KEY
from brickflow.runtime.models import ApiVersion, Pipeline, parse_pipeline

logger = logging.getLogger(__name__)

_TEMPLATE_TAGS = ("var", "mustache", "nunjucks")


class PipelineYamlLoader(yaml.SafeLoader):
    """Safe YAML loader understanding the expression tags."""


def _construct_template(kind: str):
    def construct(loader: yaml.SafeLoader, node: yaml.Node) -> dict[str, Any]:
        if not isinstance(node, yaml.ScalarNode):
            raise yaml.constructor.ConstructorError(
                None, None, f"!{kind} expects a string", node.start_mark
            )
        return {TYPE_KEY: kind, VALUE_KEY: loader.construct_scalar(node)}

    return construct


def _construct_pipeline(loader: yaml.SafeLoader, node: yaml.Node) -> dict[str, Any]:
    if isinstance(node, yaml.ScalarNode) and not loader.construct_scalar(node):
        steps: list[Any] = []
    elif isinstance(node, yaml.SequenceNode):
        steps = loader.construct_sequence(node, deep=True)
    else:
        raise yaml.constructor.ConstructorError(
            None, None, "!pipeline expects a list of steps", node.start_mark
        )
    return {TYPE_KEY: "pipeline", VALUE_KEY: steps}


def _construct_defer(loader: yaml.SafeLoader, node: yaml.Node) -> dict[str, Any]:
    if isinstance(node, yaml.MappingNode):
        value: Any = loader.construct_mapping(node, deep=True)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_scalar(node)
    return {TYPE_KEY: "defer", VALUE_KEY: value}


for _kind in _TEMPLATE_TAGS:
    PipelineYamlLoader.add_constructor(f"!{_kind}", _construct_template(_kind))
PipelineYamlLoader.add_constructor("!pipeline", _construct_pipeline)
PipelineYamlLoader.add_constructor("!defer", _construct_defer)


@dataclass
class LoadedPipeline:
    """A parsed pipeline definition.

    Attributes:
        pipeline: The parsed steps.
        api_version: Version declared by the document, if any.
    """

    pipeline: Pipeline
    api_version: ApiVersion | None = None


def load_pipeline(source: str) -> LoadedPipeline:
    """Parse a JSON or YAML pipeline definition.

    The document is either a bare list of steps, a single step, or a
    mapping with ``pipeline`` and an optional ``apiVersion``.

    Raises:
        PipelineConfigurationError: If the document cannot be parsed.
    """
    try:
        data = yaml.load(source, Loader=PipelineYamlLoader)  # noqa: S506
    except yaml.YAMLError as exc:
        raise PipelineConfigurationError(f"Invalid pipeline definition: {exc}") from exc

    if data is None:
        raise PipelineConfigurationError("Pipeline definition is empty")

    api_version: ApiVersion | None = None
    if isinstance(data, dict) and "pipeline" in data:
        raw_version = data.get("apiVersion")
        if raw_version is not None:
            try:
                api_version = ApiVersion(str(raw_version).strip().lower())
            except ValueError as exc:
                raise PipelineConfigurationError(
                    f"Unsupported apiVersion: {raw_version!r}"
                ) from exc
        data = data["pipeline"]

    pipeline = parse_pipeline(data)
    logger.debug("Loaded pipeline of %d step(s), apiVersion %s", len(pipeline), api_version)
    return LoadedPipeline(pipeline=pipeline, api_version=api_version)


def load_pipeline_file(path: str | Path) -> LoadedPipeline:
    """Load a pipeline definition from *path*.

    Raises:
        FileNotFoundError: If *path* does not exist.
        PipelineConfigurationError: If the file cannot be parsed.
    """
    path = Path(path)
    return load_pipeline(path.read_text(encoding="utf-8"))
