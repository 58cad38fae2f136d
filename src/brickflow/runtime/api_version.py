"""API version policies.

Each API version is a data-flow contract deciding how a brick's output is
folded into the state seen by later steps. The reducer selects one
:class:`ApiVersionPolicy` per ``reduce`` call and never inspects the
version string itself.

``v1``
    Implicit data flow. An un-keyed output replaces the value flowing
    to the next step, and a plain-dict output is merged over the context
    when rendering that step. A non-object output (list, scalar) is
    handed to the next brick verbatim as its ``ctxt`` and that step's
    config is not rendered.
``v2``
    Explicit data flow. Outputs are visible to later steps only through
    ``outputKey``; un-keyed outputs of non-terminal steps are discarded.
    Plain strings in configs are still rendered as templates.
``v3``
    Same folding as ``v2``, but an un-keyed transformer output becomes
    the provisional return value of the pipeline, and only explicit
    expressions are rendered.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any

from brickflow.errors import BusinessError
from brickflow.runtime.models import ApiVersion, BrickKind, Step

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineState:
    """Immutable state threaded through the steps of one pipeline.

    Attributes:
        context: Variables visible to the next step (``@input``,
            ``@options`` and bound output keys).
        output: The value the pipeline would return if it ended now.
        block_output: The output of the most recently run brick, even
            when it was bound to an output key.
    """

    context: dict[str, Any]
    output: Any = None
    block_output: Any = None


class ApiVersionPolicy:
    """Base class of the data-flow contracts."""

    version: ApiVersion
    explicit_arg: bool = True
    explicit_data_flow: bool = True
    explicit_render: bool = False

    def initial_state(self, context: dict[str, Any], input: Any) -> PipelineState:
        return PipelineState(context=context, output={})

    def expression_state(self, context: dict[str, Any]) -> PipelineState:
        """Initial state of a sub-pipeline run by a control-flow brick.

        Raises:
            BusinessError: If the policy has no explicit data flow.
        """
        if not self.explicit_data_flow:
            raise BusinessError(
                f"Nested pipelines require apiVersion v2 or later (got {self.version.value})"
            )
        return PipelineState(context=context, output=None)

    def template_context(self, state: PipelineState) -> dict[str, Any]:
        """Context used to render the next step's condition and config."""
        return state.context

    def passes_config_through(self, state: PipelineState) -> bool:
        """Whether the next step's config is handed over unrendered."""
        return False

    def brick_context(self, state: PipelineState) -> Any:
        """The ``ctxt`` value handed to the next brick."""
        return self.template_context(state)

    def implicit_render(self, step: Step) -> str | None:
        """Template engine applied to plain strings of *step*'s config."""
        if self.explicit_render:
            return None
        return step.template_engine

    def skip(self, state: PipelineState) -> PipelineState:
        """State after a step whose condition was falsy."""
        return replace(state, block_output=None)

    def fold_output(
        self,
        state: PipelineState,
        step: Step,
        kind: BrickKind,
        result: Any,
        *,
        is_last: bool,
    ) -> PipelineState:
        """Return the state after *step* produced *result*."""
        if kind == BrickKind.EFFECT:
            if step.output_key:
                logger.warning("Ignoring output key for effect %s", step.brick_id)
            if result is not None:
                logger.warning("Ignoring output produced by effect %s", step.brick_id)
            return replace(state, block_output=None)

        if kind in (BrickKind.TRANSFORMER, BrickKind.READER, BrickKind.RENDERER):
            if step.output_key:
                return PipelineState(
                    # Keys overwrite any previous keys with the same name
                    context={**state.context, f"@{step.output_key}": result},
                    output=state.output,
                    block_output=result,
                )
            if kind == BrickKind.RENDERER and not is_last:
                # Rendered content is only meaningful as the pipeline's result
                return replace(state, block_output=result)
            return self._fold_unkeyed(state, step, result, is_last=is_last)

        raise AssertionError(f"Unhandled brick kind: {kind!r}")

    def _fold_unkeyed(
        self, state: PipelineState, step: Step, result: Any, *, is_last: bool
    ) -> PipelineState:
        raise NotImplementedError

    def terminal_value(self, state: PipelineState, *, expression: bool = False) -> Any:
        """The value returned by a pipeline that ended in *state*.

        Args:
            state: The state after the last step.
            expression: ``True`` for a sub-pipeline run by a control-flow
                brick, which returns its last brick's output even when
                that output was bound to an output key.
        """
        if expression:
            return state.block_output
        return state.output


class V1Policy(ApiVersionPolicy):
    version = ApiVersion.V1
    explicit_arg = False
    explicit_data_flow = False
    explicit_render = False

    def initial_state(self, context: dict[str, Any], input: Any) -> PipelineState:
        return PipelineState(context=context, output=input)

    def template_context(self, state: PipelineState) -> dict[str, Any]:
        # The previous output overrides anything in the context
        if isinstance(state.output, dict):
            return {**state.context, **state.output}
        return state.context

    def passes_config_through(self, state: PipelineState) -> bool:
        return not isinstance(state.output, dict)

    def brick_context(self, state: PipelineState) -> Any:
        if isinstance(state.output, dict):
            return self.template_context(state)
        return state.output

    def _fold_unkeyed(
        self, state: PipelineState, step: Step, result: Any, *, is_last: bool
    ) -> PipelineState:
        return PipelineState(context=state.context, output=result, block_output=result)


class V2Policy(ApiVersionPolicy):
    version = ApiVersion.V2

    def _fold_unkeyed(
        self, state: PipelineState, step: Step, result: Any, *, is_last: bool
    ) -> PipelineState:
        if is_last:
            return PipelineState(context=state.context, output=result, block_output=result)
        if result is not None:
            logger.warning(
                "Discarding output of %s: outputKey is required for bricks that "
                "return data (since apiVersion: v2)",
                step.brick_id,
            )
        return replace(state, block_output=result)


class V3Policy(ApiVersionPolicy):
    version = ApiVersion.V3
    explicit_render = True

    def _fold_unkeyed(
        self, state: PipelineState, step: Step, result: Any, *, is_last: bool
    ) -> PipelineState:
        return PipelineState(context=state.context, output=result, block_output=result)


_POLICIES: dict[ApiVersion, ApiVersionPolicy] = {
    ApiVersion.V1: V1Policy(),
    ApiVersion.V2: V2Policy(),
    ApiVersion.V3: V3Policy(),
}


def policy_for(version: ApiVersion | str) -> ApiVersionPolicy:
    """Return the policy implementing *version*.

    Raises:
        ValueError: If *version* is not a known API version.
    """
    return _POLICIES[ApiVersion(version)]
