"""Pipeline reducer.

Runs the steps of a pipeline strictly in order. For each step it:

1. Checks the abort signal.
2. Resolves the step's brick in the registry.
3. Renders the config and evaluates the ``if`` condition, skipping the
   step when the condition is falsy.
4. Validates the rendered arguments against the brick's input schema.
5. Dispatches to the brick, racing it against the abort signal.
6. Folds the output into a new state via the :class:`ApiVersionPolicy`.

Control-flow bricks re-enter the reducer through
:attr:`BrickOptions.run_pipeline` to run their sub-pipelines.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, MutableMapping

from brickflow.bricks.base import Brick
from brickflow.bricks.registry import BrickRegistry, create_default_registry
from brickflow.config import RuntimeSettings
from brickflow.errors import (
    ContextError,
    HeadlessModeError,
    InputValidationError,
    serialize_error,
)
from brickflow.runtime.api_version import ApiVersionPolicy, PipelineState, policy_for
from brickflow.runtime.evaluator import boolean, map_args
from brickflow.runtime.events import PipelineEvent, PipelineEventEmitter, PipelineEventType
from brickflow.runtime.expressions import PipelineExpression
from brickflow.runtime.models import (
    ApiVersion,
    BrickKind,
    Branch,
    InitialValues,
    Pipeline,
    ReduceOptions,
    RootMode,
    Step,
)
from brickflow.runtime.page_state import MemoryPageState, PageStateStore
from brickflow.runtime.signals import AbortSignal, run_with_signal
from brickflow.runtime.trace import TraceRecord, TraceRecorder
from brickflow.runtime.validator import JsonSchemaValidator, SchemaValidator

logger = logging.getLogger(__name__)

RunPipeline = Callable[..., Awaitable[Any]]


class StepLogger(logging.LoggerAdapter):
    """Logger adapter carrying the location of the running step.

    The ``extra`` fields (``brick_id``, ``label``, ``run_id``,
    ``instance_id``) are attached to every record, and messages are
    prefixed with the step's label.
    """

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        prefix = self.extra.get("label") or self.extra.get("brick_id")
        if prefix:
            msg = f"[{prefix}] {msg}"
        return msg, kwargs

    def child(self, **extra: Any) -> StepLogger:
        """Return a logger with *extra* merged over this logger's fields."""
        return StepLogger(self.logger, {**self.extra, **extra})


@dataclass
class BrickOptions:
    """Options handed to :meth:`Brick.run`.

    Attributes:
        ctxt: The context visible to the step (``@input``, ``@options``
            and bound output keys; in v1, possibly the previous output).
        logger: Logger scoped to the step.
        root: Root element handle for root-aware bricks.
        run_pipeline: Coroutine function running a nested pipeline,
            ``run_pipeline(pipeline, branch, extra_context=None, root=None)``.
        page_state: Store for mod variables shared between runs.
        api_version: API version of the running pipeline.
        run_id: Id of the top-level run.
        mod_component_id: Owner of page state written by the brick.
        abort_signal: Signal inherited from the top-level call.
        branches: Sub-pipeline path of the step.
    """

    ctxt: Any
    logger: StepLogger
    root: Any
    run_pipeline: RunPipeline
    page_state: PageStateStore
    api_version: ApiVersion
    run_id: str
    mod_component_id: str | None = None
    abort_signal: AbortSignal | None = None
    branches: tuple[Branch, ...] = field(default_factory=tuple)


def _branch_labels(branches: tuple[Branch, ...]) -> list[str]:
    return [f"{branch.key}:{branch.counter}" for branch in branches]


class PipelineReducer:
    """Sequential interpreter of brick pipelines.

    Args:
        registry: Bricks available to pipelines. Defaults to the
            built-in bricks.
        validator: Input schema validator.
        trace: Recorder receiving a :class:`TraceRecord` per step.
        event_emitter: Emitter receiving lifecycle events.
        page_state: Store shared by stateful control-flow bricks.
        settings: Defaults for options left unset by callers.
    """

    def __init__(
        self,
        registry: BrickRegistry | None = None,
        *,
        validator: SchemaValidator | None = None,
        trace: TraceRecorder | None = None,
        event_emitter: PipelineEventEmitter | None = None,
        page_state: PageStateStore | None = None,
        settings: RuntimeSettings | None = None,
    ) -> None:
        self._settings = settings or RuntimeSettings()
        self._registry = (
            registry if registry is not None else create_default_registry(self._settings)
        )
        self._validator = validator or JsonSchemaValidator()
        self._trace = trace
        self._event_emitter = event_emitter
        self._page_state = page_state if page_state is not None else MemoryPageState()

    @property
    def registry(self) -> BrickRegistry:
        return self._registry

    @property
    def page_state(self) -> PageStateStore:
        return self._page_state

    @property
    def settings(self) -> RuntimeSettings:
        return self._settings

    async def _emit(self, event: PipelineEvent) -> None:
        """Emit a pipeline event if an emitter is configured."""
        if self._event_emitter is not None:
            await self._event_emitter.emit(event)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def reduce(
        self,
        pipeline: Pipeline | Step | list[Step],
        initial_values: InitialValues | None = None,
        version: ApiVersion | str | None = None,
        options: ReduceOptions | None = None,
    ) -> Any:
        """Run *pipeline* and return its final value.

        Args:
            pipeline: A step or sequence of steps.
            initial_values: Values seeding the context.
            version: API version; defaults to the configured version.
            options: Run options; defaults are taken from the settings.

        Returns:
            The pipeline's return value per the API version rules.

        Raises:
            ContextError: If a step fails; the original error is its cause.
            HeadlessModeError: If a renderer is reached in headless mode.
        """
        steps = (pipeline,) if isinstance(pipeline, Step) else tuple(pipeline)
        initial_values = initial_values or InitialValues()
        options = options or self._settings.reduce_options()
        policy = policy_for(version or self._settings.api_version)

        context: dict[str, Any] = {
            # Service context goes first so it can't override input/options
            **initial_values.service_context,
            "@input": initial_values.input,
            "@options": initial_values.options_args or {},
        }
        state = policy.initial_state(context, initial_values.input)

        logger.debug(
            "Running pipeline of %d step(s) (run %s, apiVersion %s)",
            len(steps),
            options.run_id,
            policy.version.value,
        )
        await self._emit(PipelineEvent(
            type=PipelineEventType.PIPELINE_START,
            run_id=options.run_id,
            data={"steps": len(steps), "api_version": policy.version.value},
        ))
        start_time = time.time()

        try:
            state = await self._run_steps(
                steps,
                state,
                policy,
                root=initial_values.root,
                document=initial_values.root,
                options=options,
            )
        except Exception as exc:
            await self._emit(PipelineEvent(
                type=PipelineEventType.PIPELINE_FAILED,
                run_id=options.run_id,
                data={"error": str(exc), "duration": time.time() - start_time},
            ))
            raise

        await self._emit(PipelineEvent(
            type=PipelineEventType.PIPELINE_COMPLETE,
            run_id=options.run_id,
            data={"duration": time.time() - start_time},
        ))
        return policy.terminal_value(state)

    async def reduce_expression(
        self,
        pipeline: PipelineExpression | Pipeline,
        context: dict[str, Any],
        *,
        root: Any = None,
        document: Any = None,
        options: ReduceOptions | None = None,
        policy: ApiVersionPolicy | ApiVersion | str | None = None,
    ) -> Any:
        """Run a nested pipeline and return its last brick's output.

        The output of the last brick that ran is returned even when it
        was bound to an output key.

        Raises:
            BusinessError: If *policy* has no explicit data flow (v1).
            ContextError: If a step fails.
        """
        if not isinstance(policy, ApiVersionPolicy):
            policy = policy_for(policy or self._settings.api_version)
        steps = pipeline.value if isinstance(pipeline, PipelineExpression) else tuple(pipeline)
        options = options or self._settings.reduce_options()

        state = policy.expression_state(context)
        state = await self._run_steps(
            steps,
            state,
            policy,
            root=root,
            document=root if document is None else document,
            options=options,
        )
        return policy.terminal_value(state, expression=True)

    # ------------------------------------------------------------------
    # Step loop
    # ------------------------------------------------------------------

    async def _run_steps(
        self,
        steps: Pipeline,
        state: PipelineState,
        policy: ApiVersionPolicy,
        *,
        root: Any,
        document: Any,
        options: ReduceOptions,
    ) -> PipelineState:
        last_index = len(steps) - 1
        for index, step in enumerate(steps):
            step_logger = self._step_logger(step, options)
            try:
                state = await self._run_step(
                    step,
                    state,
                    policy,
                    root=root,
                    document=document,
                    options=options,
                    step_logger=step_logger,
                    is_last=index == last_index,
                )
            except HeadlessModeError:
                # Expected: the caller renders the args itself
                raise
            except Exception as exc:
                await self._emit(PipelineEvent(
                    type=PipelineEventType.STEP_FAIL,
                    run_id=options.run_id,
                    brick_id=step.brick_id,
                    instance_id=step.instance_id,
                    label=step_logger.extra["label"],
                    branches=_branch_labels(options.branches),
                    data={"error": str(exc), "index": index},
                ))
                raise ContextError(
                    f"An error occurred running pipeline stage #{index + 1}: {step.brick_id}",
                    cause=exc,
                    context={
                        "step_index": index,
                        "brick_id": step.brick_id,
                        "instance_id": step.instance_id,
                        "label": step.label,
                        "run_id": options.run_id,
                        "branches": _branch_labels(options.branches),
                    },
                ) from exc
        return state

    def _step_logger(self, step: Step, options: ReduceOptions) -> StepLogger:
        brick = self._registry.lookup(step.brick_id)
        # Use the most customized name for the step
        label = step.label or (brick.name if brick is not None else None) or step.brick_id
        return StepLogger(
            logging.getLogger(f"{__name__}.step"),
            {
                "brick_id": step.brick_id,
                "label": label,
                "run_id": options.run_id,
                "instance_id": step.instance_id,
            },
        )

    async def _run_step(
        self,
        step: Step,
        state: PipelineState,
        policy: ApiVersionPolicy,
        *,
        root: Any,
        document: Any,
        options: ReduceOptions,
        step_logger: StepLogger,
        is_last: bool,
    ) -> PipelineState:
        if options.abort_signal is not None:
            options.abort_signal.throw_if_aborted()

        brick = self._registry.resolve(step.brick_id)
        template_context = policy.template_context(state)
        step_root = document if step.root_mode == RootMode.DOCUMENT else root

        record = TraceRecord(
            run_id=options.run_id,
            instance_id=step.instance_id,
            brick_id=step.brick_id,
            branches=_branch_labels(options.branches),
            template_context=template_context,
        )

        # Render before checking the condition so the trace entry always
        # carries the rendered args or the render error
        args: dict[str, Any] | None = None
        render_error: Exception | None = None
        try:
            args = self._render_args(step, state, policy, options)
        except Exception as exc:
            render_error = exc
            record.render_error = serialize_error(exc)
        record.rendered_args = args
        self._trace_entry(record)

        if not self._should_run(step, template_context, policy, options):
            step_logger.debug("Skipping stage %s because condition not met", step.brick_id)
            self._trace_exit(record, skipped_run=True)
            await self._emit(PipelineEvent(
                type=PipelineEventType.STEP_SKIPPED,
                run_id=options.run_id,
                brick_id=step.brick_id,
                instance_id=step.instance_id,
                label=step_logger.extra["label"],
                branches=record.branches,
            ))
            return policy.skip(state)

        if render_error is not None:
            self._trace_exit(record, error=serialize_error(render_error))
            raise render_error
        assert args is not None

        if options.log_values:
            step_logger.debug(
                "Input for brick %s: template=%r context=%r args=%r",
                step.brick_id,
                step.config,
                template_context,
                args,
            )

        try:
            output = await self._run_brick(
                brick,
                step,
                args,
                policy,
                state,
                root=step_root,
                document=document,
                options=options,
                step_logger=step_logger,
            )
        except Exception as exc:
            self._trace_exit(record, error=serialize_error(exc))
            raise

        if options.log_values:
            step_logger.debug(
                "Output for brick %s: %r (outputKey=%s)",
                step.brick_id,
                output,
                f"@{step.output_key}" if step.output_key else None,
            )
        self._trace_exit(record, output=output)
        self._log_if_invalid_output(brick, output, step_logger)

        await self._emit(PipelineEvent(
            type=PipelineEventType.STEP_COMPLETE,
            run_id=options.run_id,
            brick_id=step.brick_id,
            instance_id=step.instance_id,
            label=step_logger.extra["label"],
            branches=record.branches,
            data={"output_key": step.output_key},
        ))
        return policy.fold_output(state, step, brick.kind, output, is_last=is_last)

    async def _run_brick(
        self,
        brick: Brick,
        step: Step,
        args: dict[str, Any],
        policy: ApiVersionPolicy,
        state: PipelineState,
        *,
        root: Any,
        document: Any,
        options: ReduceOptions,
        step_logger: StepLogger,
    ) -> Any:
        if options.validate_input:
            result = self._validator.validate(brick.input_schema, args)
            if not result.valid:
                raise InputValidationError(
                    f"Invalid inputs for brick {brick.id}",
                    schema=brick.input_schema,
                    input=args,
                    errors=result.errors,
                )

        ctxt = policy.brick_context(state)
        if brick.kind == BrickKind.RENDERER and options.headless:
            raise HeadlessModeError(brick.id, args, ctxt)

        await self._emit(PipelineEvent(
            type=PipelineEventType.STEP_START,
            run_id=options.run_id,
            brick_id=step.brick_id,
            instance_id=step.instance_id,
            label=step_logger.extra["label"],
            branches=_branch_labels(options.branches),
        ))
        if step.notify_progress:
            step_logger.info("Running %s", step.label or brick.name or brick.id)

        brick_options = BrickOptions(
            ctxt=ctxt,
            logger=step_logger,
            root=root,
            run_pipeline=self._pipeline_runner(
                policy,
                template_context=policy.template_context(state),
                root=root,
                document=document,
                options=options,
            ),
            page_state=self._page_state,
            api_version=policy.version,
            run_id=options.run_id,
            mod_component_id=options.mod_component_id,
            abort_signal=options.abort_signal,
            branches=options.branches,
        )
        return await run_with_signal(brick.run(args, brick_options), options.abort_signal)

    def _pipeline_runner(
        self,
        policy: ApiVersionPolicy,
        *,
        template_context: dict[str, Any],
        root: Any,
        document: Any,
        options: ReduceOptions,
    ) -> RunPipeline:
        step_root = root

        async def run_pipeline(
            pipeline: PipelineExpression | Pipeline,
            branch: Branch,
            extra_context: dict[str, Any] | None = None,
            root: Any = None,
        ) -> Any:
            return await self.reduce_expression(
                pipeline,
                {**template_context, **(extra_context or {})},
                root=step_root if root is None else root,
                document=document,
                options=replace(options, branches=(*options.branches, branch)),
                policy=policy,
            )

        return run_pipeline

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _render_args(
        self,
        step: Step,
        state: PipelineState,
        policy: ApiVersionPolicy,
        options: ReduceOptions,
    ) -> dict[str, Any]:
        if policy.passes_config_through(state):
            return dict(step.config)
        return map_args(
            step.config,
            policy.template_context(state),
            implicit_render=policy.implicit_render(step),
            autoescape=options.autoescape,
        )

    def _should_run(
        self,
        step: Step,
        template_context: dict[str, Any],
        policy: ApiVersionPolicy,
        options: ReduceOptions,
    ) -> bool:
        if not step.has_condition:
            return True
        condition = map_args(
            step.if_,
            template_context,
            implicit_render=policy.implicit_render(step),
            autoescape=options.autoescape,
        )
        return boolean(condition)

    def _log_if_invalid_output(self, brick: Brick, output: Any, step_logger: StepLogger) -> None:
        if brick.output_schema is None or brick.kind == BrickKind.EFFECT:
            return
        result = self._validator.validate(brick.output_schema, output)
        if not result.valid:
            step_logger.warning(
                "Invalid output for brick %s: %s", brick.id, result.errors
            )

    def _trace_entry(self, record: TraceRecord) -> None:
        if self._trace is None:
            return
        try:
            self._trace.add_entry(record)
        except Exception as exc:
            logger.warning("Error recording trace entry for %s: %s", record.brick_id, exc)

    def _trace_exit(self, record: TraceRecord, **kwargs: Any) -> None:
        if self._trace is None:
            return
        try:
            self._trace.add_exit(record, **kwargs)
        except Exception as exc:
            logger.warning("Error recording trace exit for %s: %s", record.brick_id, exc)
