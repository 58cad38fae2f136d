"""Brickflow - an asynchronous interpreter for brick pipelines.

A pipeline is an ordered list of steps, each invoking a brick with a
config whose values may be expressions rendered against the outputs of
earlier steps. Control-flow bricks run nested pipelines through the
same reducer.
"""

from brickflow.bricks.registry import BrickRegistry, create_default_registry
from brickflow.config import RuntimeSettings
from brickflow.errors import (
    BusinessError,
    CancelError,
    ContextError,
    HeadlessModeError,
    InputValidationError,
)
from brickflow.runtime.events import PipelineEvent, PipelineEventEmitter, PipelineEventType
from brickflow.runtime.loader import load_pipeline, load_pipeline_file
from brickflow.runtime.models import (
    ApiVersion,
    BrickKind,
    Branch,
    InitialValues,
    ReduceOptions,
    RootMode,
    Step,
    parse_pipeline,
)
from brickflow.runtime.page_state import MemoryPageState
from brickflow.runtime.reducer import BrickOptions, PipelineReducer
from brickflow.runtime.signals import AbortSignal
from brickflow.runtime.trace import TraceRecorder

__version__ = "0.1.0"

__all__ = [
    "AbortSignal",
    "ApiVersion",
    "BrickKind",
    "BrickOptions",
    "BrickRegistry",
    "Branch",
    "BusinessError",
    "CancelError",
    "ContextError",
    "HeadlessModeError",
    "InitialValues",
    "InputValidationError",
    "MemoryPageState",
    "PipelineEvent",
    "PipelineEventEmitter",
    "PipelineEventType",
    "PipelineReducer",
    "ReduceOptions",
    "RootMode",
    "RuntimeSettings",
    "Step",
    "TraceRecorder",
    "create_default_registry",
    "load_pipeline",
    "load_pipeline_file",
    "parse_pipeline",
]
