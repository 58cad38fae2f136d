"""Shared fixtures: a registry with small test bricks and a reducer."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from dotenv import load_dotenv

from brickflow.bricks.base import Effect, Reader, Renderer, Transformer
from brickflow.bricks.registry import BrickRegistry, create_default_registry
from brickflow.errors import BusinessError
from brickflow.runtime.events import PipelineEventEmitter
from brickflow.runtime.page_state import MemoryPageState
from brickflow.runtime.reducer import PipelineReducer
from brickflow.runtime.trace import TraceRecorder

# Pick up BRICKFLOW_* overrides from .env.local (project root)
load_dotenv(".env.local")


class EchoTransformer(Transformer):
    """Returns its arguments."""

    id = "test/echo"
    name = "Echo"

    async def transform(self, args: dict[str, Any], options) -> Any:
        return args


class ValueTransformer(Transformer):
    """Returns ``args["value"]``."""

    id = "test/value"
    name = "Value"

    async def transform(self, args: dict[str, Any], options) -> Any:
        return args.get("value")


class ContextTransformer(Transformer):
    """Returns the ``ctxt`` it was handed."""

    id = "test/context"
    name = "Context"

    async def transform(self, args: dict[str, Any], options) -> Any:
        return options.ctxt


class CountingTransformer(Transformer):
    """Counts its runs; optionally sleeps for ``delay`` and fails with ``fail``."""

    id = "test/counter"
    name = "Counter"

    def __init__(self) -> None:
        self.calls = 0

    async def transform(self, args: dict[str, Any], options) -> Any:
        self.calls += 1
        call = self.calls
        await asyncio.sleep(args.get("delay") or 0)
        if args.get("fail"):
            raise BusinessError("boom")
        return {"call": call}


class RecordingEffect(Effect):
    """Appends its arguments to :attr:`calls`."""

    id = "test/record"
    name = "Record"

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    async def effect(self, args: dict[str, Any], options) -> None:
        self.calls.append(args)


class RootReader(Reader):
    id = "test/root"
    name = "Root"

    async def read(self, root: Any, options) -> Any:
        return {"root": root}


class HtmlRenderer(Renderer):
    id = "test/render"
    name = "Render"

    async def render(self, args: dict[str, Any], options) -> Any:
        return f"<p>{args.get('text', '')}</p>"


@pytest.fixture()
def counter() -> CountingTransformer:
    return CountingTransformer()


@pytest.fixture()
def recorder() -> RecordingEffect:
    return RecordingEffect()


@pytest.fixture()
def registry(counter: CountingTransformer, recorder: RecordingEffect) -> BrickRegistry:
    """Default bricks plus the test bricks above."""
    registry = create_default_registry()
    registry.register(
        EchoTransformer(),
        ValueTransformer(),
        ContextTransformer(),
        RootReader(),
        HtmlRenderer(),
        counter,
        recorder,
    )
    return registry


@pytest.fixture()
def page_state() -> MemoryPageState:
    return MemoryPageState()


@pytest.fixture()
def trace() -> TraceRecorder:
    return TraceRecorder()


@pytest.fixture()
def emitter() -> PipelineEventEmitter:
    return PipelineEventEmitter()


@pytest.fixture()
def reducer(
    registry: BrickRegistry,
    page_state: MemoryPageState,
    trace: TraceRecorder,
    emitter: PipelineEventEmitter,
) -> PipelineReducer:
    return PipelineReducer(
        registry,
        trace=trace,
        event_emitter=emitter,
        page_state=page_state,
    )
