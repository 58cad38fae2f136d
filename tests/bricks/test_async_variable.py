"""Tests for the WithAsyncModVariable brick."""

import asyncio

import pytest

from brickflow.runtime.expressions import PipelineExpression, VarExpression
from brickflow.runtime.models import InitialValues, ReduceOptions, Step


def _async_step(state_key: str = "job") -> Step:
    body = PipelineExpression((
        Step("test/counter", {
            "delay": VarExpression("@input.delay"),
            "fail": VarExpression("@input.fail"),
        }),
    ))
    return Step("@brickflow/async", {"stateKey": state_key, "body": body})


async def _settled(page_state, key: str = "job", namespace: str | None = None):
    return await asyncio.wait_for(
        page_state.wait_for(key, lambda v: v is not None and not v["isFetching"], namespace=namespace),
        timeout=1,
    )


async def _drain(reducer) -> None:
    brick = reducer.registry.resolve("@brickflow/async")
    while brick.pending:
        await asyncio.sleep(0.01)


class TestWithAsyncModVariable:
    @pytest.mark.asyncio
    async def test_returns_request_id_immediately(self, reducer, page_state) -> None:
        result = await reducer.reduce([_async_step()], InitialValues(input={"delay": 0.01}))
        assert set(result) == {"requestId"}

        pending = page_state.snapshot()["job"]
        assert pending["isLoading"] is True
        assert pending["isFetching"] is True
        assert pending["requestId"] == result["requestId"]

        settled = await _settled(page_state)
        assert settled["isSuccess"] is True
        assert settled["data"] == {"call": 1}
        assert settled["requestId"] == result["requestId"]

    @pytest.mark.asyncio
    async def test_refetch_keeps_previous_data(self, reducer, page_state) -> None:
        await reducer.reduce([_async_step()])
        await _settled(page_state)

        await reducer.reduce([_async_step()], InitialValues(input={"delay": 0.01}))
        refetching = page_state.snapshot()["job"]
        assert refetching["isLoading"] is False
        assert refetching["isFetching"] is True
        assert refetching["data"] == {"call": 1}
        assert refetching["currentData"] is None

        assert (await _settled(page_state))["data"] == {"call": 2}

    @pytest.mark.asyncio
    async def test_errors_are_stored(self, reducer, page_state) -> None:
        await reducer.reduce([_async_step()], InitialValues(input={"fail": True}))
        settled = await _settled(page_state)
        assert settled["isError"] is True
        assert settled["data"] is None
        assert settled["error"]["cause"]["message"] == "boom"

    @pytest.mark.asyncio
    async def test_superseded_result_is_dropped(self, reducer, page_state) -> None:
        await reducer.reduce([_async_step()], InitialValues(input={"delay": 0.05}))
        latest = await reducer.reduce([_async_step()], InitialValues(input={"delay": 0}))
        await _drain(reducer)

        entry = page_state.snapshot()["job"]
        assert entry["requestId"] == latest["requestId"]
        assert entry["data"] == {"call": 2}

    @pytest.mark.asyncio
    async def test_state_is_namespaced_by_mod_component(self, reducer, page_state) -> None:
        options = ReduceOptions(mod_component_id="mod-a")
        await reducer.reduce([_async_step()], options=options)
        await _settled(page_state, namespace="mod-a")

        assert "job" not in page_state.snapshot()
        assert page_state.snapshot("mod-a")["job"]["isSuccess"] is True

    @pytest.mark.asyncio
    async def test_cancelled_body_stores_error(self, reducer, page_state) -> None:
        result = await reducer.reduce([_async_step()], InitialValues(input={"delay": 1}))
        brick = reducer.registry.resolve("@brickflow/async")
        await asyncio.sleep(0.01)
        await brick.cancel_pending()

        assert brick.pending == 0
        entry = page_state.snapshot()["job"]
        assert entry["requestId"] == result["requestId"]
        assert entry["isFetching"] is False
        assert entry["isError"] is True
        assert entry["error"]["name"] == "CancelError"
