"""Tests for the in-memory page state store."""

import asyncio

import pytest

from brickflow.runtime.page_state import MemoryPageState, PageStateStore


class TestMemoryPageState:
    def test_implements_protocol(self) -> None:
        assert isinstance(MemoryPageState(), PageStateStore)

    @pytest.mark.asyncio
    async def test_values_are_copied(self) -> None:
        store = MemoryPageState()
        value = {"items": [1]}
        await store.set_state("k", value)
        value["items"].append(2)

        stored = await store.get_state("k")
        assert stored == {"items": [1]}
        stored["items"].append(3)
        assert await store.get_state("k") == {"items": [1]}

    @pytest.mark.asyncio
    async def test_namespaces_are_isolated(self) -> None:
        store = MemoryPageState()
        await store.set_state("k", 1, namespace="a")
        await store.set_state("k", 2, namespace="b")
        assert await store.get_state("k", namespace="a") == 1
        assert await store.get_state("k") is None
        assert store.snapshot("b") == {"k": 2}

    @pytest.mark.asyncio
    async def test_compare_and_set(self) -> None:
        store = MemoryPageState()
        await store.set_state("k", {"requestId": "r1", "data": None})

        assert await store.compare_and_set("k", "r2", {"requestId": "r2"}) is False
        assert (await store.get_state("k"))["requestId"] == "r1"

        assert await store.compare_and_set("k", "r1", {"requestId": "r1", "data": 1}) is True
        assert (await store.get_state("k"))["data"] == 1

    @pytest.mark.asyncio
    async def test_compare_and_set_on_missing_key(self) -> None:
        store = MemoryPageState()
        assert await store.compare_and_set("k", None, {"requestId": "r1"}) is True
        assert await store.compare_and_set("other", "r1", {"requestId": "r1"}) is True
        assert (await store.get_state("other")) == {"requestId": "r1"}

    @pytest.mark.asyncio
    async def test_compare_and_set_on_cleared_key(self) -> None:
        store = MemoryPageState()
        await store.set_state("k", {"requestId": "r1"})
        await store.set_state("k", None)
        assert await store.compare_and_set("k", "r1", {"requestId": "r1", "data": 1}) is True

        await store.set_state("k", "plain")
        assert await store.compare_and_set("k", "r2", {"requestId": "r2"}) is True
        assert (await store.get_state("k")) == {"requestId": "r2"}

    @pytest.mark.asyncio
    async def test_wait_for_wakes_on_write(self) -> None:
        store = MemoryPageState()
        waiter = asyncio.create_task(store.wait_for("k", lambda v: v == "done"))
        await asyncio.sleep(0)
        assert not waiter.done()

        await store.set_state("k", "working")
        await asyncio.sleep(0)
        assert not waiter.done()

        await store.set_state("k", "done")
        assert await asyncio.wait_for(waiter, timeout=1) == "done"

    @pytest.mark.asyncio
    async def test_wait_for_returns_immediately_when_satisfied(self) -> None:
        store = MemoryPageState()
        await store.set_state("k", 3)
        assert await store.wait_for("k", lambda v: v == 3) == 3
