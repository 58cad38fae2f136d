"""Tests for the HTTP request brick using httpx.MockTransport."""

import json

import httpx
import pytest

from brickflow.bricks.http import HttpRequest
from brickflow.errors import BusinessError, ContextError, get_root_cause
from brickflow.runtime.expressions import VarExpression
from brickflow.runtime.models import InitialValues, Step


def _register(reducer, handler) -> None:
    reducer.registry.register(HttpRequest(transport=httpx.MockTransport(handler)))


class TestHttpRequest:
    @pytest.mark.asyncio
    async def test_get_json(self, reducer) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"items": [1, 2]})

        _register(reducer, handler)
        step = Step("@brickflow/http", {
            "url": "https://api.example.com/items",
            "params": {"q": VarExpression("@input.query")},
            "headers": {"X-Token": "secret"},
        })
        result = await reducer.reduce([step], InitialValues(input={"query": "cats"}))

        assert result["status"] == 200
        assert result["data"] == {"items": [1, 2]}
        assert result["headers"]["content-type"] == "application/json"
        [request] = requests
        assert request.method == "GET"
        assert request.url.params["q"] == "cats"
        assert request.headers["x-token"] == "secret"

    @pytest.mark.asyncio
    async def test_post_sends_json_body(self, reducer) -> None:
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(201, text="created")

        _register(reducer, handler)
        step = Step("@brickflow/http", {
            "url": "https://api.example.com/items",
            "method": "POST",
            "data": {"name": "widget"},
        })
        result = await reducer.reduce([step])

        assert bodies == [{"name": "widget"}]
        assert result["status"] == 201
        assert result["data"] == "created"

    @pytest.mark.asyncio
    async def test_error_status_is_business_error(self, reducer) -> None:
        _register(reducer, lambda request: httpx.Response(404))
        step = Step("@brickflow/http", {"url": "https://api.example.com/missing"})

        with pytest.raises(ContextError) as exc_info:
            await reducer.reduce([step])
        root = get_root_cause(exc_info.value)
        assert isinstance(exc_info.value.cause, BusinessError)
        assert str(exc_info.value.cause) == (
            "Request failed with status code 404: https://api.example.com/missing"
        )
        assert isinstance(root, httpx.HTTPStatusError)

    @pytest.mark.asyncio
    async def test_transport_error_is_business_error(self, reducer) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        _register(reducer, handler)
        with pytest.raises(ContextError) as exc_info:
            await reducer.reduce([Step("@brickflow/http", {"url": "https://down.example.com"})])
        assert isinstance(exc_info.value.cause, BusinessError)
        assert "connection refused" in str(exc_info.value.cause)

    @pytest.mark.asyncio
    async def test_invalid_method_fails_validation(self, reducer) -> None:
        _register(reducer, lambda request: httpx.Response(200))
        step = Step("@brickflow/http", {"url": "https://api.example.com", "method": "FETCH"})
        with pytest.raises(ContextError):
            await reducer.reduce([step])
