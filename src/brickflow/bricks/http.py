"""HTTP request brick."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from brickflow.bricks.base import Transformer, properties_to_schema
from brickflow.errors import BusinessError

if TYPE_CHECKING:
    from brickflow.runtime.reducer import BrickOptions

logger = logging.getLogger(__name__)

_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def _response_data(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "").split(";")[0].strip()
    if content_type == "application/json" or content_type.endswith("+json"):
        try:
            return response.json()
        except ValueError:
            logger.debug("Response declared JSON but could not be decoded")
    return response.text


class HttpRequest(Transformer):
    """Makes an HTTP request and returns the response.

    Args:
        timeout: Request timeout in seconds.
        transport: Optional transport, e.g. ``httpx.MockTransport`` in tests.
    """

    id = "@brickflow/http"
    name = "HTTP Request"
    description = "Send an HTTP request and return the response"
    input_schema = properties_to_schema(
        {
            "url": {"type": "string", "description": "The API URL"},
            "method": {"type": "string", "enum": _METHODS, "default": "GET"},
            "params": {
                "type": "object",
                "description": "Search/query params",
                "additionalProperties": {"type": ["string", "number", "boolean"]},
            },
            "headers": {
                "type": "object",
                "description": "Additional request headers",
                "additionalProperties": {"type": "string"},
            },
            "data": {"description": "JSON request body"},
        },
        ["url"],
    )
    output_schema = properties_to_schema(
        {
            "status": {"type": "integer"},
            "headers": {"type": "object"},
            "data": {},
        },
        ["status", "headers", "data"],
    )

    def __init__(
        self,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    async def transform(self, args: dict[str, Any], options: BrickOptions) -> Any:
        method = args.get("method", "GET").upper()
        url = args["url"]
        options.logger.debug("%s %s", method, url)

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.request(
                    method,
                    url,
                    params=args.get("params"),
                    headers=args.get("headers"),
                    json=args.get("data"),
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise BusinessError(
                    f"Request failed with status code {exc.response.status_code}: {url}"
                ) from exc
            except httpx.RequestError as exc:
                raise BusinessError(f"Error sending request to {url}: {exc}") from exc

        return {
            "status": response.status_code,
            "headers": dict(response.headers),
            "data": _response_data(response),
        }
