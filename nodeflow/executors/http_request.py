"""HTTP request node executor."""

from typing import Optional

import httpx

from ..core.exceptions import NodeExecutionError
from .base import BaseNodeExecutor


class HttpRequestExecutor(BaseNodeExecutor):
    """Issue an HTTP request with httpx.

    Parameters: ``url`` (required), ``method`` (default GET), ``headers``,
    ``queryParameters``, ``body`` (sent as JSON) and ``timeout`` in seconds.
    A ``transport`` can be injected for tests.
    """

    description = "Calls an HTTP endpoint"

    def __init__(self, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def execute(self, node, inputs, global_data, mock_mode, context):
        context.log(f"Executing HTTP request node: {node.name}")

        url = self.require_parameter(node, "url", inputs, global_data, context)
        method = str(self.get_parameter(node, "method", inputs, global_data, "GET")).upper()

        if mock_mode:
            return {
                "statusCode": 200,
                "headers": {"content-type": "application/json"},
                "body": {"mock": True, "message": f"Mock response for {method} {url}"},
            }

        headers = self.get_parameter(node, "headers", inputs, global_data) or {}
        params = self.get_parameter(node, "queryParameters", inputs, global_data) or None
        body = self.get_parameter(node, "body", inputs, global_data)
        timeout = self.get_parameter(node, "timeout", inputs, global_data, self.timeout)

        context.log(f"{method} {url}")
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                response = await client.request(method, url, headers=headers, params=params, json=body)
        except httpx.HTTPError as e:
            raise NodeExecutionError(
                f"HTTP request to {url} failed: {str(e)}",
                node_id=node.id,
                execution_id=context.execution_id,
            ) from e

        if node.parameters.get("failOnError", True) and response.is_error:
            raise NodeExecutionError(
                f"HTTP request to {url} returned status {response.status_code}",
                node_id=node.id,
                execution_id=context.execution_id,
            )

        try:
            payload = response.json()
        except ValueError:
            payload = response.text

        context.log(f"Received status {response.status_code}")
        return {
            "statusCode": response.status_code,
            "headers": dict(response.headers),
            "body": payload,
        }
