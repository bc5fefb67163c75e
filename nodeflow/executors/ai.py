"""OpenAI chat completion node executor."""

from typing import Optional

import httpx

from ..core.exceptions import NodeExecutionError
from .base import BaseNodeExecutor


class OpenAIExecutor(BaseNodeExecutor):
    """Call the chat completions endpoint of an OpenAI-compatible API.

    The prompt comes from the ``prompt`` parameter or the first input's
    ``prompt`` field. ``model``, ``temperature`` and ``maxTokens`` are optional.
    """

    description = "Generates a chat completion"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.transport = transport

    async def execute(self, node, inputs, global_data, mock_mode, context):
        context.log(f"Executing OpenAI node: {node.name}")

        prompt = self.get_parameter(node, "prompt", inputs, global_data)
        if not prompt:
            first = self.first_input(inputs)
            prompt = first.get("prompt") if isinstance(first, dict) else None
        if not prompt:
            raise NodeExecutionError(
                f"OpenAI node '{node.name}' requires a prompt",
                node_id=node.id,
                execution_id=context.execution_id,
            )
        prompt = str(prompt)

        if mock_mode:
            return {
                "choices": [{"message": {"role": "assistant", "content": f'Mock AI response for prompt: "{prompt[:50]}..."'}}],
                "usage": {"total_tokens": 100},
            }

        if not self.api_key:
            raise NodeExecutionError(
                "OpenAI API key is not configured", node_id=node.id, execution_id=context.execution_id
            )

        request = {
            "model": node.parameters.get("model") or self.model,
            "messages": [{"role": "user", "content": prompt}],
        }
        if "temperature" in node.parameters:
            request["temperature"] = node.parameters["temperature"]
        if "maxTokens" in node.parameters:
            request["max_tokens"] = node.parameters["maxTokens"]

        context.log(f"Requesting completion from model {request['model']}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=request,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise NodeExecutionError(
                f"OpenAI request failed: {str(e)}", node_id=node.id, execution_id=context.execution_id
            ) from e

        usage = payload.get("usage") or {}
        context.log(f"Completion used {usage.get('total_tokens', 0)} tokens")
        return payload
