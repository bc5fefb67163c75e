"""Telegram bot node executor."""

from typing import Optional

import httpx

from ..core.exceptions import NodeExecutionError
from .base import BaseNodeExecutor


class TelegramExecutor(BaseNodeExecutor):
    """Send a message through the Telegram Bot API (``sendMessage`` only)."""

    description = "Sends a Telegram message"

    def __init__(
        self,
        bot_token: Optional[str] = None,
        api_url: str = "https://api.telegram.org",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.bot_token = bot_token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def execute(self, node, inputs, global_data, mock_mode, context):
        context.log(f"Executing Telegram node: {node.name}")

        operation = node.parameters.get("operation", "sendMessage")
        chat_id = self.get_parameter(node, "chatId", inputs, global_data)
        text = self.get_parameter(node, "text", inputs, global_data)

        if mock_mode:
            return {
                "ok": True,
                "result": {
                    "message_id": 1,
                    "chat": {"id": chat_id or "123456"},
                    "text": text or "Mock message sent",
                    "date": 0,
                },
            }

        if operation != "sendMessage":
            raise NodeExecutionError(
                f"Telegram operation '{operation}' is not supported",
                node_id=node.id,
                execution_id=context.execution_id,
            )
        chat_id = self.require_parameter(node, "chatId", inputs, global_data, context)
        text = self.require_parameter(node, "text", inputs, global_data, context)

        token = node.parameters.get("botToken") or self.bot_token
        if not token:
            raise NodeExecutionError(
                "Telegram bot token is not configured",
                node_id=node.id,
                execution_id=context.execution_id,
            )

        context.log(f"Sending message to chat {chat_id}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.api_url}/bot{token}/sendMessage",
                    json={"chat_id": chat_id, "text": text},
                )
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise NodeExecutionError(
                f"Telegram request failed: {str(e)}", node_id=node.id, execution_id=context.execution_id
            ) from e

        if not payload.get("ok"):
            raise NodeExecutionError(
                f"Telegram API error: {payload.get('description', response.status_code)}",
                node_id=node.id,
                execution_id=context.execution_id,
            )
        return payload
