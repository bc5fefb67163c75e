"""Terminal and pass-through node executors."""

from .base import BaseNodeExecutor


class RespondToWebhookExecutor(BaseNodeExecutor):
    description = "Builds the response returned to the webhook caller"

    async def execute(self, node, inputs, global_data, mock_mode, context):
        context.log(f"Executing Respond to Webhook node: {node.name}")

        body = self.get_parameter(node, "responseBody", inputs, global_data)
        headers = {"content-type": "application/json"}
        headers.update(self.get_parameter(node, "responseHeaders", inputs, global_data) or {})

        return {
            "statusCode": int(node.parameters.get("responseCode", 200)),
            "body": body if body is not None else self.first_input(inputs),
            "headers": headers,
        }


class NoOpExecutor(BaseNodeExecutor):
    description = "Passes its first input through unchanged"

    async def execute(self, node, inputs, global_data, mock_mode, context):
        return self.first_input(inputs)
