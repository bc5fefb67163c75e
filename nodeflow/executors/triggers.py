"""Trigger node executors."""

from datetime import datetime

from .base import BaseNodeExecutor

MOCK_FIRED_AT = "2024-01-01T00:00:00Z"


class WebhookTriggerExecutor(BaseNodeExecutor):
    description = "Starts a run from an incoming webhook payload"

    async def execute(self, node, inputs, global_data, mock_mode, context):
        context.log(f"Executing webhook node: {node.name}")

        if mock_mode:
            return {
                "headers": {"content-type": "application/json"},
                "body": {"test": True, "message": "Mock webhook data"},
                "query": {},
            }

        return self.first_input(inputs) or dict(global_data)


class ManualTriggerExecutor(BaseNodeExecutor):
    description = "Starts a run by hand with the caller's input data"

    async def execute(self, node, inputs, global_data, mock_mode, context):
        context.log(f"Executing trigger: {node.name}")
        if mock_mode:
            return {"manual": True, "mock": True}
        return dict(global_data)


class ScheduleTriggerExecutor(BaseNodeExecutor):
    """Cron and schedule triggers; the engine never schedules runs itself."""

    description = "Starts a run on a schedule"

    async def execute(self, node, inputs, global_data, mock_mode, context):
        context.log(f"Executing schedule trigger: {node.name}")
        fired_at = MOCK_FIRED_AT if mock_mode else datetime.utcnow().isoformat() + "Z"
        return {
            "timestamp": fired_at,
            "rule": node.parameters.get("rule") or node.parameters.get("triggerTimes"),
        }
