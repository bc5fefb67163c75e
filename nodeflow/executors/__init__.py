"""Built-in node executors."""

from .base import BaseNodeExecutor, ExecutorContext
from .triggers import WebhookTriggerExecutor, ManualTriggerExecutor, ScheduleTriggerExecutor
from .http_request import HttpRequestExecutor
from .code import CodeExecutor
from .branching import IfExecutor, SwitchExecutor
from .messaging import TelegramExecutor
from .ai import OpenAIExecutor
from .respond import RespondToWebhookExecutor, NoOpExecutor

__all__ = [
    "BaseNodeExecutor",
    "ExecutorContext",
    "WebhookTriggerExecutor",
    "ManualTriggerExecutor",
    "ScheduleTriggerExecutor",
    "HttpRequestExecutor",
    "CodeExecutor",
    "IfExecutor",
    "SwitchExecutor",
    "TelegramExecutor",
    "OpenAIExecutor",
    "RespondToWebhookExecutor",
    "NoOpExecutor",
]
