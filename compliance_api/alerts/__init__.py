"""Evaluación y entrega de alertas."""

from .evaluator import AlertEvaluator, AlertToggles
from .sink import (
    AlertSink,
    CallbackAlertSink,
    CompositeAlertSink,
    LoggingAlertSink,
    WebhookAlertSink,
    sink_from_env,
)

__all__ = [
    "AlertEvaluator",
    "AlertToggles",
    "AlertSink",
    "CallbackAlertSink",
    "CompositeAlertSink",
    "LoggingAlertSink",
    "WebhookAlertSink",
    "sink_from_env",
]
