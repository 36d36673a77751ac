"""Action execution subsystem with plugin architecture."""

from .base import (
    ActionError,
    ActionHandler,
    ActionMetadata,
    ActionResult,
    ActionTrigger,
    ExecutionContext,
    HandlerDefinition,
    HandlerMetadata,
)
from .cancellation import CancelReason, CancellationToken
from .executor import ActionExecutor
from .observer import ExecutionObserver, LoggingObserver, MetricsObserver
from .registry import ActionRegistry, get_action_registry, register_action
from .templates import evaluate_condition, resolve_template, resolve_templates_in_object

__all__ = [
    "ActionError",
    "ActionExecutor",
    "ActionHandler",
    "ActionMetadata",
    "ActionRegistry",
    "ActionResult",
    "ActionTrigger",
    "CancelReason",
    "CancellationToken",
    "ExecutionContext",
    "ExecutionObserver",
    "HandlerDefinition",
    "HandlerMetadata",
    "LoggingObserver",
    "MetricsObserver",
    "evaluate_condition",
    "get_action_registry",
    "register_action",
    "resolve_template",
    "resolve_templates_in_object",
]
