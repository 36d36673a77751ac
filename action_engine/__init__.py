"""Declarative UI action execution engine."""

from .actions import ActionExecutor, ActionRegistry, ActionResult, ExecutionContext
from .actions.builtin import register_builtin_actions
from .config import ActionDescription, EngineSettings, RetryPolicy

__version__ = "0.1.0"

__all__ = [
    "ActionDescription",
    "ActionExecutor",
    "ActionRegistry",
    "ActionResult",
    "EngineSettings",
    "ExecutionContext",
    "RetryPolicy",
    "register_builtin_actions",
]
