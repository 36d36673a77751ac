"""Built-in action handlers."""

from typing import TYPE_CHECKING, Optional

import structlog

from ...config import EngineSettings
from ..base import HandlerMetadata
from .api import ApiActions
from .chaining import ChainingActions
from .feedback import make_show_dialog_handler, show_toast_handler
from .navigation import go_back_handler, navigate_handler, reload_handler
from .state import merge_state_handler, reset_state_handler, set_state_handler

if TYPE_CHECKING:
    from ..executor import ActionExecutor


logger = structlog.get_logger(__name__)


def _ui(display_name: str, description: str, **extra) -> HandlerMetadata:
    # UI side effects happen once and cannot be interrupted
    return HandlerMetadata(
        display_name=display_name,
        description=description,
        cancellable=False,
        retriable=False,
        **extra,
    )


def register_builtin_actions(
    executor: "ActionExecutor", settings: Optional[EngineSettings] = None
) -> None:
    """Register every built-in action type into ``executor.registry``.

    Chaining handlers and ``showDialog`` are bound to ``executor`` so nested
    actions share its registry, observer and in-flight tracking.

    Args:
        executor: Executor whose registry receives the handlers
        settings: Settings for the API actions (defaults to the executor's)
    """
    registry = executor.registry
    api = ApiActions(settings or executor.settings)
    chaining = ChainingActions(executor)

    registry.register(
        "navigate", navigate_handler,
        _ui("Navigate", "Navigate to a route or external URL"),
    )
    registry.register(
        "goBack", go_back_handler,
        _ui("Go Back", "Go back in navigation history"),
    )
    registry.register(
        "reload", reload_handler,
        _ui("Reload", "Reload the current page"),
    )
    registry.register(
        "setState", set_state_handler,
        _ui("Set State", "Set a value in page state"),
    )
    registry.register(
        "resetState", reset_state_handler,
        _ui("Reset State", "Reset page state paths"),
    )
    registry.register(
        "mergeState", merge_state_handler,
        _ui("Merge State", "Merge several values into page state"),
    )
    registry.register(
        "showToast", show_toast_handler,
        _ui("Show Toast", "Show a toast notification"),
    )
    registry.register(
        "showDialog", make_show_dialog_handler(executor),
        _ui(
            "Show Dialog",
            "Show a dialog and run follow-up actions",
            deferred_params=("onConfirm", "onCancel"),
        ),
    )

    registry.register(
        "apiCall", api.api_call,
        HandlerMetadata(display_name="API Call", description="Make an HTTP API call"),
    )
    registry.register(
        "executeAction", api.execute_action,
        HandlerMetadata(
            display_name="Execute Action",
            description="Execute a backend-defined action",
        ),
    )

    registry.register(
        "sequence", chaining.sequence,
        HandlerMetadata(
            display_name="Sequence",
            description="Run actions one after another",
            retriable=False,
            deferred_params=("actions",),
        ),
    )
    registry.register(
        "parallel", chaining.parallel,
        HandlerMetadata(
            display_name="Parallel",
            description="Run actions concurrently",
            retriable=False,
            deferred_params=("actions",),
        ),
    )
    registry.register(
        "conditional", chaining.conditional,
        HandlerMetadata(
            display_name="Conditional",
            description="Run actions depending on a condition",
            retriable=False,
            deferred_params=("condition", "then", "else"),
        ),
    )

    logger.info("Registered built-in actions", count=len(registry))


__all__ = [
    "ApiActions",
    "ChainingActions",
    "register_builtin_actions",
]
