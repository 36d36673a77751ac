"""Built-in UI feedback actions (showToast, showDialog)."""

from typing import TYPE_CHECKING, Any, Dict

import structlog

from ..base import ActionHandler, ActionResult, ExecutionContext, call_capability
from ..cancellation import CancellationToken

if TYPE_CHECKING:
    from ..executor import ActionExecutor


logger = structlog.get_logger(__name__)

TOAST_VARIANTS = ("success", "error", "warning", "info")
DIALOG_VARIANTS = ("info", "warning", "error", "confirm")


async def show_toast_handler(
    params: Dict[str, Any], context: ExecutionContext, signal: CancellationToken
) -> ActionResult:
    try:
        message = params.get("message")
        if not message:
            raise ValueError('Show toast action requires "message" parameter')

        variant = params.get("variant") or "info"
        if variant not in TOAST_VARIANTS:
            raise ValueError(f"Unknown toast variant: {variant}")
        duration = params.get("duration", 5000)

        await call_capability(context, "show_toast", message, variant, duration)

        return ActionResult.ok({"message": message, "variant": variant})

    except Exception as e:
        return ActionResult.fail(e, code="SHOW_TOAST_ERROR")


def make_show_dialog_handler(executor: "ActionExecutor") -> ActionHandler:
    """Build the showDialog handler.

    ``onConfirm``/``onCancel`` action lists run through ``executor`` after the
    user answers.
    """

    async def show_dialog_handler(
        params: Dict[str, Any], context: ExecutionContext, signal: CancellationToken
    ) -> ActionResult:
        try:
            title = params.get("title")
            message = params.get("message")
            if not title or not message:
                raise ValueError('Show dialog action requires "title" and "message" parameters')

            variant = params.get("variant") or "info"
            if variant not in DIALOG_VARIANTS:
                raise ValueError(f"Unknown dialog variant: {variant}")

            answer = await call_capability(
                context,
                "show_dialog",
                title,
                message,
                variant,
                params.get("confirmLabel", "OK"),
                params.get("cancelLabel", "Cancel"),
            )
            confirmed = True if variant != "confirm" else bool(answer)

            follow_up = params.get("onConfirm") if confirmed else params.get("onCancel")
            results = []
            if follow_up:
                actions = follow_up if isinstance(follow_up, list) else [follow_up]
                results = await executor.execute_sequence(actions, context, signal)
                logger.debug(
                    "Dialog follow-up executed",
                    confirmed=confirmed,
                    count=len(results)
                )

            return ActionResult.ok({"confirmed": confirmed, "results": results})

        except Exception as e:
            return ActionResult.fail(e, code="SHOW_DIALOG_ERROR")

    return show_dialog_handler
