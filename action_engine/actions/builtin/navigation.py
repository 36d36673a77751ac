"""Built-in navigation actions (navigate, goBack, reload)."""

from typing import Any, Dict

import structlog

from ..base import ActionResult, ExecutionContext, call_capability
from ..cancellation import CancellationToken


logger = structlog.get_logger(__name__)


async def navigate_handler(
    params: Dict[str, Any], context: ExecutionContext, signal: CancellationToken
) -> ActionResult:
    """Navigate to a route, or to an external URL when ``external`` is set."""
    try:
        to = params.get("to")
        if not to:
            raise ValueError('Navigate action requires "to" parameter')

        if params.get("external"):
            await call_capability(
                context,
                "navigate",
                to,
                external=True,
                new_tab=bool(params.get("openInNewTab", False)),
            )
            return ActionResult.ok({"path": to, "external": True})

        await call_capability(
            context,
            "navigate",
            to,
            replace=bool(params.get("replace", False)),
            query=params.get("query"),
        )

        logger.debug("Navigated", to=to, replace=params.get("replace", False))

        return ActionResult.ok({"path": to})

    except Exception as e:
        return ActionResult.fail(e, code="NAVIGATION_ERROR")


async def go_back_handler(
    params: Dict[str, Any], context: ExecutionContext, signal: CancellationToken
) -> ActionResult:
    """Go back in history, navigating to ``fallback`` when there is none."""
    try:
        fallback = params.get("fallback")

        if context.go_back is not None:
            went_back = await call_capability(context, "go_back", fallback)
            return ActionResult.ok({"wentBack": went_back is not False})

        if fallback:
            await call_capability(context, "navigate", fallback)
            return ActionResult.ok({"wentBack": False, "path": fallback})

        raise RuntimeError("No history available and no fallback route given")

    except Exception as e:
        return ActionResult.fail(e, code="GO_BACK_ERROR")


async def reload_handler(
    params: Dict[str, Any], context: ExecutionContext, signal: CancellationToken
) -> ActionResult:
    try:
        hard = bool(params.get("hard", False))
        await call_capability(context, "reload", hard)
        return ActionResult.ok({"hard": hard})

    except Exception as e:
        return ActionResult.fail(e, code="RELOAD_ERROR")
