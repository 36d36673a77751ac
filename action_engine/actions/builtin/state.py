"""Built-in state actions (setState, resetState, mergeState).

Writes go through the context's ``set_state`` capability when one is
injected; otherwise ``page_state`` is updated in place.
"""

from typing import Any, Dict, Mapping

from ..base import ActionResult, ExecutionContext, call_capability
from ..cancellation import CancellationToken
from ..templates import set_nested_value


async def _write(context: ExecutionContext, path: str, value: Any, merge: bool) -> None:
    if context.set_state is not None:
        await call_capability(context, "set_state", path, value, merge)
    else:
        set_nested_value(context.page_state, path, value, merge)


async def set_state_handler(
    params: Dict[str, Any], context: ExecutionContext, signal: CancellationToken
) -> ActionResult:
    """Set ``value`` at ``path``; without a path the whole page state is replaced."""
    try:
        path = params.get("path")
        value = params.get("value")
        merge = params.get("merge", True)

        if path:
            await _write(context, path, value, bool(merge))
        else:
            if not isinstance(value, Mapping):
                raise ValueError("Replacing the whole page state requires an object value")
            context.page_state.clear()
            context.page_state.update(value)

        return ActionResult.ok({"path": path, "value": value})

    except Exception as e:
        return ActionResult.fail(e, code="SET_STATE_ERROR")


async def reset_state_handler(
    params: Dict[str, Any], context: ExecutionContext, signal: CancellationToken
) -> ActionResult:
    """Clear the given ``paths``, or the whole page state when none are given."""
    try:
        paths = params.get("paths") or []

        if paths:
            for path in paths:
                await _write(context, path, None, False)
        else:
            context.page_state.clear()

        return ActionResult.ok({"paths": list(paths)})

    except Exception as e:
        return ActionResult.fail(e, code="RESET_STATE_ERROR")


async def merge_state_handler(
    params: Dict[str, Any], context: ExecutionContext, signal: CancellationToken
) -> ActionResult:
    try:
        updates = params.get("updates")
        if not isinstance(updates, Mapping):
            raise ValueError('Merge state action requires "updates" object parameter')

        for path, value in updates.items():
            await _write(context, path, value, True)

        return ActionResult.ok({"updates": dict(updates)})

    except Exception as e:
        return ActionResult.fail(e, code="MERGE_STATE_ERROR")
