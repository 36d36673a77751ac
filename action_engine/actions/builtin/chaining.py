"""Built-in chaining actions (sequence, parallel, conditional).

Nested actions run through the bound executor with the handler's own
cancellation token as parent, so cancelling the outer action cancels them.
"""

from typing import TYPE_CHECKING, Any, Dict, List

import structlog

from ..base import ActionResult, ExecutionContext
from ..cancellation import CancellationToken
from ..templates import evaluate_condition

if TYPE_CHECKING:
    from ..executor import ActionExecutor


logger = structlog.get_logger(__name__)


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


class ChainingActions:
    """Composition handlers bound to an executor."""

    def __init__(self, executor: "ActionExecutor") -> None:
        self.executor = executor

    async def sequence(
        self, params: Dict[str, Any], context: ExecutionContext, signal: CancellationToken
    ) -> ActionResult:
        try:
            actions = params.get("actions")
            if not isinstance(actions, list):
                raise ValueError('Sequence action requires "actions" array parameter')

            results = await self.executor.execute_sequence(actions, context, signal)
            return self._combine(results, {"results": results})

        except Exception as e:
            return ActionResult.fail(e, code="SEQUENCE_ERROR")

    async def parallel(
        self, params: Dict[str, Any], context: ExecutionContext, signal: CancellationToken
    ) -> ActionResult:
        try:
            actions = params.get("actions")
            if not isinstance(actions, list):
                raise ValueError('Parallel action requires "actions" array parameter')

            results = await self.executor.execute_parallel(actions, context, signal)
            return self._combine(results, {"results": results})

        except Exception as e:
            return ActionResult.fail(e, code="PARALLEL_ERROR")

    async def conditional(
        self, params: Dict[str, Any], context: ExecutionContext, signal: CancellationToken
    ) -> ActionResult:
        """Run ``then`` or ``else`` depending on ``condition``."""
        try:
            condition = params.get("condition")
            if condition is None or condition == "":
                raise ValueError('Conditional action requires "condition" parameter')

            outcome = evaluate_condition(condition, context)
            actions = _as_list(params.get("then") if outcome else params.get("else"))

            logger.debug("Evaluated conditional", condition=condition, result=outcome)

            if not actions:
                return ActionResult.ok({"condition": outcome, "executed": False})

            results = await self.executor.execute_sequence(actions, context, signal)
            return self._combine(
                results, {"condition": outcome, "executed": True, "results": results}
            )

        except Exception as e:
            return ActionResult.fail(e, code="CONDITIONAL_ERROR")

    @staticmethod
    def _combine(results: List[ActionResult], data: Dict[str, Any]) -> ActionResult:
        failed = next((r for r in results if not r.success), None)
        if failed is None:
            return ActionResult.ok(data)
        result = ActionResult.fail(failed.error or "Nested action failed")
        result.data = data
        return result
