"""Execution observers: structured events emitted by the executor."""

from typing import Any, Iterable, List

import structlog
from prometheus_client import Counter, Histogram

from .base import ActionError, ActionResult
from .cancellation import CancelReason


logger = structlog.get_logger(__name__)

# Prometheus metrics
ACTIONS_EXECUTED = Counter(
    "action_engine_actions_executed_total",
    "Total number of actions executed",
    ["action", "status"],
)

ACTION_RETRIES = Counter(
    "action_engine_action_retries_total",
    "Total number of retry attempts scheduled",
    ["action"],
)

CONTINUATION_ERRORS = Counter(
    "action_engine_continuation_errors_total",
    "Total number of onSuccess/onError continuations that raised",
    ["action", "branch"],
)

ACTION_DURATION = Histogram(
    "action_engine_action_duration_seconds",
    "Time spent executing actions",
    ["action"],
)


class ExecutionObserver:
    """Receives lifecycle events from the executor. All hooks are no-ops."""

    def on_start(self, action: Any, context: Any) -> None:
        pass

    def on_skip(self, action: Any, result: ActionResult) -> None:
        pass

    def on_retry(self, action: Any, attempt: int, delay_ms: float, error: ActionError) -> None:
        pass

    def on_success(self, action: Any, result: ActionResult) -> None:
        pass

    def on_error(self, action: Any, result: ActionResult) -> None:
        pass

    def on_cancel(self, action: Any, result: ActionResult) -> None:
        pass

    def on_continuation_error(self, action: Any, branch: str, error: BaseException) -> None:
        pass


class LoggingObserver(ExecutionObserver):
    """Writes executor events to structlog."""

    def on_start(self, action: Any, context: Any) -> None:
        logger.info(
            "Executing action",
            action_id=action.id,
            action=action.type,
            current_path=getattr(context, "current_path", None)
        )

    def on_skip(self, action: Any, result: ActionResult) -> None:
        logger.info(
            "Skipped action - condition not met",
            action_id=action.id,
            action=action.type,
            when=action.when
        )

    def on_retry(self, action: Any, attempt: int, delay_ms: float, error: ActionError) -> None:
        logger.warning(
            "Action attempt failed, retrying",
            action_id=action.id,
            action=action.type,
            attempt=attempt,
            delay_ms=delay_ms,
            error=error.message
        )

    def on_success(self, action: Any, result: ActionResult) -> None:
        logger.info(
            "Action execution completed",
            action_id=action.id,
            action=action.type,
            duration_ms=result.metadata.duration
        )

    def on_error(self, action: Any, result: ActionResult) -> None:
        error = result.error
        logger.error(
            "Action execution failed",
            action_id=action.id,
            action=action.type,
            error=error.message if error else None,
            code=error.code if error else None,
            retries=result.metadata.retries,
            duration_ms=result.metadata.duration
        )

    def on_cancel(self, action: Any, result: ActionResult) -> None:
        reason = result.metadata.cancel_reason
        logger.info(
            "Action cancelled",
            action_id=action.id,
            action=action.type,
            reason=reason.value if reason else None,
            duration_ms=result.metadata.duration
        )

    def on_continuation_error(self, action: Any, branch: str, error: BaseException) -> None:
        logger.error(
            "Continuation failed",
            action_id=action.id,
            action=action.type,
            branch=branch,
            error=str(error)
        )


class MetricsObserver(ExecutionObserver):
    """Records executor events as Prometheus metrics."""

    def _observe(self, action: Any, result: ActionResult, status: str) -> None:
        ACTIONS_EXECUTED.labels(action=action.type, status=status).inc()
        ACTION_DURATION.labels(action=action.type).observe(result.metadata.duration / 1000.0)

    def on_skip(self, action: Any, result: ActionResult) -> None:
        ACTIONS_EXECUTED.labels(action=action.type, status="skipped").inc()

    def on_retry(self, action: Any, attempt: int, delay_ms: float, error: ActionError) -> None:
        ACTION_RETRIES.labels(action=action.type).inc()

    def on_success(self, action: Any, result: ActionResult) -> None:
        self._observe(action, result, "success")

    def on_error(self, action: Any, result: ActionResult) -> None:
        self._observe(action, result, "failed")

    def on_cancel(self, action: Any, result: ActionResult) -> None:
        reason = result.metadata.cancel_reason
        self._observe(action, result, "timeout" if reason is CancelReason.TIMEOUT else "cancelled")

    def on_continuation_error(self, action: Any, branch: str, error: BaseException) -> None:
        CONTINUATION_ERRORS.labels(action=action.type, branch=branch).inc()


class CompositeObserver(ExecutionObserver):
    """Fans every event out to several observers.

    A failing observer is logged and never interrupts execution.
    """

    def __init__(self, observers: Iterable[ExecutionObserver]) -> None:
        self.observers: List[ExecutionObserver] = list(observers)

    def _dispatch(self, hook: str, *args: Any) -> None:
        for observer in self.observers:
            try:
                getattr(observer, hook)(*args)
            except Exception as e:
                logger.error(
                    "Execution observer failed",
                    observer=type(observer).__name__,
                    hook=hook,
                    error=str(e)
                )

    def on_start(self, action: Any, context: Any) -> None:
        self._dispatch("on_start", action, context)

    def on_skip(self, action: Any, result: ActionResult) -> None:
        self._dispatch("on_skip", action, result)

    def on_retry(self, action: Any, attempt: int, delay_ms: float, error: ActionError) -> None:
        self._dispatch("on_retry", action, attempt, delay_ms, error)

    def on_success(self, action: Any, result: ActionResult) -> None:
        self._dispatch("on_success", action, result)

    def on_error(self, action: Any, result: ActionResult) -> None:
        self._dispatch("on_error", action, result)

    def on_cancel(self, action: Any, result: ActionResult) -> None:
        self._dispatch("on_cancel", action, result)

    def on_continuation_error(self, action: Any, branch: str, error: BaseException) -> None:
        self._dispatch("on_continuation_error", action, branch, error)
