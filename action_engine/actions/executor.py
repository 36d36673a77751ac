"""Action executor: interprets action descriptions against a context."""

import asyncio
import inspect
import time
from dataclasses import replace
from typing import Any, Iterable, List, Mapping, Optional, Set, Union

import structlog

from pydantic import ValidationError

from ..config import ActionDescription, EngineSettings
from ..exceptions import ActionCancelledError, TemplateResolutionError
from .base import (
    ACTION_FAILED,
    CANCELLED,
    HANDLER_NOT_FOUND,
    INVALID_ACTION,
    TEMPLATE_ERROR,
    TIMEOUT,
    ActionError,
    ActionMetadata,
    ActionResult,
    ExecutionContext,
    HandlerDefinition,
)
from .cancellation import CancelReason, CancellationToken
from .observer import CompositeObserver, ExecutionObserver, LoggingObserver, MetricsObserver
from .registry import ActionRegistry, get_action_registry
from .templates import evaluate_condition, resolve_templates_in_object


logger = structlog.get_logger(__name__)

ActionLike = Union[ActionDescription, Mapping[str, Any]]


class ActionExecutor:
    """Executes actions with guards, templating, retries, timeouts and continuations."""

    def __init__(
        self,
        registry: Optional[ActionRegistry] = None,
        observer: Optional[ExecutionObserver] = None,
        settings: Optional[EngineSettings] = None,
    ) -> None:
        """Initialize the executor.

        Args:
            registry: Handler registry (defaults to the global registry)
            observer: Lifecycle observer (defaults from settings)
            settings: Engine settings
        """
        self.settings = settings or EngineSettings()
        self.registry = registry if registry is not None else get_action_registry()
        self.observer = observer if observer is not None else self._default_observer()
        self._in_flight: Set[CancellationToken] = set()

    def _default_observer(self) -> ExecutionObserver:
        observers: List[ExecutionObserver] = []
        if self.settings.enable_logging:
            observers.append(LoggingObserver())
        if self.settings.metrics_enabled:
            observers.append(MetricsObserver())
        if not observers:
            return ExecutionObserver()
        if len(observers) == 1:
            return observers[0]
        return CompositeObserver(observers)

    @property
    def in_flight_count(self) -> int:
        """Number of actions currently executing."""
        return len(self._in_flight)

    async def execute(
        self,
        action: ActionLike,
        context: ExecutionContext,
        signal: Optional[CancellationToken] = None,
    ) -> ActionResult:
        """Execute a single action and its continuations.

        Args:
            action: Action description (model or wire-format mapping)
            context: Execution context templates resolve against
            signal: Optional parent cancellation scope

        Returns:
            Result of the primary action; continuation results are not merged in
        """
        start = time.perf_counter()
        parsed = self._parse(action)
        if isinstance(parsed, ActionResult):
            return self._finish(parsed, start)
        action = parsed

        if signal is not None and signal.cancelled:
            result = self._finish(self._cancelled_result(CancelReason.PARENT), start)
            self.observer.on_cancel(action, result)
            return result

        self.observer.on_start(action, context)

        if action.when is not None and not evaluate_condition(action.when, context):
            result = ActionResult(
                success=True,
                data={"skipped": True, "reason": "condition_not_met"},
                metadata=ActionMetadata(skipped=True),
            )
            result = self._finish(result, start)
            self.observer.on_skip(action, result)
            return result

        try:
            params = self._resolve_params(action, context)
        except TemplateResolutionError as e:
            result = ActionResult(
                success=False,
                error=ActionError(message=e.message, code=TEMPLATE_ERROR, cause=e),
            )
            result = self._finish(result, start)
            self.observer.on_error(action, result)
            await self._run_continuations(action, "onError", context, signal)
            return result

        scope = CancellationToken(parent=signal)
        self._in_flight.add(scope)
        timer = scope.cancel_after(action.timeout / 1000.0) if action.timeout else None
        try:
            result = await self._execute_with_retry(action, params, context, scope)
        finally:
            if timer is not None:
                timer.cancel()
            self._in_flight.discard(scope)
            scope.close()

        result = self._finish(result, start)

        if result.cancelled:
            self.observer.on_cancel(action, result)
            return result

        if result.success:
            self.observer.on_success(action, result)
            await self._run_continuations(action, "onSuccess", context, signal)
        else:
            self.observer.on_error(action, result)
            await self._run_continuations(action, "onError", context, signal)

        return result

    @staticmethod
    def _parse(action: ActionLike) -> Union[ActionDescription, ActionResult]:
        """Validate an action description, or return the INVALID_ACTION failure."""
        try:
            return ActionDescription.parse(action)
        except ValidationError as e:
            logger.warning(
                "Invalid action description",
                errors=e.error_count(),
                error=str(e)
            )
            return ActionResult(
                success=False,
                error=ActionError(
                    message=f"Invalid action description: {e.errors()[0]['msg']}",
                    code=INVALID_ACTION,
                    cause=e,
                ),
            )

    def _resolve_params(self, action: ActionDescription, context: ExecutionContext) -> Any:
        """Resolve templated params, leaving the handler's deferred keys untouched.

        Deferred keys hold nested action descriptions or conditions that the
        handler evaluates itself at the moment it runs them.
        """
        metadata = self.registry.get_metadata(action.type)
        deferred = metadata.deferred_params if metadata is not None else ()
        if not deferred:
            return resolve_templates_in_object(
                action.params, context, max_depth=self.settings.max_template_depth
            )

        resolvable = {k: v for k, v in action.params.items() if k not in deferred}
        params = resolve_templates_in_object(
            resolvable, context, max_depth=self.settings.max_template_depth
        )
        params.update({k: v for k, v in action.params.items() if k in deferred})
        return params

    async def _execute_with_retry(
        self,
        action: ActionDescription,
        params: Any,
        context: ExecutionContext,
        scope: CancellationToken,
    ) -> ActionResult:
        """Invoke the handler under the action's retry policy."""
        definition = self.registry.get_definition(action.type)
        if definition is None:
            return ActionResult(
                success=False,
                error=ActionError(
                    message=f"Action handler not found for type: {action.type}",
                    code=HANDLER_NOT_FOUND,
                ),
            )

        policy = action.retry
        max_attempts = policy.attempts if policy is not None else 1
        if not definition.metadata.retriable:
            max_attempts = 1
        base_delay = self.settings.default_retry_delay_ms
        if policy is not None and policy.delay is not None:
            base_delay = policy.delay
        exponential = policy is not None and policy.backoff == "exponential"

        last_error: Optional[ActionError] = None
        attempts_used = 0

        for attempt in range(max_attempts):
            attempts_used = attempt + 1
            try:
                outcome = await self._invoke(definition, params, context, scope)
            except ActionCancelledError as e:
                return self._cancelled_result(scope.reason or e.reason, last_error)
            except Exception as e:
                last_error = ActionError.from_exception(e)
            else:
                if outcome.success:
                    return outcome
                last_error = outcome.error or ActionError(
                    message="Action failed", code=ACTION_FAILED
                )

            if scope.cancelled:
                return self._cancelled_result(scope.reason, last_error)

            if attempt == max_attempts - 1:
                break

            delay = base_delay * 2 ** attempt if exponential else base_delay
            self.observer.on_retry(action, attempt + 1, delay, last_error)
            try:
                await scope.sleep(delay / 1000.0)
            except ActionCancelledError:
                return self._cancelled_result(scope.reason, last_error)

        result = ActionResult(success=False, error=last_error)
        if policy is not None:
            result.metadata.retries = attempts_used - 1
        return result

    async def _invoke(
        self,
        definition: HandlerDefinition,
        params: Any,
        context: ExecutionContext,
        scope: CancellationToken,
    ) -> ActionResult:
        scope.raise_if_cancelled()

        value = definition.handler(params, context, scope)
        if inspect.isawaitable(value):
            if definition.metadata.cancellable:
                value = await scope.run(value)
            else:
                value = await value

        return ActionResult.from_value(value)

    async def _run_continuations(
        self,
        action: ActionDescription,
        branch: str,
        context: ExecutionContext,
        signal: Optional[CancellationToken],
    ) -> None:
        """Run onSuccess/onError actions; failures never touch the primary result."""
        actions = action.on_success if branch == "onSuccess" else action.on_error
        if not actions:
            return

        try:
            await self.execute_sequence(actions, context, signal)
        except Exception as e:
            self.observer.on_continuation_error(action, branch, e)

    async def execute_sequence(
        self,
        actions: Iterable[ActionLike],
        context: ExecutionContext,
        signal: Optional[CancellationToken] = None,
    ) -> List[ActionResult]:
        """Execute actions in order, stopping after the first failure.

        Every description is validated before the first action starts; an
        invalid member fails with INVALID_ACTION when its turn comes.

        Returns:
            Results produced so far (shorter than the input when stopped early)
        """
        parsed = [self._parse(action) for action in actions]
        results: List[ActionResult] = []

        for item in parsed:
            if isinstance(item, ActionResult):
                results.append(item)
                break

            result = await self.execute(item, context, signal)
            results.append(result)

            if not result.success:
                break

        return results

    async def execute_parallel(
        self,
        actions: Iterable[ActionLike],
        context: ExecutionContext,
        signal: Optional[CancellationToken] = None,
    ) -> List[ActionResult]:
        """Execute actions concurrently and wait for all of them to settle.

        Invalid descriptions get an INVALID_ACTION failure at their index and
        are never started.

        Returns:
            One result per action, in input order
        """
        parsed = [self._parse(action) for action in actions]
        pending = [
            (index, item) for index, item in enumerate(parsed)
            if isinstance(item, ActionDescription)
        ]

        settled = await asyncio.gather(
            *(self.execute(item, context, signal) for _, item in pending),
            return_exceptions=True,
        )

        results: List[Any] = list(parsed)
        for (index, _), outcome in zip(pending, settled):
            if isinstance(outcome, BaseException):
                raise outcome
            results[index] = outcome
        return results

    def cancel_all(self) -> None:
        """Cancel every action currently in flight."""
        pending = list(self._in_flight)
        self._in_flight.clear()

        for scope in pending:
            scope.cancel(CancelReason.EXPLICIT)

        if pending:
            logger.info("Cancelled in-flight actions", count=len(pending))

    @staticmethod
    def _cancelled_result(
        reason: Optional[CancelReason], cause: Optional[ActionError] = None
    ) -> ActionResult:
        timed_out = reason is CancelReason.TIMEOUT
        return ActionResult(
            success=False,
            error=ActionError(
                message="Action timed out" if timed_out else "Action was cancelled",
                code=TIMEOUT if timed_out else CANCELLED,
                cause=cause,
            ),
            metadata=ActionMetadata(cancelled=True, cancel_reason=reason),
        )

    @staticmethod
    def _finish(result: ActionResult, start: float) -> ActionResult:
        """Copy the result with its duration (milliseconds) filled in."""
        duration = (time.perf_counter() - start) * 1000.0
        return replace(result, metadata=replace(result.metadata, duration=duration))
