"""Unit tests for the action executor."""

import asyncio

import pytest
from pydantic import ValidationError

from action_engine.actions.base import ActionResult, HandlerMetadata
from action_engine.actions.cancellation import CancelReason, CancellationToken
from action_engine.actions.executor import ActionExecutor
from action_engine.actions.observer import ExecutionObserver
from action_engine.config import ActionDescription, EngineSettings
from action_engine.exceptions import HandlerFailedError


class RecordingObserver(ExecutionObserver):
    """Observer that records every event."""

    def __init__(self, explode_on=None):
        self.events = []
        self.explode_on = explode_on

    def on_start(self, action, context):
        if action.type == self.explode_on:
            raise RuntimeError("observer exploded")
        self.events.append(("start", action.id))

    def on_skip(self, action, result):
        self.events.append(("skip", action.id))

    def on_retry(self, action, attempt, delay_ms, error):
        self.events.append(("retry", action.id, attempt, delay_ms))

    def on_success(self, action, result):
        self.events.append(("success", action.id))

    def on_error(self, action, result):
        self.events.append(("error", action.id))

    def on_cancel(self, action, result):
        self.events.append(("cancel", action.id, result.metadata.cancel_reason))

    def on_continuation_error(self, action, branch, error):
        self.events.append(("continuation_error", action.id, branch, str(error)))


def flaky_handler(failures, raise_error=False):
    """Build a handler that fails ``failures`` times before succeeding."""
    calls = []

    async def handler(params, context, signal):
        calls.append(params)
        if len(calls) <= failures:
            if raise_error:
                raise RuntimeError(f"attempt {len(calls)} failed")
            return ActionResult.fail(f"attempt {len(calls)} failed", code="FLAKY")
        return ActionResult.ok({"attempts": len(calls)})

    handler.calls = calls
    return handler


def blocking_handler():
    """Build a handler that blocks until cancelled and records its signal."""
    state = {"started": asyncio.Event(), "signal": None, "cancelled": False}

    async def handler(params, context, signal):
        state["signal"] = signal
        state["started"].set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            state["cancelled"] = True
            raise
        return ActionResult.ok()

    handler.state = state
    return handler


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def observed_executor(registry, engine_settings, observer):
    return ActionExecutor(registry=registry, observer=observer, settings=engine_settings)


class TestExecute:
    """Test single action execution."""

    @pytest.mark.asyncio
    async def test_success(self, executor, registry, context, recording_handler):
        registry.register("record", recording_handler)

        result = await executor.execute({"type": "record", "params": {"a": 1}}, context)

        assert result.success is True
        assert result.data == {"a": 1}
        assert result.error is None
        assert result.metadata.duration >= 0
        assert result.metadata.retries is None
        assert not result.skipped
        assert not result.cancelled

    @pytest.mark.asyncio
    async def test_params_are_resolved(self, executor, registry, context, recording_handler):
        registry.register("record", recording_handler)

        await executor.execute(
            {
                "type": "record",
                "params": {
                    "url": "/orders/{{routeParams.orderId}}",
                    "body": {"email": "{{formData.email}}", "count": "{{pageState.count}}"},
                },
            },
            context,
        )

        assert recording_handler.calls == [
            {"url": "/orders/42", "body": {"email": "ada@example.test", "count": 1}}
        ]

    @pytest.mark.asyncio
    async def test_accepts_action_description(self, executor, registry, context, recording_handler):
        registry.register("record", recording_handler)

        result = await executor.execute(ActionDescription(type="record"), context)

        assert result.success

    @pytest.mark.asyncio
    async def test_handler_not_found(self, executor, context):
        """Test a missing handler is a non-retried failure."""
        result = await executor.execute(
            {"type": "missing", "retry": {"attempts": 3, "delay": 1}}, context
        )

        assert result.success is False
        assert result.error.code == "HANDLER_NOT_FOUND"
        assert result.error.message == "Action handler not found for type: missing"
        assert result.metadata.retries is None

    @pytest.mark.asyncio
    async def test_invalid_description_is_a_failed_result(self, executor, context):
        result = await executor.execute({"params": {}}, context)

        assert result.success is False
        assert result.error.code == "INVALID_ACTION"
        assert isinstance(result.error.cause, ValidationError)
        assert result.metadata.duration is not None

    @pytest.mark.asyncio
    async def test_exception_is_normalized(self, executor, registry, context):
        async def handler(params, context, signal):
            raise HandlerFailedError(
                "Validation failed",
                code="VALIDATION",
                status=422,
                field_errors={"email": ["required"]},
            )

        registry.register("validate", handler)

        result = await executor.execute({"type": "validate"}, context)

        assert result.success is False
        assert result.error.message == "Validation failed"
        assert result.error.code == "VALIDATION"
        assert result.error.status == 422
        assert result.error.field_errors == {"email": ["required"]}
        assert isinstance(result.error.cause, HandlerFailedError)

    @pytest.mark.asyncio
    async def test_plain_return_values(self, executor, registry, context):
        """Test non-ActionResult returns are wrapped."""
        async def plain(params, context, signal):
            return {"value": 1}

        async def wire(params, context, signal):
            return {"success": False, "error": {"message": "nope", "code": "NOPE"}}

        registry.register("plain", plain)
        registry.register("wire", wire)

        plain_result = await executor.execute({"type": "plain"}, context)
        wire_result = await executor.execute({"type": "wire"}, context)

        assert plain_result.success and plain_result.data == {"value": 1}
        assert not wire_result.success
        assert wire_result.error.code == "NOPE"

    @pytest.mark.asyncio
    async def test_sync_handler(self, executor, registry, context):
        registry.register("sync", lambda params, context, signal: ActionResult.ok("sync"))

        result = await executor.execute({"type": "sync"}, context)

        assert result.data == "sync"

    @pytest.mark.asyncio
    async def test_deferred_params_are_not_resolved(self, executor, registry, context, recording_handler):
        registry.register(
            "record",
            recording_handler,
            HandlerMetadata(display_name="Record", deferred_params=("later",)),
        )

        await executor.execute(
            {"type": "record", "params": {"now": "{{pageState.count}}", "later": "{{pageState.count}}"}},
            context,
        )

        assert recording_handler.calls == [{"now": 1, "later": "{{pageState.count}}"}]

    @pytest.mark.asyncio
    async def test_observer_events(self, observed_executor, registry, context, observer, recording_handler):
        registry.register("record", recording_handler)

        await observed_executor.execute({"id": "a", "type": "record"}, context)

        assert observer.events == [("start", "a"), ("success", "a")]


class TestGuard:
    """Test the ``when`` guard."""

    @pytest.mark.asyncio
    async def test_no_guard_never_skips(self, executor, registry, context, recording_handler):
        registry.register("record", recording_handler)

        result = await executor.execute({"type": "record"}, context)

        assert result.metadata.skipped is None
        assert len(recording_handler.calls) == 1

    @pytest.mark.asyncio
    async def test_absent_target_skips(self, executor, registry, context, recording_handler):
        """Test a guard on a missing path skips without invoking the handler."""
        registry.register("record", recording_handler)

        result = await executor.execute(
            {
                "type": "record",
                "when": "{{pageState.doesNotExist}}",
                "onSuccess": [{"type": "record", "params": {"continuation": True}}],
            },
            context,
        )

        assert result.success is True
        assert result.metadata.skipped is True
        assert result.data == {"skipped": True, "reason": "condition_not_met"}
        assert recording_handler.calls == []

    @pytest.mark.asyncio
    async def test_true_guard_runs(self, executor, registry, context, recording_handler):
        registry.register("record", recording_handler)

        result = await executor.execute(
            {"type": "record", "when": "{{pageState.user.active}}"}, context
        )

        assert not result.skipped
        assert len(recording_handler.calls) == 1

    @pytest.mark.asyncio
    async def test_boolean_guard(self, executor, registry, context, recording_handler):
        registry.register("record", recording_handler)

        result = await executor.execute({"type": "record", "when": False}, context)

        assert result.skipped


class TestRetry:
    """Test retry policies."""

    @pytest.mark.asyncio
    async def test_succeeds_within_attempts(self, executor, registry, context):
        """Test N failures with N+1 attempts ends in success."""
        handler = flaky_handler(failures=2)
        registry.register("flaky", handler)

        result = await executor.execute(
            {"type": "flaky", "retry": {"attempts": 3, "delay": 1}}, context
        )

        assert result.success is True
        assert result.data == {"attempts": 3}
        assert not result.metadata.retries
        assert len(handler.calls) == 3

    @pytest.mark.asyncio
    async def test_exhausted_attempts(self, executor, registry, context):
        """Test N failures with N attempts surfaces the last error."""
        handler = flaky_handler(failures=2)
        registry.register("flaky", handler)

        result = await executor.execute(
            {"type": "flaky", "retry": {"attempts": 2, "delay": 1}}, context
        )

        assert result.success is False
        assert result.metadata.retries == 1
        assert result.error.message == "attempt 2 failed"
        assert result.error.code == "FLAKY"

    @pytest.mark.asyncio
    async def test_raised_errors_are_retried(self, executor, registry, context):
        handler = flaky_handler(failures=1, raise_error=True)
        registry.register("flaky", handler)

        result = await executor.execute(
            {"type": "flaky", "retry": {"attempts": 2, "delay": 1}}, context
        )

        assert result.success is True
        assert len(handler.calls) == 2

    @pytest.mark.asyncio
    async def test_no_policy_means_single_attempt(self, executor, registry, context):
        handler = flaky_handler(failures=1)
        registry.register("flaky", handler)

        result = await executor.execute({"type": "flaky"}, context)

        assert result.success is False
        assert result.metadata.retries is None
        assert len(handler.calls) == 1

    @pytest.mark.asyncio
    async def test_non_retriable_handler(self, executor, registry, context):
        handler = flaky_handler(failures=1)
        registry.register("flaky", handler, retriable=False)

        result = await executor.execute(
            {"type": "flaky", "retry": {"attempts": 5, "delay": 1}}, context
        )

        assert result.success is False
        assert result.metadata.retries == 0
        assert len(handler.calls) == 1

    @pytest.mark.asyncio
    async def test_exponential_backoff(self, observed_executor, registry, context, observer):
        registry.register("flaky", flaky_handler(failures=10))

        await observed_executor.execute(
            {"id": "f", "type": "flaky", "retry": {"attempts": 4, "delay": 1, "backoff": "exponential"}},
            context,
        )

        retries = [event for event in observer.events if event[0] == "retry"]
        assert retries == [("retry", "f", 1, 1), ("retry", "f", 2, 2), ("retry", "f", 3, 4)]

    @pytest.mark.asyncio
    async def test_linear_backoff_uses_default_delay(self, observed_executor, registry, context, observer):
        """Test a policy without delay falls back to the configured default."""
        registry.register("flaky", flaky_handler(failures=10))

        await observed_executor.execute(
            {"id": "f", "type": "flaky", "retry": {"attempts": 3}}, context
        )

        retries = [event for event in observer.events if event[0] == "retry"]
        assert retries == [("retry", "f", 1, 10), ("retry", "f", 2, 10)]

    @pytest.mark.asyncio
    async def test_retry_wait_is_cancellable(self, executor, registry, context):
        handler = flaky_handler(failures=10)
        registry.register("flaky", handler)

        task = asyncio.ensure_future(
            executor.execute({"type": "flaky", "retry": {"attempts": 3, "delay": 10000}}, context)
        )
        while not handler.calls:
            await asyncio.sleep(0)
        executor.cancel_all()

        result = await asyncio.wait_for(task, timeout=1)

        assert result.cancelled
        assert result.error.code == "CANCELLED"
        assert len(handler.calls) == 1


class TestCancellation:
    """Test timeouts and cancellation."""

    @pytest.mark.asyncio
    async def test_timeout(self, executor, registry, context):
        handler = blocking_handler()
        registry.register("block", handler)

        result = await asyncio.wait_for(
            executor.execute({"type": "block", "timeout": 20}, context), timeout=1
        )

        assert result.success is False
        assert result.cancelled is True
        assert result.error.code == "TIMEOUT"
        assert result.metadata.cancel_reason is CancelReason.TIMEOUT
        assert handler.state["signal"].cancelled
        assert handler.state["cancelled"] is True

    @pytest.mark.asyncio
    async def test_zero_timeout_means_no_timeout(self, executor, registry, context, recording_handler):
        registry.register("record", recording_handler)

        result = await executor.execute({"type": "record", "timeout": 0}, context)

        assert result.success is True
        assert result.cancelled is False
        assert len(recording_handler.calls) == 1

    @pytest.mark.asyncio
    async def test_cancel_all(self, executor, registry, context):
        """Test cancel_all aborts an in-flight handler."""
        handler = blocking_handler()
        registry.register("block", handler)

        task = asyncio.ensure_future(executor.execute({"type": "block"}, context))
        await asyncio.wait_for(handler.state["started"].wait(), timeout=1)
        assert executor.in_flight_count == 1

        executor.cancel_all()
        result = await asyncio.wait_for(task, timeout=1)

        assert result.success is False
        assert result.cancelled is True
        assert result.error.code == "CANCELLED"
        assert result.metadata.cancel_reason is CancelReason.EXPLICIT
        assert handler.state["signal"].cancelled
        assert executor.in_flight_count == 0

    @pytest.mark.asyncio
    async def test_pre_cancelled_signal(self, executor, registry, context, recording_handler):
        registry.register("record", recording_handler)
        signal = CancellationToken()
        signal.cancel()

        result = await executor.execute({"type": "record"}, context, signal)

        assert result.cancelled
        assert result.error.code == "CANCELLED"
        assert result.metadata.cancel_reason is CancelReason.PARENT
        assert recording_handler.calls == []

    @pytest.mark.asyncio
    async def test_parent_signal_propagates(self, executor, registry, context):
        handler = blocking_handler()
        registry.register("block", handler)
        signal = CancellationToken()

        task = asyncio.ensure_future(executor.execute({"type": "block"}, context, signal))
        await asyncio.wait_for(handler.state["started"].wait(), timeout=1)
        signal.cancel()
        result = await asyncio.wait_for(task, timeout=1)

        assert result.metadata.cancel_reason is CancelReason.PARENT
        assert handler.state["signal"] is not signal

    @pytest.mark.asyncio
    async def test_non_cancellable_handler_finishes(self, executor, registry, context):
        """Test a non-cancellable handler is not interrupted by its timeout."""
        async def slow(params, context, signal):
            await asyncio.sleep(0.05)
            return ActionResult.ok("done")

        registry.register("slow", slow, cancellable=False)

        result = await executor.execute({"type": "slow", "timeout": 10}, context)

        assert result.success is True
        assert result.data == "done"

    @pytest.mark.asyncio
    async def test_cancelled_result_skips_continuations(self, executor, registry, context, recording_handler):
        registry.register("block", blocking_handler())
        registry.register("record", recording_handler)

        result = await executor.execute(
            {"type": "block", "timeout": 10, "onError": [{"type": "record"}]}, context
        )

        assert result.cancelled
        assert recording_handler.calls == []

    @pytest.mark.asyncio
    async def test_settled_result_is_not_altered(self, executor, registry, context):
        registry.register("quick", lambda params, context, signal: ActionResult.ok("quick"))

        result = await executor.execute({"type": "quick"}, context)
        executor.cancel_all()

        assert result.success and not result.cancelled


class TestContinuations:
    """Test onSuccess/onError dispatch."""

    @pytest.mark.asyncio
    async def test_on_success(self, executor, registry, context, recording_handler):
        registry.register("record", recording_handler)

        result = await executor.execute(
            {
                "type": "record",
                "params": {"step": "main"},
                "onSuccess": {"type": "record", "params": {"step": "after"}},
                "onError": [{"type": "record", "params": {"step": "error"}}],
            },
            context,
        )

        assert result.data == {"step": "main"}
        assert recording_handler.calls == [{"step": "main"}, {"step": "after"}]

    @pytest.mark.asyncio
    async def test_on_error(self, executor, registry, context, recording_handler):
        registry.register("record", recording_handler)
        registry.register("fail", flaky_handler(failures=10))

        result = await executor.execute(
            {
                "type": "fail",
                "onSuccess": [{"type": "record", "params": {"step": "after"}}],
                "onError": [{"type": "record", "params": {"step": "error"}}],
            },
            context,
        )

        assert result.success is False
        assert recording_handler.calls == [{"step": "error"}]

    @pytest.mark.asyncio
    async def test_failed_continuation_keeps_primary_result(self, executor, registry, context):
        registry.register("ok", lambda params, context, signal: ActionResult.ok("primary"))
        registry.register("fail", flaky_handler(failures=10))

        result = await executor.execute(
            {"type": "ok", "onSuccess": [{"type": "fail"}, {"type": "missing"}]}, context
        )

        assert result.success is True
        assert result.data == "primary"

    @pytest.mark.asyncio
    async def test_raising_continuation_is_reported(self, registry, engine_settings, context):
        observer = RecordingObserver(explode_on="explode")
        executor = ActionExecutor(registry=registry, observer=observer, settings=engine_settings)
        registry.register("ok", lambda params, context, signal: ActionResult.ok())
        registry.register("explode", lambda params, context, signal: ActionResult.ok())

        result = await executor.execute(
            {"id": "main", "type": "ok", "onSuccess": [{"type": "explode"}]}, context
        )

        assert result.success is True
        assert ("continuation_error", "main", "onSuccess", "observer exploded") in observer.events

    @pytest.mark.asyncio
    async def test_template_cycle_is_rejected(self, executor, registry, context, recording_handler):
        """Test cyclic params fail with TEMPLATE_ERROR and still run onError."""
        registry.register("record", recording_handler)
        cyclic = {"name": "loop"}
        cyclic["self"] = cyclic
        action = ActionDescription.model_construct(
            id="cyclic",
            type="record",
            params={"payload": cyclic},
            on_error=[ActionDescription(type="record", params={"step": "error"})],
        )

        result = await executor.execute(action, context)

        assert result.success is False
        assert result.error.code == "TEMPLATE_ERROR"
        assert recording_handler.calls == [{"step": "error"}]

    @pytest.mark.asyncio
    async def test_template_depth_limit(self, registry, context, recording_handler):
        executor = ActionExecutor(
            registry=registry,
            settings=EngineSettings(enable_logging=False, max_template_depth=2),
        )
        registry.register("record", recording_handler)

        result = await executor.execute(
            {"type": "record", "params": {"a": {"b": {"c": {"d": 1}}}}}, context
        )

        assert result.error.code == "TEMPLATE_ERROR"
        assert recording_handler.calls == []


class TestComposition:
    """Test execute_sequence and execute_parallel."""

    @pytest.mark.asyncio
    async def test_sequence_short_circuit(self, executor, registry, context, recording_handler):
        registry.register("record", recording_handler)
        registry.register("fail", flaky_handler(failures=10))

        results = await executor.execute_sequence(
            [
                {"type": "record", "params": {"n": 1}},
                {"type": "fail"},
                {"type": "record", "params": {"n": 3}},
            ],
            context,
        )

        assert len(results) == 2
        assert results[0].success and not results[1].success
        assert recording_handler.calls == [{"n": 1}]

    @pytest.mark.asyncio
    async def test_sequence_runs_continuations_eagerly(self, executor, registry, context, recording_handler):
        registry.register("record", recording_handler)

        await executor.execute_sequence(
            [
                {"type": "record", "params": {"n": 1}, "onSuccess": [{"type": "record", "params": {"n": "1a"}}]},
                {"type": "record", "params": {"n": 2}},
            ],
            context,
        )

        assert recording_handler.calls == [{"n": 1}, {"n": "1a"}, {"n": 2}]

    @pytest.mark.asyncio
    async def test_skipped_member_does_not_stop_sequence(self, executor, registry, context, recording_handler):
        registry.register("record", recording_handler)

        results = await executor.execute_sequence(
            [{"type": "record", "when": False}, {"type": "record", "params": {"n": 2}}],
            context,
        )

        assert len(results) == 2
        assert recording_handler.calls == [{"n": 2}]

    @pytest.mark.asyncio
    async def test_parallel_completeness(self, executor, registry, context):
        """Test every member settles and results keep input order."""
        completed = []

        async def sleeper(params, context, signal):
            await asyncio.sleep(params["delay"])
            completed.append(params["n"])
            return ActionResult.ok(params["n"])

        registry.register("sleep", sleeper)
        registry.register("fail", flaky_handler(failures=10))

        results = await executor.execute_parallel(
            [
                {"type": "sleep", "params": {"n": 1, "delay": 0.03}},
                {"type": "fail"},
                {"type": "sleep", "params": {"n": 3, "delay": 0.01}},
            ],
            context,
        )

        assert len(results) == 3
        assert results[0].data == 1
        assert results[1].success is False
        assert results[2].data == 3
        assert completed == [3, 1]

    @pytest.mark.asyncio
    async def test_sequence_stops_at_invalid_member(self, executor, registry, context, recording_handler):
        registry.register("record", recording_handler)

        results = await executor.execute_sequence(
            [
                {"type": "record", "params": {"n": 1}},
                {"type": ""},
                {"type": "record", "params": {"n": 3}},
            ],
            context,
        )

        assert len(results) == 2
        assert results[0].success is True
        assert results[1].error.code == "INVALID_ACTION"
        assert recording_handler.calls == [{"n": 1}]

    @pytest.mark.asyncio
    async def test_parallel_invalid_member_keeps_siblings(self, executor, registry, context, recording_handler):
        """Test an invalid member fails in place while its siblings run to completion."""
        registry.register("record", recording_handler)

        results = await executor.execute_parallel(
            [
                {"type": "record", "params": {"n": 1}},
                {"type": ""},
                {"type": "record", "params": {"n": 3}},
            ],
            context,
        )

        assert len(results) == 3
        assert results[0].success is True
        assert results[1].success is False
        assert results[1].error.code == "INVALID_ACTION"
        assert results[2].success is True
        assert sorted(c["n"] for c in recording_handler.calls) == [1, 3]
        assert executor.in_flight_count == 0

    @pytest.mark.asyncio
    async def test_parallel_raising_observer_lets_siblings_settle(self, registry, engine_settings, context):
        """Test an error escaping one member is raised only after every sibling settled."""
        completed = []

        async def sleeper(params, context, signal):
            await asyncio.sleep(0.02)
            completed.append(params["n"])
            return ActionResult.ok()

        registry.register("sleep", sleeper)
        registry.register("boom", sleeper)
        executor = ActionExecutor(
            registry=registry,
            observer=RecordingObserver(explode_on="boom"),
            settings=engine_settings,
        )

        with pytest.raises(RuntimeError, match="observer exploded"):
            await executor.execute_parallel(
                [
                    {"type": "sleep", "params": {"n": 1}},
                    {"type": "boom", "params": {"n": 2}},
                    {"type": "sleep", "params": {"n": 3}},
                ],
                context,
            )

        assert sorted(completed) == [1, 3]

    @pytest.mark.asyncio
    async def test_parallel_cancel_all(self, executor, registry, context):
        handler = blocking_handler()
        registry.register("block", handler)

        task = asyncio.ensure_future(
            executor.execute_parallel([{"type": "block"}, {"type": "block"}], context)
        )
        await asyncio.wait_for(handler.state["started"].wait(), timeout=1)
        while executor.in_flight_count < 2:
            await asyncio.sleep(0)
        executor.cancel_all()

        results = await asyncio.wait_for(task, timeout=1)

        assert [r.cancelled for r in results] == [True, True]

    @pytest.mark.asyncio
    async def test_empty_lists(self, executor, context):
        assert await executor.execute_sequence([], context) == []
        assert await executor.execute_parallel([], context) == []
