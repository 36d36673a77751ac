"""Pytest configuration and fixtures for action engine tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from action_engine.actions import ActionExecutor, ActionRegistry, ActionResult, ExecutionContext
from action_engine.actions.builtin import register_builtin_actions
from action_engine.config import EngineSettings


@pytest.fixture
def engine_settings():
    """Provide test engine settings."""
    return EngineSettings(
        log_level="DEBUG",
        enable_logging=False,
        default_retry_delay_ms=10,
        metrics_enabled=False,
        api_base_url="https://api.example.test",
        api_timeout=5,
    )


@pytest.fixture
def registry():
    """Provide an isolated ActionRegistry."""
    return ActionRegistry()


@pytest.fixture
def executor(registry, engine_settings):
    """Provide an executor bound to the isolated registry."""
    return ActionExecutor(registry=registry, settings=engine_settings)


@pytest.fixture
def builtin_executor(executor, engine_settings):
    """Provide an executor with every built-in action registered."""
    register_builtin_actions(executor, engine_settings)
    return executor


@pytest.fixture
def context():
    """Provide an execution context with mocked UI capabilities."""
    return ExecutionContext(
        page_state={"count": 1, "user": {"name": "Ada", "active": True}},
        form_data={"email": "ada@example.test", "age": 36},
        widget_states={"table": {"selected": [1, 2]}},
        user={"id": "u-1", "name": "Ada"},
        permissions=["orders:read"],
        route_params={"orderId": "42"},
        query_params={"tab": "details"},
        current_path="/orders/42",
        navigate=MagicMock(),
        go_back=MagicMock(return_value=True),
        reload=MagicMock(),
        show_toast=MagicMock(),
        show_dialog=AsyncMock(return_value=True),
    )


@pytest.fixture
def recording_handler():
    """Provide a handler that records its params and succeeds."""
    calls = []

    async def handler(params, context, signal):
        calls.append(params)
        return ActionResult.ok(params)

    handler.calls = calls
    return handler
