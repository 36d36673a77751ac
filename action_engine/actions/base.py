"""Core types shared by the registry, the executor and handlers."""

import inspect
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from .cancellation import CancelReason, CancellationToken


# Stable error codes produced by the engine itself
HANDLER_NOT_FOUND = "HANDLER_NOT_FOUND"
CANCELLED = "CANCELLED"
TIMEOUT = "TIMEOUT"
TEMPLATE_ERROR = "TEMPLATE_ERROR"
INVALID_ACTION = "INVALID_ACTION"
ACTION_FAILED = "ACTION_FAILED"


@dataclass
class ActionTrigger:
    """Information about the UI event that triggered an action."""

    widget_id: str
    event_type: str
    event_data: Any = None


@dataclass
class ExecutionContext:
    """Runtime state an action runs against.

    The executor only reads it. Handlers mutate external state through the
    injected capabilities (``set_state``, ``navigate``, ...).
    """

    page_state: Dict[str, Any] = field(default_factory=dict)
    form_data: Dict[str, Any] = field(default_factory=dict)
    widget_states: Dict[str, Any] = field(default_factory=dict)
    user: Optional[Dict[str, Any]] = None
    permissions: List[str] = field(default_factory=list)
    tenant: Optional[Dict[str, Any]] = None
    route_params: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, str] = field(default_factory=dict)
    current_path: str = ""
    trigger: Optional[ActionTrigger] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    # Capabilities
    navigate: Optional[Callable[..., Any]] = None
    go_back: Optional[Callable[..., Any]] = None
    reload: Optional[Callable[..., Any]] = None
    show_toast: Optional[Callable[..., Any]] = None
    show_dialog: Optional[Callable[..., Any]] = None
    set_state: Optional[Callable[..., Any]] = None
    get_state: Optional[Callable[..., Any]] = None
    http_session: Any = None


@dataclass
class ActionError:
    """Normalized error shape, regardless of what the failing handler raised."""

    message: str
    code: Optional[str] = None
    status: Optional[int] = None
    field_errors: Optional[Dict[str, List[str]]] = None
    cause: Any = None

    @classmethod
    def from_exception(cls, error: BaseException) -> "ActionError":
        """Normalize an exception, keeping any ``code``/``status``/``field_errors`` it carries."""
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        code = getattr(error, "code", None)
        status = getattr(error, "status", None)
        return cls(
            message=str(message),
            code=code if isinstance(code, str) else None,
            status=status if isinstance(status, int) else None,
            field_errors=getattr(error, "field_errors", None),
            cause=error,
        )

    @classmethod
    def from_value(cls, value: Any) -> "ActionError":
        """Normalize whatever a handler reported as its error."""
        if isinstance(value, ActionError):
            return value
        if isinstance(value, BaseException):
            return cls.from_exception(value)
        if isinstance(value, Mapping):
            return cls(
                message=str(value.get("message") or "Action failed"),
                code=value.get("code"),
                status=value.get("status"),
                field_errors=value.get("fieldErrors", value.get("field_errors")),
                cause=value.get("cause"),
            )
        if value is None:
            return cls(message="Action failed", code=ACTION_FAILED)
        return cls(message=str(value), cause=value)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"message": self.message}
        if self.code is not None:
            data["code"] = self.code
        if self.status is not None:
            data["status"] = self.status
        if self.field_errors is not None:
            data["fieldErrors"] = self.field_errors
        if self.cause is not None:
            data["cause"] = (
                self.cause.to_dict() if isinstance(self.cause, ActionError) else repr(self.cause)
            )
        return data


@dataclass
class ActionMetadata:
    """Execution metadata attached to every result."""

    duration: float = 0.0
    retries: Optional[int] = None
    cancelled: Optional[bool] = None
    skipped: Optional[bool] = None
    cancel_reason: Optional[CancelReason] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"duration": self.duration}
        if self.retries is not None:
            data["retries"] = self.retries
        if self.cancelled is not None:
            data["cancelled"] = self.cancelled
        if self.skipped is not None:
            data["skipped"] = self.skipped
        if self.cancel_reason is not None:
            data["cancelReason"] = self.cancel_reason.value
        return data


@dataclass
class ActionResult:
    """Result of action execution."""

    success: bool
    data: Any = None
    error: Optional[ActionError] = None
    metadata: ActionMetadata = field(default_factory=ActionMetadata)

    @classmethod
    def ok(cls, data: Any = None) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls, error: Any, code: Optional[str] = None, status: Optional[int] = None
    ) -> "ActionResult":
        """Build a failed result from a message, exception, mapping or ActionError."""
        action_error = ActionError.from_value(error)
        if code is not None or status is not None:
            action_error = replace(
                action_error,
                code=code if code is not None else action_error.code,
                status=status if status is not None else action_error.status,
            )
        return cls(success=False, error=action_error)

    @classmethod
    def from_value(cls, value: Any) -> "ActionResult":
        """Normalize a handler's return value into an ActionResult.

        Mappings with a ``success`` key are treated as serialized results;
        anything else is wrapped as successful ``data``.
        """
        if isinstance(value, ActionResult):
            return value
        if isinstance(value, Mapping) and "success" in value:
            success = bool(value["success"])
            error = None
            if not success:
                error = ActionError.from_value(value.get("error"))
            return cls(success=success, data=value.get("data"), error=error)
        return cls(success=True, data=value)

    @property
    def cancelled(self) -> bool:
        return bool(self.metadata.cancelled)

    @property
    def skipped(self) -> bool:
        return bool(self.metadata.skipped)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the JSON-compatible wire shape."""
        data: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            data["data"] = _serialize(self.data)
        if self.error is not None:
            data["error"] = self.error.to_dict()
        data["metadata"] = self.metadata.to_dict()
        return data


def _serialize(value: Any) -> Any:
    if isinstance(value, ActionResult):
        return value.to_dict()
    if isinstance(value, Mapping):
        return {k: _serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    return value


ActionHandler = Callable[
    [Dict[str, Any], ExecutionContext, CancellationToken], Awaitable[Any]
]


@dataclass(frozen=True)
class HandlerMetadata:
    """Descriptive metadata stored alongside a handler."""

    display_name: str
    description: Optional[str] = None
    cancellable: bool = True
    retriable: bool = True
    schema: Any = None
    deferred_params: Tuple[str, ...] = ()


@dataclass(frozen=True)
class HandlerDefinition:
    """Registry entry: an action type bound to its handler."""

    type: str
    handler: ActionHandler
    metadata: HandlerMetadata


async def call_capability(context: ExecutionContext, name: str, *args: Any, **kwargs: Any) -> Any:
    """Call a context capability, awaiting it when it is a coroutine function.

    Raises:
        RuntimeError: If the capability is not provided by the context
    """
    capability = getattr(context, name, None)
    if capability is None:
        raise RuntimeError(f"Context capability '{name}' is not available")
    value = capability(*args, **kwargs)
    if inspect.isawaitable(value):
        value = await value
    return value
