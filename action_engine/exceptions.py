"""Exceptions raised by the action engine."""

from typing import Any, Dict, List, Optional


class ActionEngineError(Exception):
    """Base exception for all action engine errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class HandlerRegistrationError(ActionEngineError):
    """Invalid handler registration (empty type or non-callable handler)."""


class TemplateResolutionError(ActionEngineError):
    """Template parameters could not be resolved (cycle or excessive nesting)."""

    def __init__(self, message: str, path: Optional[List[str]] = None) -> None:
        self.path = path or []
        super().__init__(message, details={"path": ".".join(self.path)} if self.path else None)


class ActionCancelledError(ActionEngineError):
    """Raised inside a cancellation scope once it has been cancelled."""

    def __init__(self, reason: Any = None) -> None:
        self.reason = reason
        label = getattr(reason, "value", reason)
        super().__init__(
            "Action was cancelled" if label is None else f"Action was cancelled ({label})"
        )


class HandlerFailedError(ActionEngineError):
    """Business failure raised by a handler.

    Handlers may raise this instead of returning a failed ``ActionResult``;
    the executor normalizes it into an ``ActionError`` carrying the same
    code, status and field errors.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status: Optional[int] = None,
        field_errors: Optional[Dict[str, List[str]]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status = status
        self.field_errors = field_errors
