"""Action handler registry and decorator."""

from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

import structlog

from ..exceptions import HandlerRegistrationError
from .base import ActionHandler, HandlerDefinition, HandlerMetadata


logger = structlog.get_logger(__name__)


class ActionRegistry:
    """Dispatch table from action type to handler definition."""

    def __init__(self) -> None:
        """Initialize the action registry."""
        self._handlers: Dict[str, HandlerDefinition] = {}

        logger.debug("Initialized ActionRegistry")

    def register(
        self,
        action_type: str,
        handler: ActionHandler,
        metadata: Optional[HandlerMetadata] = None,
        **overrides: Any,
    ) -> None:
        """Register an action handler.

        Args:
            action_type: Action type the handler serves
            handler: Async callable ``(params, context, signal) -> ActionResult``
            metadata: Optional full metadata
            **overrides: Individual metadata fields (display_name, description,
                cancellable, retriable, schema)

        Raises:
            HandlerRegistrationError: If the type is empty or the handler is not callable
        """
        if not action_type or not isinstance(action_type, str):
            raise HandlerRegistrationError("Action type is required")

        if not callable(handler):
            raise HandlerRegistrationError(
                "Action handler must be callable", details={"action": action_type}
            )

        if metadata is None:
            metadata = HandlerMetadata(display_name=action_type)
        if overrides:
            metadata = replace(metadata, **overrides)
        if not metadata.display_name:
            metadata = replace(metadata, display_name=action_type)

        if action_type in self._handlers:
            logger.warning(
                "Overriding existing action handler",
                action=action_type
            )

        self._handlers[action_type] = HandlerDefinition(
            type=action_type, handler=handler, metadata=metadata
        )

        logger.debug(
            "Registered action handler",
            action=action_type,
            display_name=metadata.display_name,
            cancellable=metadata.cancellable,
            retriable=metadata.retriable
        )

    def get(self, action_type: str) -> Optional[ActionHandler]:
        """Get the handler for a type, or None."""
        definition = self._handlers.get(action_type)
        return definition.handler if definition else None

    def get_definition(self, action_type: str) -> Optional[HandlerDefinition]:
        return self._handlers.get(action_type)

    def has(self, action_type: str) -> bool:
        return action_type in self._handlers

    def get_types(self) -> List[str]:
        return list(self._handlers.keys())

    def unregister(self, action_type: str) -> bool:
        """Remove a handler.

        Returns:
            True if a handler was removed, False if none was registered
        """
        if self._handlers.pop(action_type, None) is None:
            return False
        logger.debug("Unregistered action handler", action=action_type)
        return True

    def clear(self) -> None:
        self._handlers.clear()

    def get_metadata(self, action_type: str) -> Optional[HandlerMetadata]:
        definition = self._handlers.get(action_type)
        return definition.metadata if definition else None

    def get_all(self) -> Dict[str, HandlerDefinition]:
        """Get a copy of all handler definitions."""
        return dict(self._handlers)

    def list_actions(self) -> List[Dict[str, Any]]:
        """List all registered actions.

        Returns:
            List of action info dictionaries
        """
        return [
            {
                "type": action_type,
                "displayName": definition.metadata.display_name,
                "description": definition.metadata.description,
                "cancellable": definition.metadata.cancellable,
                "retriable": definition.metadata.retriable,
            }
            for action_type, definition in self._handlers.items()
        ]

    def get_stats(self) -> Dict[str, Any]:
        """Get registry statistics.

        Returns:
            Dictionary with statistics
        """
        return {
            "registered_actions": len(self._handlers),
            "action_types": list(self._handlers.keys())
        }

    def __contains__(self, action_type: object) -> bool:
        return action_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


# Global action registry instance
_action_registry = ActionRegistry()


def register_action(
    action_type: str,
    registry: Optional[ActionRegistry] = None,
    **metadata: Any,
) -> Callable[[ActionHandler], ActionHandler]:
    """Decorator to register an async handler function.

    Args:
        action_type: Action type the function handles
        registry: Target registry (defaults to the global registry)
        **metadata: HandlerMetadata fields

    Returns:
        Decorator returning the function unchanged
    """
    def decorator(handler: ActionHandler) -> ActionHandler:
        (registry or _action_registry).register(action_type, handler, **metadata)
        return handler

    return decorator


def get_action_registry() -> ActionRegistry:
    """Get the global action registry instance.

    Returns:
        Global ActionRegistry instance
    """
    return _action_registry
