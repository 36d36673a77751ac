"""Structured cancellation scopes for action execution."""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Set, TypeVar

import structlog

from ..exceptions import ActionCancelledError


logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CancelReason(Enum):
    """Why a cancellation scope was cancelled."""

    EXPLICIT = "explicit"
    TIMEOUT = "timeout"
    PARENT = "parent"


class CancellationToken:
    """Cancellation scope linked into a parent/child tree.

    Cancelling a token cancels every live descendant with reason
    ``CancelReason.PARENT``. Handlers receive the token of their action and
    may poll ``cancelled``, await ``wait()`` or use ``sleep()``.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None) -> None:
        """Initialize a cancellation token.

        Args:
            parent: Optional parent scope whose cancellation propagates here
        """
        self._event = asyncio.Event()
        self._reason: Optional[CancelReason] = None
        self._children: Set["CancellationToken"] = set()
        self._callbacks: List[Callable[["CancellationToken"], Any]] = []
        self._parent = parent

        if parent is not None:
            if parent.cancelled:
                self.cancel(CancelReason.PARENT)
            else:
                parent._children.add(self)

    @property
    def cancelled(self) -> bool:
        """Whether this scope has been cancelled."""
        return self._reason is not None

    @property
    def reason(self) -> Optional[CancelReason]:
        """Cancellation reason, or None while the scope is live."""
        return self._reason

    def cancel(self, reason: CancelReason = CancelReason.EXPLICIT) -> bool:
        """Cancel this scope and all of its descendants.

        Args:
            reason: Cause recorded on this scope

        Returns:
            True if this call cancelled the scope, False if it already was
        """
        if self._reason is not None:
            return False

        self._reason = reason
        self._event.set()

        children = list(self._children)
        self._children.clear()
        for child in children:
            child.cancel(CancelReason.PARENT)

        for callback in self._callbacks:
            try:
                callback(self)
            except Exception as e:
                logger.error("Cancellation callback failed", error=str(e))
        self._callbacks.clear()

        return True

    def cancel_after(self, seconds: float) -> asyncio.TimerHandle:
        """Arm a timer that cancels this scope with reason TIMEOUT."""
        loop = asyncio.get_running_loop()
        return loop.call_later(seconds, self.cancel, CancelReason.TIMEOUT)

    def add_callback(self, callback: Callable[["CancellationToken"], Any]) -> None:
        """Run ``callback(token)`` on cancellation (immediately if already cancelled)."""
        if self.cancelled:
            callback(self)
        else:
            self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._reason is not None:
            raise ActionCancelledError(self._reason)

    async def wait(self) -> CancelReason:
        """Block until the scope is cancelled and return the reason."""
        await self._event.wait()
        assert self._reason is not None
        return self._reason

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first.

        Raises:
            ActionCancelledError: If the scope is cancelled before the delay ends
        """
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise ActionCancelledError(self._reason)

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` but abort it as soon as the scope is cancelled.

        A result that is already available when cancellation fires wins.

        Raises:
            ActionCancelledError: If the scope was cancelled first
        """
        self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug("Cancelled handler raised while unwinding", error=str(e))

        raise ActionCancelledError(self._reason)

    def close(self) -> None:
        """Detach from the parent scope so it no longer tracks this token."""
        if self._parent is not None:
            self._parent._children.discard(self)
            self._parent = None
        self._callbacks.clear()

    def __repr__(self) -> str:
        state = self._reason.value if self._reason else "live"
        return f"<CancellationToken {state} children={len(self._children)}>"
