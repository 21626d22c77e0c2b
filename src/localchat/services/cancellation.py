from __future__ import annotations

"""Cancellation token shared by one outbound backend call.

A token is cancelled by whichever fires first: its deadline timer or an
explicit ``cancel(CancelReason.CLIENT_DISCONNECTED)`` from the transport.
Work attached through ``run()`` is cancelled with it. ``close()`` drops the
timer and every registered callback; callers close the token when the call
ends, whatever the outcome.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from ..domain.errors import GenerationError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelReason(str, Enum):
    TIMEOUT = "timeout"
    CLIENT_DISCONNECTED = "client_disconnected"


class CancelToken:
    def __init__(self) -> None:
        self._reason: Optional[CancelReason] = None
        self._callbacks: List[Callable[[], Any]] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._timeout_message: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> Optional[CancelReason]:
        return self._reason

    @property
    def active_callbacks(self) -> int:
        return len(self._callbacks)

    @property
    def timer_active(self) -> bool:
        return self._timer is not None

    def cancel(self, reason: CancelReason) -> bool:
        """Returns False when the token was already cancelled."""
        if self._reason is not None:
            return False
        self._reason = reason
        self.disarm()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as exc:  # keep cancelling the rest
                logger.warning("cancel_callback_failed", extra={"err": str(exc)})
        logger.debug("cancel_token_fired", extra={"reason": reason.value})
        return True

    def cancel_after(self, seconds: Optional[float], message: Optional[str] = None) -> None:
        """Arm (or re-arm) the deadline; ``None`` means no deadline."""
        self.disarm()
        if seconds is None or self.cancelled:
            return
        self._timeout_message = message
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(seconds, self.cancel, CancelReason.TIMEOUT)

    def disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def register(self, callback: Callable[[], Any]) -> Callable[[], None]:
        """Run ``callback`` on cancellation (immediately if already cancelled)."""
        if self.cancelled:
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def unregister() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return unregister

    def close(self) -> None:
        self.disarm()
        self._callbacks.clear()

    def error(self) -> GenerationError:
        if self._reason is CancelReason.TIMEOUT:
            return GenerationError.timeout(self._timeout_message)
        return GenerationError.aborted()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` as a task that this token can cancel.

        Raises the token's ``GenerationError`` when the token fired.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise self.error()
        task = asyncio.ensure_future(awaitable)
        unregister = self.register(task.cancel)
        try:
            return await task
        except asyncio.CancelledError:
            if self.cancelled and task.cancelled():
                raise self.error() from None
            raise
        finally:
            unregister()
            if not task.done():
                task.cancel()

    def __enter__(self) -> "CancelToken":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
