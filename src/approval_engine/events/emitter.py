"""Event emitter for publishing request updates.

Handlers are isolated: a failing handler is logged and reported back to
the caller but never stops the other handlers or the workflow action.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from approval_engine.events.types import RequestUpdated

logger = logging.getLogger(__name__)


@runtime_checkable
class AsyncEventHandler(Protocol):
    """Protocol for asynchronous event handlers."""

    async def __call__(self, event: RequestUpdated) -> None:
        """Handle an event asynchronously."""
        ...


@dataclass
class HandlerRegistration:
    """Registration of an event handler."""

    handler: AsyncEventHandler
    actions: set[str] | None  # None = all actions


class AsyncEventEmitter:
    """Asynchronous event emitter.

    Usage:
        emitter = AsyncEventEmitter()
        emitter.on_all(connection_manager.broadcast_event)
        emitter.on("submitted", audit_hook)

        errors = await emitter.emit(RequestUpdated("submitted", request_id))
    """

    def __init__(self) -> None:
        self._handlers: list[HandlerRegistration] = []

    def on(self, action: str | list[str], handler: AsyncEventHandler) -> None:
        """Register handler for specific action(s)."""
        actions = set(action) if isinstance(action, list) else {action}
        self._handlers.append(HandlerRegistration(handler=handler, actions=actions))

    def on_all(self, handler: AsyncEventHandler) -> None:
        """Register handler for all events."""
        self._handlers.append(HandlerRegistration(handler=handler, actions=None))

    def off(self, handler: AsyncEventHandler) -> None:
        """Unregister a handler."""
        self._handlers = [reg for reg in self._handlers if reg.handler is not handler]

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    async def emit(self, event: RequestUpdated) -> list[Exception]:
        """Emit an event to all matching handlers.

        Returns list of any exceptions raised by handlers.
        """
        tasks = [
            asyncio.create_task(self._call_handler(reg.handler, event))
            for reg in self._handlers
            if reg.actions is None or event.action in reg.actions
        ]
        if not tasks:
            return []

        errors: list[Exception] = []
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                errors.append(result)
        return errors

    async def _call_handler(self, handler: AsyncEventHandler, event: RequestUpdated) -> None:
        """Call async handler with error logging."""
        try:
            await handler(event)
        except Exception:
            logger.exception(
                "Async handler %s failed for event %s:%s",
                handler,
                event.event_type,
                event.action,
            )
            raise
