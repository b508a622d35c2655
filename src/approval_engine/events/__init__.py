"""Request update events and the emitter that publishes them."""

from approval_engine.events.emitter import AsyncEventEmitter, AsyncEventHandler
from approval_engine.events.types import RequestAction, RequestUpdated

__all__ = [
    "AsyncEventEmitter",
    "AsyncEventHandler",
    "RequestAction",
    "RequestUpdated",
]
