"""API routes."""

from approval_engine.api.routes.approval_requests import router as approval_requests_router
from approval_engine.api.routes.health import router as health_router
from approval_engine.api.routes.realtime import router as realtime_router

__all__ = ["approval_requests_router", "health_router", "realtime_router"]
