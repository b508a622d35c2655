"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from approval_engine.api.responses import error_response
from approval_engine.api.routes import (
    approval_requests_router,
    health_router,
    realtime_router,
)
from approval_engine.api.routes.realtime import ConnectionManager
from approval_engine.config import Settings, configure_logging, get_settings
from approval_engine.database import get_engine, init_db, make_session_factory
from approval_engine.events import AsyncEventEmitter
from approval_engine.notify import NotifyService, SmtpNotifyService, StubNotifyService
from approval_engine.services.errors import CollaboratorFailure, WorkflowError
from approval_engine.services.request_service import RequestNumberAllocator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    configure_logging(app.state.settings.log_level)
    await init_db(app.state.engine)
    logger.info("Approval engine started (notify=%s)", app.state.notify.service_name)
    yield
    # Shutdown
    await app.state.engine.dispose()


def build_notify_service(settings: Settings) -> NotifyService:
    """SMTP when credentials are configured, otherwise the in-memory stub."""
    if settings.mail_configured:
        return SmtpNotifyService.from_settings(settings)
    logger.warning("SMTP credentials not configured; using stub notify service")
    return StubNotifyService()


def create_app(
    settings: Settings | None = None,
    engine: AsyncEngine | None = None,
    notify: NotifyService | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Collaborators are built once here and kept on ``app.state``; tests pass
    their own engine and notify service.
    """
    settings = settings or get_settings()
    app = FastAPI(
        title="Approval Engine API",
        description="Multi-level budget approval workflow",
        version="0.1.0",
        lifespan=lifespan,
    )

    engine = engine or get_engine(settings.database_url)
    connections = ConnectionManager()
    emitter = AsyncEventEmitter()
    emitter.on_all(connections.broadcast_event)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)
    app.state.notify = notify or build_notify_service(settings)
    app.state.emitter = emitter
    app.state.connections = connections
    app.state.allocator = RequestNumberAllocator()

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(WorkflowError)
    async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
        """Render service errors as the uniform envelope."""
        return error_response(exc)

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.exception("Database error on %s %s", request.method, request.url.path)
        return error_response(CollaboratorFailure(f"{request.method} {request.url.path}", exc))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": "An unexpected error occurred",
                "error_code": "internal_error",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(realtime_router)
    app.include_router(approval_requests_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
