"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from approval_engine.services.request_service import RequestService
from approval_engine.services.workflow import WorkflowOrchestrator


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_user_id(
    x_user_id: Annotated[str | None, Header()] = None
) -> str:
    """Extract the acting user from header."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-ID header is required",
        )
    return x_user_id.strip()


DbSession = Annotated[AsyncSession, Depends(get_db_session)]
UserId = Annotated[str, Depends(get_user_id)]


def get_request_service(request: Request, db: DbSession) -> RequestService:
    state = request.app.state
    return RequestService(db, allocator=state.allocator, emitter=state.emitter)


def get_orchestrator(request: Request, db: DbSession) -> WorkflowOrchestrator:
    state = request.app.state
    return WorkflowOrchestrator(
        db,
        state.notify,
        emitter=state.emitter,
        settings=state.settings,
    )


Requests = Annotated[RequestService, Depends(get_request_service)]
Workflow = Annotated[WorkflowOrchestrator, Depends(get_orchestrator)]
