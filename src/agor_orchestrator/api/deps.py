"""API dependencies."""

from typing import Annotated

from fastapi import Depends, Header, Path, Request

from agor_orchestrator.core.exceptions import InvalidTokenError
from agor_orchestrator.core.orchestrator import AgorOrchestrator
from agor_orchestrator.core.tokens import SessionToken
from agor_orchestrator.models.session import Session
from agor_orchestrator.models.user import RequestContext


async def get_orchestrator(request: Request) -> AgorOrchestrator:
    """Get the orchestrator from app state."""
    orchestrator: AgorOrchestrator = request.app.state.orchestrator
    return orchestrator


async def get_session(
    session_id: Annotated[str, Path(description="Session ID")],
    orchestrator: Annotated[AgorOrchestrator, Depends(get_orchestrator)],
) -> Session:
    """Get a session by ID."""
    return await orchestrator.get_session(session_id)


async def get_request_context(
    x_agor_user: Annotated[str | None, Header(description="Acting user ID")] = None,
) -> RequestContext:
    """Identity of the caller.

    Authentication happens in front of this service; the authenticated
    user id arrives in the ``X-Agor-User`` header.
    """
    return RequestContext(user_id=x_agor_user or None)


async def get_executor_token(
    orchestrator: Annotated[AgorOrchestrator, Depends(get_orchestrator)],
    authorization: Annotated[str | None, Header()] = None,
) -> SessionToken:
    """Validate the executor's ``Authorization: Bearer <session token>``."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise InvalidTokenError()
    return orchestrator.authenticate_executor(authorization[7:].strip())


OrchestratorDep = Annotated[AgorOrchestrator, Depends(get_orchestrator)]
SessionDep = Annotated[Session, Depends(get_session)]
ContextDep = Annotated[RequestContext, Depends(get_request_context)]
ExecutorTokenDep = Annotated[SessionToken, Depends(get_executor_token)]

# Identifier of a user or worktree record; doubles as its file name
RecordId = Annotated[str, Path(pattern=r"^[A-Za-z0-9_-][A-Za-z0-9_.-]*$", max_length=128)]
