"""Session management endpoints."""

from fastapi import APIRouter, status

from agor_orchestrator.api.deps import ContextDep, OrchestratorDep, SessionDep
from agor_orchestrator.models.prompt import PromptRequest, PromptResult, StopResult
from agor_orchestrator.models.responses import (
    SessionListResponse,
    TaskListResponse,
    to_session_info,
)
from agor_orchestrator.models.session import (
    ForkRequest,
    SessionConfig,
    SessionInfo,
    SpawnRequest,
)

router = APIRouter(prefix="/sessions", tags=["Sessions"])


@router.post("", response_model=SessionInfo, status_code=status.HTTP_201_CREATED)
async def create_session(
    config: SessionConfig,
    orchestrator: OrchestratorDep,
    context: ContextDep,
) -> SessionInfo:
    """Create a new idle session on a worktree."""
    session = await orchestrator.create_session(config, context)
    return to_session_info(session)


@router.get("", response_model=SessionListResponse)
async def list_sessions(orchestrator: OrchestratorDep) -> SessionListResponse:
    """List all sessions."""
    sessions = await orchestrator.list_sessions()
    return SessionListResponse(
        sessions=[to_session_info(s) for s in sessions],
        total=len(sessions),
    )


@router.get("/{session_id}", response_model=SessionInfo)
async def get_session(session: SessionDep) -> SessionInfo:
    """Get session details."""
    return to_session_info(session)


@router.post(
    "/{session_id}/prompt",
    response_model=PromptResult,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_prompt(
    session_id: str,
    request: PromptRequest,
    orchestrator: OrchestratorDep,
    context: ContextDep,
) -> PromptResult:
    """Submit a prompt.

    Runs immediately when the session is idle, otherwise the prompt is
    queued. Returns as soon as the executor is spawned; watch the task
    (or the session event stream) for the outcome.
    """
    return await orchestrator.submit_prompt(
        session_id, request.prompt, context, request.permission_mode
    )


@router.post("/{session_id}/stop", response_model=StopResult)
async def stop_session(
    session_id: str,
    orchestrator: OrchestratorDep,
    context: ContextDep,
) -> StopResult:
    """Stop the running task of a session.

    ``success`` is false (with HTTP 200) when the session was not running
    or the executor did not confirm in time.
    """
    return await orchestrator.stop_session(session_id, context)


@router.get("/{session_id}/tasks", response_model=TaskListResponse)
async def list_session_tasks(session_id: str, orchestrator: OrchestratorDep) -> TaskListResponse:
    """List the tasks of a session in creation order."""
    tasks = await orchestrator.list_tasks(session_id)
    return TaskListResponse(tasks=tasks, total=len(tasks))


@router.post(
    "/{session_id}/fork",
    response_model=SessionInfo,
    status_code=status.HTTP_201_CREATED,
)
async def fork_session(
    session_id: str,
    request: ForkRequest,
    orchestrator: OrchestratorDep,
    context: ContextDep,
) -> SessionInfo:
    """Fork a session at a decision point.

    The fork is created idle; submit ``prompt`` to it to start work.
    """
    session = await orchestrator.fork_session(session_id, request, context)
    return to_session_info(session)


@router.post(
    "/{session_id}/spawn",
    response_model=SessionInfo,
    status_code=status.HTTP_201_CREATED,
)
async def spawn_session(
    session_id: str,
    request: SpawnRequest,
    orchestrator: OrchestratorDep,
    context: ContextDep,
) -> SessionInfo:
    """Spawn an idle child session for delegated work."""
    session = await orchestrator.spawn_session(session_id, request, context)
    return to_session_info(session)
