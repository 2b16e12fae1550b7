"""Session prompt queue endpoints."""

from fastapi import APIRouter, status

from agor_orchestrator.api.deps import ContextDep, OrchestratorDep
from agor_orchestrator.models.prompt import PromptRequest
from agor_orchestrator.models.queue import QueuedMessage
from agor_orchestrator.models.responses import QueueResponse

router = APIRouter(prefix="/sessions/{session_id}/queue", tags=["Queue"])


@router.get("", response_model=QueueResponse)
async def list_queue(session_id: str, orchestrator: OrchestratorDep) -> QueueResponse:
    """List queued prompts in execution order."""
    messages = await orchestrator.list_queue(session_id)
    return QueueResponse(session_id=session_id, messages=messages, total=len(messages))


@router.post("", response_model=QueuedMessage, status_code=status.HTTP_201_CREATED)
async def queue_prompt(
    session_id: str,
    request: PromptRequest,
    orchestrator: OrchestratorDep,
    context: ContextDep,
) -> QueuedMessage:
    """Queue a prompt behind the session's current work."""
    return await orchestrator.queue_prompt(
        session_id, request.prompt, context, request.permission_mode
    )


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_queued_prompt(
    session_id: str,
    message_id: str,
    orchestrator: OrchestratorDep,
) -> None:
    """Remove a queued prompt before it runs."""
    await orchestrator.cancel_queued(session_id, message_id)
