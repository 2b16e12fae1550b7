"""Endpoints used by running executors.

Every request carries the executor's session token as a bearer
credential; each request consumes one token use.
"""

from fastapi import APIRouter, status

from agor_orchestrator.api.deps import ExecutorTokenDep, OrchestratorDep
from agor_orchestrator.models.events import ExecutorEvent
from agor_orchestrator.models.prompt import TaskStatusUpdate
from agor_orchestrator.models.responses import AckResponse
from agor_orchestrator.models.task import Task

router = APIRouter(prefix="/executor", tags=["Executor"])


@router.post("/events", response_model=AckResponse, status_code=status.HTTP_202_ACCEPTED)
async def post_executor_event(
    event: ExecutorEvent,
    token: ExecutorTokenDep,
    orchestrator: OrchestratorDep,
) -> AckResponse:
    """Publish ``task_stop_ack`` / ``task_stopped_complete`` onto the bus."""
    orchestrator.publish_executor_event(token, event)
    return AckResponse()


@router.patch("/tasks/{task_id}", response_model=Task)
async def report_task_status(
    task_id: str,
    update: TaskStatusUpdate,
    token: ExecutorTokenDep,
    orchestrator: OrchestratorDep,
) -> Task:
    """Report a status change of the executor's task."""
    return await orchestrator.report_task_status(token, task_id, update)
