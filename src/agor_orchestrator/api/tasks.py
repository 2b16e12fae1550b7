"""Task endpoints."""

from fastapi import APIRouter

from agor_orchestrator.api.deps import OrchestratorDep
from agor_orchestrator.models.task import Task

router = APIRouter(prefix="/tasks", tags=["Tasks"])


@router.get("/{task_id}", response_model=Task)
async def get_task(task_id: str, orchestrator: OrchestratorDep) -> Task:
    return await orchestrator.get_task(task_id)
