"""Worktree registration endpoints."""

from fastapi import APIRouter

from agor_orchestrator.api.deps import OrchestratorDep, RecordId
from agor_orchestrator.models.user import Worktree, WorktreeConfig

router = APIRouter(prefix="/worktrees", tags=["Worktrees"])


@router.put("/{worktree_id}", response_model=Worktree)
async def register_worktree(
    worktree_id: RecordId,
    config: WorktreeConfig,
    orchestrator: OrchestratorDep,
) -> Worktree:
    """Create or replace the worktree sessions can be bound to."""
    worktree = Worktree(worktree_id=worktree_id, name=config.name, path=config.path)
    return await orchestrator.register_worktree(worktree)


@router.get("", response_model=list[Worktree])
async def list_worktrees(orchestrator: OrchestratorDep) -> list[Worktree]:
    return await orchestrator.list_worktrees()
