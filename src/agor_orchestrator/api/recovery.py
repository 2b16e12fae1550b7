"""Crash recovery endpoints."""

from fastapi import APIRouter

from agor_orchestrator.api.deps import OrchestratorDep
from agor_orchestrator.models.responses import RecoveryResponse

router = APIRouter(prefix="/recovery", tags=["Recovery"])


@router.get("", response_model=RecoveryResponse)
async def last_recovery(orchestrator: OrchestratorDep) -> RecoveryResponse:
    """Report of the recovery sweep that ran at startup.

    Lists the orphaned tasks that were force-stopped and the sessions that
    were reset to idle.
    """
    return RecoveryResponse(report=orchestrator.last_recovery)
