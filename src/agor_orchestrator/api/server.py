"""Server endpoints - health."""

from fastapi import APIRouter

from agor_orchestrator import __version__
from agor_orchestrator.api.deps import OrchestratorDep
from agor_orchestrator.models.responses import HealthResponse

router = APIRouter(tags=["Server"])


@router.get("/health", response_model=HealthResponse)
async def health_check(orchestrator: OrchestratorDep) -> HealthResponse:
    """Check server health status."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        launch_mode=orchestrator.launcher.mode,
        running_executors=orchestrator.launcher.running_count,
        active_tokens=orchestrator.tokens.active_count,
    )
