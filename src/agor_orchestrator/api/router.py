"""Main API router aggregator."""

from fastapi import APIRouter

from agor_orchestrator.api import (
    events,
    executor,
    queue,
    recovery,
    server,
    sessions,
    tasks,
    users,
    worktrees,
)

# Create main router with API version prefix
api_router = APIRouter(prefix="/api/v1")

# Include all sub-routers
api_router.include_router(server.router)
api_router.include_router(sessions.router)
api_router.include_router(queue.router)
api_router.include_router(tasks.router)
api_router.include_router(executor.router)
api_router.include_router(events.router)
api_router.include_router(recovery.router)
api_router.include_router(worktrees.router)
api_router.include_router(users.router)
