"""API response models."""

from pydantic import BaseModel

from agor_orchestrator.models.prompt import RecoveryReport
from agor_orchestrator.models.queue import QueuedMessage
from agor_orchestrator.models.session import Session, SessionInfo
from agor_orchestrator.models.task import Task


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    launch_mode: str
    running_executors: int
    active_tokens: int


class SessionListResponse(BaseModel):
    sessions: list[SessionInfo]
    total: int


class TaskListResponse(BaseModel):
    tasks: list[Task]
    total: int


class QueueResponse(BaseModel):
    """Queued prompts of one session in execution order."""

    session_id: str
    messages: list[QueuedMessage]
    total: int


class RecoveryResponse(BaseModel):
    """Result of the startup recovery sweep (None before it has run)."""

    report: RecoveryReport | None = None


class AckResponse(BaseModel):
    accepted: bool = True


def to_session_info(session: Session) -> SessionInfo:
    return SessionInfo(**session.model_dump(mode="json"))
