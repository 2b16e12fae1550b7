"""Request/response models for prompt submission, stop, and executor reports."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from agor_orchestrator.models.task import PermissionRequest, TaskStatus, TaskUsage


class PromptRequest(BaseModel):
    """Prompt submitted to a session."""

    prompt: str = Field(..., min_length=1)
    permission_mode: str | None = None


class PromptResult(BaseModel):
    """Outcome of a prompt submission.

    ``queued`` is True when the session was busy; the prompt then waits in
    the session queue under ``message_id`` and ``task_id`` is None.
    """

    task_id: str | None = None
    status: str
    queued: bool = False
    message_id: str | None = None
    queue_position: int | None = None


class StopResult(BaseModel):
    """Outcome of a stop request."""

    success: bool
    message: str
    task_id: str | None = None
    sequence: int | None = None


class TaskStatusUpdate(BaseModel):
    """Status report posted by an executor for its task."""

    status: TaskStatus
    message_end_index: int | None = None
    usage: TaskUsage | None = None
    model: str | None = None
    tool_use_count: int | None = None
    error_message: str | None = None
    error_kind: str | None = None
    permission_request: PermissionRequest | None = None
    sdk_session_id: str | None = None
    message_count: int | None = None


class RecoveryReport(BaseModel):
    """What the startup sweep repaired."""

    tasks_stopped: list[str] = Field(default_factory=list)
    sessions_reset: list[str] = Field(default_factory=list)
    ran_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_summary(self) -> dict[str, Any]:
        return {
            "tasks_stopped": len(self.tasks_stopped),
            "sessions_reset": len(self.sessions_reset),
        }
