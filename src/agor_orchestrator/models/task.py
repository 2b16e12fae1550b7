"""Task models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

DESCRIPTION_MAX_CHARS = 120


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    RUNNING = "running"
    AWAITING_PERMISSION = "awaiting_permission"
    STOPPING = "stopping"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_TASK_STATUSES


TERMINAL_TASK_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.STOPPED}
)
ACTIVE_TASK_STATUSES = frozenset(
    {TaskStatus.RUNNING, TaskStatus.AWAITING_PERMISSION, TaskStatus.STOPPING}
)


class MessageRange(BaseModel):
    """Messages of the session that belong to one task."""

    start_index: int
    end_index: int
    start_timestamp: datetime
    end_timestamp: datetime | None = None


class TaskGitState(BaseModel):
    """Git snapshot captured at task start (and end)."""

    ref: str = "unknown"
    sha_at_start: str = "unknown"
    sha_at_end: str | None = None


class TaskUsage(BaseModel):
    """Token usage and estimated cost reported at completion."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    total_tokens: int = 0
    estimated_cost_usd: float | None = None


class PermissionRequest(BaseModel):
    """Pending tool approval that put the task in awaiting_permission."""

    request_id: str
    tool_name: str
    tool_input: dict[str, Any] = Field(default_factory=dict)
    requested_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Task(BaseModel):
    """One prompt/response unit of work within a session."""

    task_id: str
    session_id: str
    created_by: str
    full_prompt: str
    description: str
    status: TaskStatus = TaskStatus.RUNNING
    message_range: MessageRange
    git_state: TaskGitState = Field(default_factory=TaskGitState)
    usage: TaskUsage | None = None
    model: str | None = None
    tool_use_count: int = 0
    error_message: str | None = None
    permission_request: PermissionRequest | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None


def describe_prompt(prompt: str) -> str:
    """Human-readable task description: the prompt prefix on one line."""
    flattened = " ".join(prompt.split())
    if len(flattened) <= DESCRIPTION_MAX_CHARS:
        return flattened
    return flattened[: DESCRIPTION_MAX_CHARS - 3] + "..."
