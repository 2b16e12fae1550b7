"""Session models."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class SessionStatus(str, Enum):
    """Session lifecycle states."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"


class AgenticTool(str, Enum):
    """Agent tools an executor can drive."""

    CLAUDE_CODE = "claude-code"
    CODEX = "codex"
    GEMINI = "gemini"
    OPENCODE = "opencode"


def default_permission_mode(tool: AgenticTool) -> str:
    """Recommended permission mode for a tool when the session sets none."""
    if tool == AgenticTool.CODEX:
        return "auto"
    return "acceptEdits"


class PermissionConfig(BaseModel):
    """Session-level tool approval settings."""

    mode: str | None = None
    allowed_tools: list[str] = Field(default_factory=list)


class SessionGitState(BaseModel):
    """Git position of the session's worktree."""

    ref: str = "unknown"
    base_sha: str = "unknown"
    current_sha: str = "unknown"


class Genealogy(BaseModel):
    """Fork/spawn relationships between sessions."""

    forked_from_session_id: str | None = None
    fork_point_task_id: str | None = None
    fork_point_message_index: int | None = None
    parent_session_id: str | None = None
    spawn_point_task_id: str | None = None
    spawn_point_message_index: int | None = None
    children: list[str] = Field(default_factory=list)


class Session(BaseModel):
    """Long-lived agent work context bound to one worktree and one tool."""

    session_id: str
    agentic_tool: AgenticTool = AgenticTool.CLAUDE_CODE
    status: SessionStatus = SessionStatus.IDLE
    ready_for_prompt: bool = True
    worktree_id: str
    created_by: str
    title: str | None = None
    description: str | None = None
    tasks: list[str] = Field(default_factory=list)
    message_count: int = 0
    sdk_session_id: str | None = None
    permission_config: PermissionConfig = Field(default_factory=PermissionConfig)
    git_state: SessionGitState = Field(default_factory=SessionGitState)
    genealogy: Genealogy = Field(default_factory=Genealogy)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def permission_mode(self) -> str:
        return self.permission_config.mode or default_permission_mode(self.agentic_tool)


class SessionConfig(BaseModel):
    """Configuration for creating a new session."""

    worktree_id: str
    agentic_tool: AgenticTool = AgenticTool.CLAUDE_CODE
    title: str | None = None
    description: str | None = None
    permission_mode: str | None = None
    allowed_tools: list[str] = Field(default_factory=list)


class ForkRequest(BaseModel):
    """Branch a session at a decision point."""

    prompt: str = Field(min_length=1)
    task_id: str | None = None


class SpawnRequest(BaseModel):
    """Delegate a subsession to another (or the same) agent.

    A child of the same tool inherits the parent's permission settings;
    a different tool starts from its own defaults. ``permission_mode``
    overrides both.
    """

    prompt: str = Field(min_length=1)
    task_id: str | None = None
    agentic_tool: AgenticTool | None = None
    title: str | None = None
    permission_mode: str | None = None
    extra_instructions: str | None = None


class SessionInfo(BaseModel):
    """Session information for API responses."""

    session_id: str
    agentic_tool: str
    status: str
    ready_for_prompt: bool
    worktree_id: str
    created_by: str
    title: str | None = None
    tasks: list[str]
    message_count: int
    sdk_session_id: str | None = None
    genealogy: Genealogy
    created_at: datetime
    last_updated: datetime
