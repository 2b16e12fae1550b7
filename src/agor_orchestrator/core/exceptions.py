"""Custom exception hierarchy for the orchestrator."""

from typing import Any


class AgorError(Exception):
    """Base exception for all orchestrator errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class RecordNotFoundError(AgorError):
    """A stored record does not exist (or was removed concurrently)."""

    pass


class SessionNotFoundError(RecordNotFoundError):
    """Session with given ID does not exist."""

    def __init__(self, session_id: str):
        super().__init__(
            code="SESSION_NOT_FOUND",
            message=f"Session '{session_id}' not found",
            details={"session_id": session_id},
        )


class TaskNotFoundError(RecordNotFoundError):
    """Task with given ID does not exist."""

    def __init__(self, task_id: str):
        super().__init__(
            code="TASK_NOT_FOUND",
            message=f"Task '{task_id}' not found",
            details={"task_id": task_id},
        )


class QueuedMessageNotFoundError(RecordNotFoundError):
    """Queued message with given ID does not exist."""

    def __init__(self, message_id: str):
        super().__init__(
            code="QUEUED_MESSAGE_NOT_FOUND",
            message=f"Queued message '{message_id}' not found",
            details={"message_id": message_id},
        )


class WorktreeNotFoundError(RecordNotFoundError):
    """Worktree with given ID does not exist."""

    def __init__(self, worktree_id: str):
        super().__init__(
            code="WORKTREE_NOT_FOUND",
            message=f"Worktree '{worktree_id}' not found",
            details={"worktree_id": worktree_id},
        )


class InvalidTaskTransitionError(AgorError):
    """Requested task status change is not allowed from the current status."""

    def __init__(self, task_id: str, current_status: str, requested_status: str):
        super().__init__(
            code="INVALID_TASK_TRANSITION",
            message=f"Task '{task_id}' cannot move from '{current_status}' "
            f"to '{requested_status}'",
            details={
                "task_id": task_id,
                "current_status": current_status,
                "requested_status": requested_status,
            },
        )


class SessionBusyError(AgorError):
    """Session already has an active task."""

    def __init__(self, session_id: str, active_task_id: str | None):
        super().__init__(
            code="SESSION_BUSY",
            message=f"Session '{session_id}' already has an active task",
            details={"session_id": session_id, "active_task_id": active_task_id},
        )


class TokenError(AgorError):
    """Session token validation errors."""

    pass


class InvalidTokenError(TokenError):
    """Token is unknown or was revoked."""

    def __init__(self) -> None:
        super().__init__(code="TOKEN_INVALID", message="Session token is invalid or revoked")


class TokenExpiredError(TokenError):
    """Token lifetime has elapsed."""

    def __init__(self, session_id: str):
        super().__init__(
            code="TOKEN_EXPIRED",
            message="Session token has expired",
            details={"session_id": session_id},
        )


class TokenExhaustedError(TokenError):
    """Token has no remaining uses."""

    def __init__(self, session_id: str):
        super().__init__(
            code="TOKEN_EXHAUSTED",
            message="Session token has no remaining uses",
            details={"session_id": session_id},
        )


class TokenScopeError(TokenError):
    """Token does not authorize the requested session or task."""

    def __init__(self, session_id: str, requested: str):
        super().__init__(
            code="TOKEN_SCOPE",
            message=f"Session token for '{session_id}' cannot act on '{requested}'",
            details={"session_id": session_id, "requested": requested},
        )


class SpawnError(AgorError):
    """Executor could not be launched."""

    pass


class ExecutorNotFoundError(SpawnError):
    """No usable executor binary could be located."""

    def __init__(self, searched: list[str]):
        super().__init__(
            code="EXECUTOR_NOT_FOUND",
            message="Executor binary not found. Tried:\n"
            + "\n".join(f"  - {path}" for path in searched),
            details={"searched": searched},
        )


class EnvironmentResolutionError(SpawnError):
    """Per-user executor environment could not be resolved."""

    def __init__(self, user_id: str | None, reason: str):
        super().__init__(
            code="ENVIRONMENT_RESOLUTION_FAILED",
            message=f"Failed to resolve executor environment for user '{user_id}': {reason}",
            details={"user_id": user_id, "reason": reason},
        )


class UnsupportedLaunchModeError(SpawnError):
    """Configured executor launch mode has no registered launcher."""

    def __init__(self, mode: str, supported: list[str]):
        super().__init__(
            code="UNSUPPORTED_LAUNCH_MODE",
            message=f"Executor launch mode '{mode}' is not supported",
            details={"mode": mode, "supported": supported},
        )


class PersistenceError(AgorError):
    """Persistence layer errors."""

    pass
