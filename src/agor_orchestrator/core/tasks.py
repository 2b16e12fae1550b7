"""Task state machine.

States: ``running`` is initial; ``awaiting_permission`` and ``stopping``
are the other non-terminal states; ``completed``, ``failed`` and
``stopped`` are terminal. Every successful transition publishes a
``task_status_changed`` event and then notifies the session state machine.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from agor_orchestrator.core.events import EventBus
from agor_orchestrator.core.exceptions import (
    InvalidTaskTransitionError,
    SessionBusyError,
    TaskNotFoundError,
)
from agor_orchestrator.core.failures import classify_executor_failure
from agor_orchestrator.core.gitstate import GitSnapshot
from agor_orchestrator.core.pricing import estimate_cost_usd
from agor_orchestrator.core.sessions import SessionStateMachine
from agor_orchestrator.models.events import TaskStatusChanged
from agor_orchestrator.models.task import (
    MessageRange,
    PermissionRequest,
    Task,
    TaskGitState,
    TaskStatus,
    TaskUsage,
    describe_prompt,
)
from agor_orchestrator.models.user import RequestContext
from agor_orchestrator.persistence.tasks import TaskRepository

logger = logging.getLogger(__name__)

# Non-terminal moves; any non-terminal status may also move to any terminal one
_NON_TERMINAL_MOVES: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.RUNNING: frozenset({TaskStatus.AWAITING_PERMISSION, TaskStatus.STOPPING}),
    TaskStatus.AWAITING_PERMISSION: frozenset({TaskStatus.RUNNING, TaskStatus.STOPPING}),
    TaskStatus.STOPPING: frozenset({TaskStatus.RUNNING, TaskStatus.AWAITING_PERMISSION}),
}


def is_allowed_transition(current: TaskStatus, requested: TaskStatus) -> bool:
    if current.is_terminal:
        return requested.is_terminal
    if requested.is_terminal or requested == current:
        return True
    return requested in _NON_TERMINAL_MOVES[current]


class TaskStateMachine:
    """Creates tasks and applies their status transitions."""

    def __init__(
        self,
        tasks: TaskRepository,
        session_machine: SessionStateMachine,
        bus: EventBus,
        pricing_table: str = "",
    ):
        self.tasks = tasks
        self.session_machine = session_machine
        self.bus = bus
        self.pricing_table = pricing_table

    async def create(
        self,
        session_id: str,
        prompt: str,
        created_by: str,
        git_state: GitSnapshot | None = None,
        message_range_start: int | None = None,
    ) -> Task:
        """Create a ``running`` task and claim its session.

        Args:
            session_id: Owning session
            prompt: Full prompt text
            created_by: Submitting user
            git_state: Worktree snapshot at task start
            message_range_start: First message index (defaults to the
                session's current message count)

        Returns:
            The created task

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionBusyError: If the session is not idle
        """
        session = await self.session_machine.sessions.get(session_id)
        task_id = f"task_{uuid.uuid4().hex[:12]}"

        claimed = await self.session_machine.mark_running(session_id, task_id)
        if claimed is None:
            raise SessionBusyError(session_id, session.tasks[-1] if session.tasks else None)

        start = message_range_start if message_range_start is not None else session.message_count
        snapshot = git_state or GitSnapshot()
        task = Task(
            task_id=task_id,
            session_id=session_id,
            created_by=created_by,
            full_prompt=prompt,
            description=describe_prompt(prompt),
            message_range=MessageRange(
                start_index=start,
                end_index=start,
                start_timestamp=datetime.now(timezone.utc),
            ),
            git_state=TaskGitState(ref=snapshot.ref, sha_at_start=snapshot.sha),
        )

        try:
            await self.tasks.create(task)
        except Exception:
            await self.session_machine.mark_idle(session_id)
            raise

        self.bus.publish(
            TaskStatusChanged(
                session_id=session_id,
                task_id=task_id,
                status_from=None,
                status_to=task.status.value,
            )
        )
        logger.info(f"Created task {task_id} in session {session_id}")
        return task

    async def transition(
        self,
        task_id: str,
        new_status: TaskStatus,
        *,
        message_end_index: int | None = None,
        usage: TaskUsage | None = None,
        model: str | None = None,
        tool_use_count: int | None = None,
        error_message: str | None = None,
        error_kind: str | None = None,
        permission_request: PermissionRequest | None = None,
        sha_at_end: str | None = None,
        context: RequestContext | None = None,
    ) -> Task:
        """Atomically move a task to ``new_status``.

        A terminal-to-terminal request is a no-op returning the stored task.

        Raises:
            TaskNotFoundError: If the task does not exist
            InvalidTaskTransitionError: If the move is not allowed
        """
        cost: float | None = None
        if new_status == TaskStatus.COMPLETED and usage is not None:
            cost = await self._estimate_cost(task_id, usage, model)

        previous: list[TaskStatus] = []

        def change(current: Task) -> dict[str, Any] | None:
            if not is_allowed_transition(current.status, new_status):
                raise InvalidTaskTransitionError(
                    task_id, current.status.value, new_status.value
                )
            if current.status.is_terminal or current.status == new_status:
                return None

            previous.append(current.status)
            now = datetime.now(timezone.utc)
            fields: dict[str, Any] = {"status": new_status}

            if new_status.is_terminal:
                message_range = current.message_range.model_copy(
                    update={
                        "end_timestamp": now,
                        "end_index": (
                            message_end_index
                            if message_end_index is not None
                            else current.message_range.end_index
                        ),
                    }
                )
                fields["message_range"] = message_range
                fields["completed_at"] = now
                if sha_at_end is not None:
                    fields["git_state"] = current.git_state.model_copy(
                        update={"sha_at_end": sha_at_end}
                    )

            if new_status == TaskStatus.COMPLETED:
                if usage is not None:
                    fields["usage"] = usage.model_copy(update={"estimated_cost_usd": cost})
                if model is not None:
                    fields["model"] = model
            elif new_status == TaskStatus.FAILED:
                fields["error_message"] = error_message or "Task failed"
            elif new_status == TaskStatus.AWAITING_PERMISSION:
                # A stop revert re-enters without a request; keep the pending one
                if permission_request is not None:
                    fields["permission_request"] = permission_request
            elif (
                new_status == TaskStatus.RUNNING
                and current.status == TaskStatus.AWAITING_PERMISSION
            ):
                fields["permission_request"] = None

            if tool_use_count is not None:
                fields["tool_use_count"] = tool_use_count
            return fields

        updated = await self.tasks.update(task_id, change)
        if updated is None:
            logger.debug(f"Task {task_id} already {new_status.value} or terminal, ignoring")
            return await self.tasks.get(task_id)

        status_from = previous[0]
        self.bus.publish(
            TaskStatusChanged(
                session_id=updated.session_id,
                task_id=task_id,
                status_from=status_from.value,
                status_to=updated.status.value,
            )
        )
        logger.info(f"Task {task_id}: {status_from.value} -> {updated.status.value}")

        if new_status == TaskStatus.FAILED:
            classification = classify_executor_failure(error_message, error_kind)
            if classification.clears_resume_handle:
                await self.session_machine.clear_sdk_session(updated.session_id)

        await self.session_machine.on_task_status_changed(updated, status_from, context)
        return updated

    async def _estimate_cost(self, task_id: str, usage: TaskUsage, model: str | None) -> float | None:
        if not self.pricing_table:
            return None
        task = await self.tasks.find_one(task_id)
        if task is None:
            return None
        session = await self.session_machine.sessions.find_one(task.session_id)
        if session is None:
            return None
        return estimate_cost_usd(
            usage,
            tool=session.agentic_tool.value,
            model=model,
            pricing_table=self.pricing_table,
        )

    async def get_orphaned(self) -> list[Task]:
        """Every task in a non-terminal status."""
        return await self.tasks.find_orphaned()

    async def backfill_message_range(self, task_id: str, end_index: int) -> Task:
        """Record the final message index, also on terminal tasks."""
        updated = await self.tasks.update(
            task_id,
            lambda current: {
                "message_range": current.message_range.model_copy(
                    update={"end_index": max(end_index, current.message_range.start_index)}
                )
            },
        )
        if updated is None:
            raise TaskNotFoundError(task_id)
        return updated

    async def force_stop(self, task_id: str) -> Task | None:
        """Mark a task ``stopped`` regardless of transition rules.

        Only crash recovery uses this; the session state machine is not
        notified.
        """
        previous: list[TaskStatus] = []

        def change(current: Task) -> dict[str, Any] | None:
            if current.status.is_terminal:
                return None
            previous.append(current.status)
            now = datetime.now(timezone.utc)
            return {
                "status": TaskStatus.STOPPED,
                "completed_at": now,
                "message_range": current.message_range.model_copy(
                    update={"end_timestamp": now}
                ),
            }

        updated = await self.tasks.update(task_id, change)
        if updated is not None:
            self.bus.publish(
                TaskStatusChanged(
                    session_id=updated.session_id,
                    task_id=task_id,
                    status_from=previous[0].value,
                    status_to=TaskStatus.STOPPED.value,
                )
            )
        return updated
