"""Session state machine: idle <-> running -> stopping -> idle.

Every write sets ``status`` and ``ready_for_prompt`` in the same patch, and
every write that leaves a session ``idle`` and ready notifies the idle
listener (the queue coordinator). That notification is the only thing that
drains a session queue.
"""

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from agor_orchestrator.core.events import EventBus
from agor_orchestrator.core.exceptions import RecordNotFoundError
from agor_orchestrator.models.events import SessionUpdated
from agor_orchestrator.models.session import Session, SessionStatus
from agor_orchestrator.models.task import Task, TaskStatus
from agor_orchestrator.models.user import RequestContext
from agor_orchestrator.persistence.sessions import SessionRepository

if TYPE_CHECKING:
    from agor_orchestrator.core.tasks import TaskStateMachine

logger = logging.getLogger(__name__)

IdleListener = Callable[[str, RequestContext], None]
SessionGuard = Callable[[Session], bool]


class SessionStateMachine:
    """Applies session status transitions against the session repository."""

    def __init__(self, sessions: SessionRepository, bus: EventBus):
        self.sessions = sessions
        self.bus = bus
        self._idle_listener: IdleListener | None = None
        self._task_machine: "TaskStateMachine | None" = None

    def set_idle_listener(self, listener: IdleListener | None) -> None:
        self._idle_listener = listener

    def bind_task_machine(self, task_machine: "TaskStateMachine") -> None:
        self._task_machine = task_machine

    async def _write_status(
        self,
        session_id: str,
        status: SessionStatus,
        guard: SessionGuard | None = None,
        extra: Callable[[Session], dict[str, Any]] | None = None,
        context: RequestContext | None = None,
        trigger_queue: bool = True,
    ) -> Session | None:
        """Write status and capacity together.

        Args:
            session_id: Session to update
            status: New status; ``ready_for_prompt`` is derived from it
            guard: Compare-and-set precondition on the stored session
            extra: Builds additional fields written in the same patch
            context: Identity passed to the idle listener
            trigger_queue: Notify the idle listener after an idle write

        Returns:
            The updated session, or None if the guard declined
        """

        def change(current: Session) -> dict[str, Any] | None:
            if guard is not None and not guard(current):
                return None
            fields: dict[str, Any] = {
                "status": status,
                "ready_for_prompt": status == SessionStatus.IDLE,
            }
            if extra is not None:
                fields.update(extra(current))
            return fields

        updated = await self.sessions.update(session_id, change)
        if updated is None:
            return None

        self.bus.publish(
            SessionUpdated(
                session_id=session_id,
                status=updated.status.value,
                ready_for_prompt=updated.ready_for_prompt,
            )
        )
        logger.debug(f"Session {session_id} -> {updated.status.value}")

        if (
            trigger_queue
            and updated.status == SessionStatus.IDLE
            and updated.ready_for_prompt
            and self._idle_listener is not None
        ):
            self._idle_listener(session_id, context or RequestContext())
        return updated

    async def _write_or_skip(self, session_id: str, **kwargs: Any) -> Session | None:
        try:
            return await self._write_status(session_id, **kwargs)
        except RecordNotFoundError:
            logger.warning(f"Session {session_id} disappeared, skipping status write")
            return None

    async def mark_running(self, session_id: str, task_id: str) -> Session | None:
        """Claim an idle session for a new task.

        Raises:
            SessionNotFoundError: If the session does not exist

        Returns:
            The updated session, or None if the session was not idle
        """

        def is_free(session: Session) -> bool:
            return session.status == SessionStatus.IDLE and session.ready_for_prompt

        return await self._write_status(
            session_id,
            SessionStatus.RUNNING,
            guard=is_free,
            extra=lambda current: {"tasks": [*current.tasks, task_id]},
        )

    async def mark_idle(
        self,
        session_id: str,
        from_statuses: tuple[SessionStatus, ...] | None = None,
        context: RequestContext | None = None,
    ) -> Session | None:
        """Idle the session (optionally only from given statuses)."""

        def in_allowed_status(session: Session) -> bool:
            return from_statuses is None or session.status in from_statuses

        return await self._write_or_skip(
            session_id, status=SessionStatus.IDLE, guard=in_allowed_status, context=context
        )

    async def force_idle(self, session_id: str) -> Session | None:
        """Idle a session without draining its queue.

        Used by crash recovery; queues are resumed once the sweep is done.
        """
        return await self._write_or_skip(
            session_id,
            status=SessionStatus.IDLE,
            guard=lambda session: not (
                session.status == SessionStatus.IDLE and session.ready_for_prompt
            ),
            trigger_queue=False,
        )

    async def mark_stopping(self, session_id: str) -> Session | None:
        """running -> stopping. Returns None if the session was not running."""
        return await self._write_or_skip(
            session_id,
            status=SessionStatus.STOPPING,
            guard=lambda session: session.status == SessionStatus.RUNNING,
        )

    async def revert_to_running(self, session_id: str) -> Session | None:
        """stopping -> running, after a stop that was not confirmed."""
        return await self._write_or_skip(
            session_id,
            status=SessionStatus.RUNNING,
            guard=lambda session: session.status == SessionStatus.STOPPING,
        )

    async def on_task_status_changed(
        self,
        task: Task,
        previous: TaskStatus | None,
        context: RequestContext | None = None,
    ) -> Session | None:
        """React to a task transition.

        A terminal task idles its running session. A session in
        ``stopping`` is left alone: the stop protocol resolves it.
        """
        if not task.status.is_terminal:
            return None

        session = await self.sessions.find_one(task.session_id)
        if session is None:
            logger.warning(f"Session {task.session_id} of task {task.task_id} not found")
            return None
        if session.status == SessionStatus.STOPPING:
            logger.debug(
                f"Task {task.task_id} finished while session {session.session_id} is stopping"
            )
            return None

        return await self.mark_idle(
            task.session_id, from_statuses=(SessionStatus.RUNNING,), context=context
        )

    async def apply_exit_fallback(
        self,
        session_id: str,
        task_id: str,
        exit_code: int | None,
    ) -> Session | None:
        """Repair state after an executor exited cleanly.

        Applies only while the exiting task is the session's active task:
        the latest task of a ``running`` session that is itself still
        non-terminal. It is then completed, which idles the session. A task
        that already reported a terminal status was handled by that
        transition, and the session may have moved on to a newer task.
        """
        if exit_code != 0:
            return None

        session = await self.sessions.find_one(session_id)
        if session is None or session.status != SessionStatus.RUNNING:
            return None
        if not session.tasks or session.tasks[-1] != task_id:
            logger.debug(f"Task {task_id} is no longer active in session {session_id}")
            return None
        if self._task_machine is None:
            return None

        task = await self._task_machine.tasks.find_one(task_id)
        if task is None or task.status.is_terminal:
            return None

        logger.info(f"Executor for task {task_id} exited 0 without finishing it")
        await self._task_machine.transition(task_id, TaskStatus.COMPLETED)
        idled = await self.mark_idle(session_id, from_statuses=(SessionStatus.RUNNING,))
        return idled or await self.sessions.find_one(session_id)

    async def _patch_or_skip(self, session_id: str, fields: dict[str, Any]) -> Session | None:
        try:
            return await self.sessions.patch(session_id, fields)
        except RecordNotFoundError:
            logger.warning(f"Session {session_id} disappeared, skipping update")
            return None

    async def clear_sdk_session(self, session_id: str) -> Session | None:
        """Drop the SDK resume handle so the next prompt starts fresh."""
        logger.info(f"Clearing SDK resume handle of session {session_id}")
        return await self._patch_or_skip(session_id, {"sdk_session_id": None})

    async def record_sdk_session(self, session_id: str, sdk_session_id: str) -> Session | None:
        return await self._patch_or_skip(session_id, {"sdk_session_id": sdk_session_id})

    async def bump_message_count(self, session_id: str, message_count: int) -> Session | None:
        """Raise ``message_count`` (never lowers it)."""
        try:
            return await self.sessions.update(
                session_id,
                lambda current: (
                    {"message_count": message_count}
                    if message_count > current.message_count
                    else None
                ),
            )
        except RecordNotFoundError:
            logger.warning(f"Session {session_id} disappeared, skipping message count")
            return None
