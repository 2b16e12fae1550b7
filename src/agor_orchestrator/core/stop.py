"""Stop protocol: request, acknowledge, confirm.

Phase 1 moves the active task and its session to ``stopping``. Phase 2
asks the executor to halt over the bus and waits, bounded, first for an
acknowledgement and then for confirmation (``task_stopped_complete`` or the
executor process exiting). Phase 3 either finalizes the stop or reverts
both records to their pre-stop state.
"""

import itertools
import logging

from agor_orchestrator.core.events import EventBus, Subscription
from agor_orchestrator.core.exceptions import InvalidTaskTransitionError, RecordNotFoundError
from agor_orchestrator.core.sessions import SessionStateMachine
from agor_orchestrator.core.tasks import TaskStateMachine
from agor_orchestrator.models.events import (
    BusEvent,
    ExecutorExited,
    TaskStatusChanged,
    TaskStop,
    TaskStopAck,
    TaskStoppedComplete,
)
from agor_orchestrator.models.prompt import StopResult
from agor_orchestrator.models.session import SessionStatus
from agor_orchestrator.models.task import Task, TaskStatus
from agor_orchestrator.models.user import RequestContext

logger = logging.getLogger(__name__)


def _is_halted(event: BusEvent, task_id: str) -> bool:
    """Whether ``event`` shows the task's executor is no longer working on it."""
    if isinstance(event, (TaskStoppedComplete, ExecutorExited)):
        return event.task_id == task_id
    if isinstance(event, TaskStatusChanged):
        return event.task_id == task_id and TaskStatus(event.status_to).is_terminal
    return False


class StopProtocol:
    """Cancels the active task of a session without stranding the session."""

    def __init__(
        self,
        task_machine: TaskStateMachine,
        session_machine: SessionStateMachine,
        bus: EventBus,
        ack_timeout: float = 5.0,
        confirm_timeout: float = 30.0,
    ):
        self.task_machine = task_machine
        self.session_machine = session_machine
        self.bus = bus
        self.ack_timeout = ack_timeout
        self.confirm_timeout = confirm_timeout
        self._sequence = itertools.count(1)

    async def _find_active_task(self, session_id: str) -> Task | None:
        active = await self.task_machine.tasks.find_by_session(
            session_id,
            statuses=frozenset({TaskStatus.RUNNING, TaskStatus.AWAITING_PERMISSION}),
        )
        return active[-1] if active else None

    async def stop(self, session_id: str, context: RequestContext | None = None) -> StopResult:
        """Stop the session's active task.

        A session that is not running yields ``success=False`` without
        touching any record.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        session = await self.session_machine.sessions.get(session_id)
        if session.status != SessionStatus.RUNNING:
            return StopResult(
                success=False,
                message=f"Session is {session.status.value}, not running",
            )

        task = await self._find_active_task(session_id)
        if task is None:
            return StopResult(success=False, message="Session has no active task")

        with self.bus.subscribe(session_id) as subscription:
            return await self._stop_task(session_id, task, subscription, context)

    async def _stop_task(
        self,
        session_id: str,
        task: Task,
        subscription: Subscription,
        context: RequestContext | None,
    ) -> StopResult:
        task_id = task.task_id
        previous_status = task.status

        # Phase 1: request
        if await self.session_machine.mark_stopping(session_id) is None:
            return StopResult(
                success=False,
                message="Session is no longer running",
                task_id=task_id,
            )
        try:
            await self.task_machine.transition(task_id, TaskStatus.STOPPING, context=context)
        except (InvalidTaskTransitionError, RecordNotFoundError) as e:
            logger.info(f"Task {task_id} finished before stop could begin: {e.message}")
            await self.session_machine.mark_idle(
                session_id, from_statuses=(SessionStatus.STOPPING,), context=context
            )
            return StopResult(
                success=False,
                message="Task finished before it could be stopped",
                task_id=task_id,
            )

        # Phase 2: acknowledge, then confirm
        sequence = next(self._sequence)
        self.bus.publish(TaskStop(session_id=session_id, task_id=task_id, sequence=sequence))
        logger.info(f"Requested stop of task {task_id} (sequence {sequence})")

        confirmed = await self._await_halt(subscription, task_id, sequence)

        # Phase 3: resolve
        try:
            current = await self.task_machine.tasks.get(task_id)
        except RecordNotFoundError:
            logger.warning(f"Task {task_id} disappeared during stop")
            await self.session_machine.mark_idle(session_id, context=context)
            return StopResult(success=False, message="Task disappeared", task_id=task_id)

        if current.status.is_terminal:
            await self.session_machine.mark_idle(
                session_id, from_statuses=(SessionStatus.STOPPING,), context=context
            )
            return StopResult(
                success=current.status == TaskStatus.STOPPED,
                message=f"Task ended as {current.status.value}",
                task_id=task_id,
                sequence=sequence,
            )

        if confirmed:
            await self.task_machine.transition(task_id, TaskStatus.STOPPED, context=context)
            await self.session_machine.mark_idle(
                session_id, from_statuses=(SessionStatus.STOPPING,), context=context
            )
            logger.info(f"Task {task_id} stopped")
            return StopResult(
                success=True,
                message="Task stopped",
                task_id=task_id,
                sequence=sequence,
            )

        logger.warning(f"Stop of task {task_id} was not confirmed, reverting")
        try:
            await self.task_machine.transition(task_id, previous_status, context=context)
        except InvalidTaskTransitionError:
            # Finished on its own after the re-read
            await self.session_machine.mark_idle(
                session_id, from_statuses=(SessionStatus.STOPPING,), context=context
            )
            return StopResult(
                success=False,
                message="Task finished while the stop was pending",
                task_id=task_id,
                sequence=sequence,
            )
        await self.session_machine.revert_to_running(session_id)
        return StopResult(
            success=False,
            message="Executor did not confirm the stop in time",
            task_id=task_id,
            sequence=sequence,
        )

    async def _await_halt(self, subscription: Subscription, task_id: str, sequence: int) -> bool:
        def acknowledges(event: BusEvent) -> bool:
            if isinstance(event, TaskStopAck):
                return event.task_id == task_id and event.sequence == sequence
            return _is_halted(event, task_id)

        first = await subscription.wait_for(acknowledges, timeout=self.ack_timeout)
        if first is None:
            logger.warning(f"No stop acknowledgement for task {task_id}")
            return False
        if _is_halted(first, task_id):
            return True

        halted = await subscription.wait_for(
            lambda event: _is_halted(event, task_id),
            timeout=self.confirm_timeout,
        )
        if halted is None:
            logger.warning(f"Task {task_id} acknowledged stop but never confirmed")
            return False
        return True
