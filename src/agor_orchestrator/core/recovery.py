"""Startup sweep that repairs state left behind by a crashed process."""

import logging

from agor_orchestrator.core.sessions import SessionStateMachine
from agor_orchestrator.core.tasks import TaskStateMachine
from agor_orchestrator.models.prompt import RecoveryReport
from agor_orchestrator.models.session import SessionStatus

logger = logging.getLogger(__name__)


class OrphanRecoverySweep:
    """Force-terminates orphaned tasks and idles stuck sessions.

    No executor survives a restart, so any task still non-terminal at boot
    is an orphan. Session state is re-derived from task state; queues are
    not drained here (the orchestrator resumes them after the sweep).
    """

    def __init__(self, task_machine: TaskStateMachine, session_machine: SessionStateMachine):
        self.task_machine = task_machine
        self.session_machine = session_machine

    async def run(self) -> RecoveryReport:
        report = RecoveryReport()

        # Pass 1: orphaned tasks
        owners: set[str] = set()
        for task in await self.task_machine.get_orphaned():
            stopped = await self.task_machine.force_stop(task.task_id)
            if stopped is not None:
                report.tasks_stopped.append(task.task_id)
                owners.add(task.session_id)
                logger.info(f"Stopped orphaned task {task.task_id} ({task.status.value})")

        # Pass 2: sessions stuck in running/stopping
        stuck = await self.session_machine.sessions.find_by_status(
            SessionStatus.RUNNING, SessionStatus.STOPPING
        )
        for session in stuck:
            if await self.session_machine.force_idle(session.session_id) is not None:
                report.sessions_reset.append(session.session_id)

        # Re-check owners of orphaned tasks whose status may have drifted
        for session_id in sorted(owners - set(report.sessions_reset)):
            if await self.session_machine.force_idle(session_id) is not None:
                report.sessions_reset.append(session_id)

        if report.tasks_stopped or report.sessions_reset:
            logger.warning(
                f"Recovery sweep stopped {len(report.tasks_stopped)} task(s) "
                f"and reset {len(report.sessions_reset)} session(s)"
            )
        else:
            logger.info("Recovery sweep found nothing to repair")
        return report
