"""Tests for the startup orphan recovery sweep."""

from datetime import datetime, timezone

import pytest

from agor_orchestrator.config import Settings
from agor_orchestrator.core.orchestrator import AgorOrchestrator
from agor_orchestrator.models.queue import QueuedMessageMetadata
from agor_orchestrator.models.session import Session, SessionStatus
from agor_orchestrator.models.task import MessageRange, Task, TaskStatus
from agor_orchestrator.models.user import Worktree

from tests.fakes import FakeLauncher


def crashed_session(session_id: str, status: SessionStatus, tasks: list[str]) -> Session:
    return Session(
        session_id=session_id,
        worktree_id="wt_main",
        created_by="alice",
        status=status,
        ready_for_prompt=False,
        tasks=tasks,
    )


def crashed_task(task_id: str, session_id: str, status: TaskStatus) -> Task:
    return Task(
        task_id=task_id,
        session_id=session_id,
        created_by="alice",
        full_prompt="fix bug",
        description="fix bug",
        status=status,
        message_range=MessageRange(
            start_index=0, end_index=0, start_timestamp=datetime.now(timezone.utc)
        ),
    )


@pytest.fixture
def crashed_orchestrator(test_settings: Settings) -> AgorOrchestrator:
    """Orchestrator over a data directory left behind by a crash, not yet started."""
    return AgorOrchestrator(config=test_settings, launcher=FakeLauncher())


class TestRecoverySweep:
    """Tests for repairing crash leftovers."""

    @pytest.mark.asyncio
    async def test_running_task_and_session_repaired(
        self, crashed_orchestrator: AgorOrchestrator
    ) -> None:
        orch = crashed_orchestrator
        await orch.sessions.create(crashed_session("sess_a", SessionStatus.RUNNING, ["task_a"]))
        await orch.tasks.create(crashed_task("task_a", "sess_a", TaskStatus.RUNNING))

        report = await orch.start()
        try:
            assert report.tasks_stopped == ["task_a"]
            assert report.sessions_reset == ["sess_a"]
            assert orch.last_recovery is report

            task = await orch.get_task("task_a")
            assert task.status == TaskStatus.STOPPED
            assert task.completed_at is not None

            session = await orch.get_session("sess_a")
            assert session.status == SessionStatus.IDLE
            assert session.ready_for_prompt is True
        finally:
            await orch.shutdown()

    @pytest.mark.asyncio
    async def test_every_non_terminal_status_is_orphaned(
        self, crashed_orchestrator: AgorOrchestrator
    ) -> None:
        orch = crashed_orchestrator
        await orch.sessions.create(crashed_session("sess_a", SessionStatus.STOPPING, ["t1"]))
        await orch.sessions.create(crashed_session("sess_b", SessionStatus.RUNNING, ["t2"]))
        await orch.tasks.create(crashed_task("t1", "sess_a", TaskStatus.STOPPING))
        await orch.tasks.create(crashed_task("t2", "sess_b", TaskStatus.AWAITING_PERMISSION))
        await orch.tasks.create(crashed_task("t0", "sess_b", TaskStatus.COMPLETED))

        report = await orch.start()
        try:
            assert sorted(report.tasks_stopped) == ["t1", "t2"]
            assert sorted(report.sessions_reset) == ["sess_a", "sess_b"]
            assert (await orch.get_task("t0")).status == TaskStatus.COMPLETED
        finally:
            await orch.shutdown()

    @pytest.mark.asyncio
    async def test_idle_session_with_orphan_made_ready(
        self, crashed_orchestrator: AgorOrchestrator
    ) -> None:
        orch = crashed_orchestrator
        stuck = crashed_session("sess_a", SessionStatus.IDLE, ["task_a"])
        await orch.sessions.create(stuck)
        await orch.tasks.create(crashed_task("task_a", "sess_a", TaskStatus.RUNNING))

        report = await orch.start()
        try:
            assert report.sessions_reset == ["sess_a"]
            session = await orch.get_session("sess_a")
            assert session.ready_for_prompt is True
        finally:
            await orch.shutdown()

    @pytest.mark.asyncio
    async def test_clean_state_reports_nothing(
        self, crashed_orchestrator: AgorOrchestrator
    ) -> None:
        report = await crashed_orchestrator.start()
        try:
            assert report.tasks_stopped == []
            assert report.sessions_reset == []
            assert report.to_summary() == {"tasks_stopped": 0, "sessions_reset": 0}
        finally:
            await crashed_orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_queue_resumes_after_sweep(
        self, crashed_orchestrator: AgorOrchestrator, worktree_path
    ) -> None:
        orch = crashed_orchestrator
        launcher = orch.launcher
        assert isinstance(launcher, FakeLauncher)
        await orch.worktrees.create(Worktree(worktree_id="wt_main", path=str(worktree_path)))
        await orch.sessions.create(crashed_session("sess_a", SessionStatus.RUNNING, ["task_a"]))
        await orch.tasks.create(crashed_task("task_a", "sess_a", TaskStatus.RUNNING))
        await orch.queued_messages.enqueue(
            message_id="msg_pending",
            session_id="sess_a",
            prompt="add tests",
            metadata=QueuedMessageMetadata(queued_by_user_id="alice"),
        )

        await orch.start()
        try:
            await orch.pool.drain()
            assert launcher.prompts == ["add tests"]
            assert await orch.list_queue("sess_a") == []
            session = await orch.get_session("sess_a")
            assert session.status == SessionStatus.RUNNING
            assert len(session.tasks) == 2
        finally:
            await orch.shutdown()
