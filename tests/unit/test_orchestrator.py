"""Tests for the orchestrator facade: prompt submission, executor callbacks."""

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from agor_orchestrator.config import Settings
from agor_orchestrator.core.exceptions import (
    ExecutorNotFoundError,
    InvalidTokenError,
    SessionNotFoundError,
    TokenScopeError,
    WorktreeNotFoundError,
)
from agor_orchestrator.core.orchestrator import AgorOrchestrator
from agor_orchestrator.models.events import ExecutorExited, TaskStopAck
from agor_orchestrator.models.prompt import TaskStatusUpdate
from agor_orchestrator.models.session import Session, SessionConfig, SessionStatus
from agor_orchestrator.models.task import TaskStatus, TaskUsage
from agor_orchestrator.models.user import RequestContext, Worktree

from tests.fakes import FakeLauncher


class TestSessions:
    """Tests for session creation and lookup."""

    @pytest.mark.asyncio
    async def test_create_session_is_idle(
        self, orchestrator: AgorOrchestrator, alice: RequestContext
    ) -> None:
        session = await orchestrator.create_session(
            SessionConfig(worktree_id="wt_main", agentic_tool="codex"), alice
        )

        assert session.session_id.startswith("sess_")
        assert session.status == SessionStatus.IDLE
        assert session.ready_for_prompt is True
        assert session.created_by == "alice"
        assert session.permission_mode == "auto"
        assert session.git_state.base_sha == "unknown"

        sessions = await orchestrator.list_sessions()
        assert [s.session_id for s in sessions] == [session.session_id]

    @pytest.mark.asyncio
    async def test_create_session_requires_worktree(
        self, orchestrator: AgorOrchestrator, alice: RequestContext
    ) -> None:
        with pytest.raises(WorktreeNotFoundError):
            await orchestrator.create_session(SessionConfig(worktree_id="wt_missing"), alice)

    @pytest.mark.asyncio
    async def test_unknown_session(self, orchestrator: AgorOrchestrator) -> None:
        with pytest.raises(SessionNotFoundError):
            await orchestrator.get_session("sess_missing")


class TestSubmitPrompt:
    """Tests for running prompts."""

    @pytest.mark.asyncio
    async def test_prompt_runs_and_exit_fallback_idles(
        self,
        orchestrator: AgorOrchestrator,
        fake_launcher: FakeLauncher,
        session: Session,
        alice: RequestContext,
        worktree_path: Path,
    ) -> None:
        """Clean executor exit without a status report still frees the session."""
        result = await orchestrator.submit_prompt(session.session_id, "fix bug", alice)

        assert result.queued is False
        assert result.status == "running"
        assert result.task_id is not None

        running = await orchestrator.get_session(session.session_id)
        assert running.status == SessionStatus.RUNNING
        assert running.ready_for_prompt is False

        request = fake_launcher.request_for(result.task_id)
        assert request.payload.command == "prompt"
        assert request.payload.daemon_url == "http://localhost:3031"
        assert request.payload.params.prompt == "fix bug"
        assert request.payload.params.tool == "claude-code"
        assert request.payload.params.permission_mode == "acceptEdits"
        assert request.payload.params.cwd == str(worktree_path)
        assert request.env == {"ANTHROPIC_API_KEY": "sk-alice"}

        await fake_launcher.finish(result.task_id, exit_code=0)

        idle = await orchestrator.get_session(session.session_id)
        assert idle.status == SessionStatus.IDLE
        assert idle.ready_for_prompt is True
        task = await orchestrator.get_task(result.task_id)
        assert task.status == TaskStatus.COMPLETED
        assert orchestrator.tokens.active_count == 0

    @pytest.mark.asyncio
    async def test_nonzero_exit_leaves_task_active(
        self,
        orchestrator: AgorOrchestrator,
        fake_launcher: FakeLauncher,
        session: Session,
        alice: RequestContext,
    ) -> None:
        result = await orchestrator.submit_prompt(session.session_id, "fix bug", alice)

        with orchestrator.bus.subscribe(session.session_id) as subscription:
            await fake_launcher.finish(result.task_id, exit_code=137)
            exited = await subscription.get()

        assert isinstance(exited, ExecutorExited)
        assert exited.exit_code == 137
        task = await orchestrator.get_task(result.task_id)
        assert task.status == TaskStatus.RUNNING
        stored = await orchestrator.get_session(session.session_id)
        assert stored.status == SessionStatus.RUNNING

    @pytest.mark.asyncio
    async def test_concurrent_prompts_create_one_task(
        self,
        orchestrator: AgorOrchestrator,
        fake_launcher: FakeLauncher,
        session: Session,
        alice: RequestContext,
        bob: RequestContext,
    ) -> None:
        """Two prompts racing on an idle session: one runs, the other queues."""
        results = await asyncio.gather(
            orchestrator.submit_prompt(session.session_id, "fix bug", alice),
            orchestrator.submit_prompt(session.session_id, "add tests", bob),
        )

        assert sorted(result.queued for result in results) == [False, True]
        tasks = await orchestrator.list_tasks(session.session_id)
        assert len(tasks) == 1
        assert len(fake_launcher.requests) == 1
        queued = await orchestrator.list_queue(session.session_id)
        assert len(queued) == 1
        assert {tasks[0].full_prompt, queued[0].prompt} == {"fix bug", "add tests"}

    @pytest.mark.asyncio
    async def test_permission_mode_override(
        self,
        orchestrator: AgorOrchestrator,
        fake_launcher: FakeLauncher,
        session: Session,
        alice: RequestContext,
    ) -> None:
        result = await orchestrator.submit_prompt(
            session.session_id, "fix bug", alice, permission_mode="plan"
        )

        request = fake_launcher.request_for(result.task_id)
        assert request.payload.params.permission_mode == "plan"

    @pytest.mark.asyncio
    async def test_spawn_failure_fails_task(
        self,
        test_settings: Settings,
        worktree_path: Path,
        alice: RequestContext,
    ) -> None:
        launcher = FakeLauncher(fail_with=ExecutorNotFoundError(["/opt/agor-executor"]))
        orch = AgorOrchestrator(config=test_settings, launcher=launcher)
        await orch.start()
        try:
            await orch.worktrees.create(Worktree(worktree_id="wt_main", path=str(worktree_path)))
            session = await orch.create_session(SessionConfig(worktree_id="wt_main"), alice)

            result = await orch.submit_prompt(session.session_id, "fix bug", alice)

            assert result.task_id is not None
            task = await orch.get_task(result.task_id)
            assert task.status == TaskStatus.FAILED
            assert task.error_message is not None
            assert "Executor binary not found" in task.error_message

            stored = await orch.get_session(session.session_id)
            assert stored.status == SessionStatus.IDLE
            assert stored.ready_for_prompt is True
            assert orch.tokens.active_count == 0
        finally:
            await orch.shutdown()

    @pytest.mark.asyncio
    async def test_stale_resume_handle_cleared_before_task(
        self,
        orchestrator: AgorOrchestrator,
        fake_launcher: FakeLauncher,
        alice: RequestContext,
    ) -> None:
        stale = Session(
            session_id="sess_stale",
            worktree_id="wt_main",
            created_by="alice",
            sdk_session_id="sdk-old",
            last_updated=datetime.now(timezone.utc) - timedelta(days=2),
        )
        await orchestrator.sessions.create(stale)

        await orchestrator.submit_prompt("sess_stale", "continue", alice)

        stored = await orchestrator.get_session("sess_stale")
        assert stored.sdk_session_id is None
        assert stored.status == SessionStatus.RUNNING

    @pytest.mark.asyncio
    async def test_recent_resume_handle_kept(
        self,
        orchestrator: AgorOrchestrator,
        session: Session,
        alice: RequestContext,
    ) -> None:
        await orchestrator.session_machine.record_sdk_session(session.session_id, "sdk-live")

        await orchestrator.submit_prompt(session.session_id, "continue", alice)

        stored = await orchestrator.get_session(session.session_id)
        assert stored.sdk_session_id == "sdk-live"


class TestExecutorCallbacks:
    """Tests for status reports and events coming from executors."""

    @pytest.mark.asyncio
    async def test_report_completion(
        self,
        orchestrator: AgorOrchestrator,
        fake_launcher: FakeLauncher,
        session: Session,
        alice: RequestContext,
    ) -> None:
        result = await orchestrator.submit_prompt(session.session_id, "fix bug", alice)
        token = fake_launcher.request_for(result.task_id).payload.session_token
        issued = orchestrator.authenticate_executor(token, session.session_id)

        task = await orchestrator.report_task_status(
            issued,
            result.task_id,
            TaskStatusUpdate(
                status=TaskStatus.COMPLETED,
                message_end_index=4,
                usage=TaskUsage(input_tokens=2000, output_tokens=1000),
                model="claude-sonnet",
                tool_use_count=3,
                sdk_session_id="sdk-new",
                message_count=5,
            ),
        )

        assert task.status == TaskStatus.COMPLETED
        assert task.message_range.end_index == 4
        assert task.tool_use_count == 3
        assert task.git_state.sha_at_end == "unknown"
        assert task.usage is not None
        assert task.usage.estimated_cost_usd == pytest.approx(0.021)

        stored = await orchestrator.get_session(session.session_id)
        assert stored.sdk_session_id == "sdk-new"
        assert stored.message_count == 5
        assert stored.status == SessionStatus.IDLE

    @pytest.mark.asyncio
    async def test_late_message_index_is_backfilled(
        self,
        orchestrator: AgorOrchestrator,
        fake_launcher: FakeLauncher,
        session: Session,
        alice: RequestContext,
    ) -> None:
        result = await orchestrator.submit_prompt(session.session_id, "fix bug", alice)
        issued = orchestrator.authenticate_executor(
            fake_launcher.request_for(result.task_id).payload.session_token
        )
        await orchestrator.report_task_status(
            issued, result.task_id, TaskStatusUpdate(status=TaskStatus.COMPLETED)
        )

        task = await orchestrator.report_task_status(
            issued,
            result.task_id,
            TaskStatusUpdate(status=TaskStatus.COMPLETED, message_end_index=9),
        )

        assert task.status == TaskStatus.COMPLETED
        assert task.message_range.end_index == 9

    @pytest.mark.asyncio
    async def test_report_for_other_session_rejected(
        self,
        orchestrator: AgorOrchestrator,
        fake_launcher: FakeLauncher,
        session: Session,
        alice: RequestContext,
    ) -> None:
        other = await orchestrator.create_session(SessionConfig(worktree_id="wt_main"), alice)
        mine = await orchestrator.submit_prompt(session.session_id, "fix bug", alice)
        theirs = await orchestrator.submit_prompt(other.session_id, "add docs", alice)
        issued = orchestrator.authenticate_executor(
            fake_launcher.request_for(mine.task_id).payload.session_token
        )

        with pytest.raises(TokenScopeError):
            await orchestrator.report_task_status(
                issued, theirs.task_id, TaskStatusUpdate(status=TaskStatus.COMPLETED)
            )
        with pytest.raises(TokenScopeError):
            orchestrator.publish_executor_event(
                issued,
                TaskStopAck(session_id=other.session_id, task_id=theirs.task_id, sequence=1),
            )

    @pytest.mark.asyncio
    async def test_token_revoked_after_exit(
        self,
        orchestrator: AgorOrchestrator,
        fake_launcher: FakeLauncher,
        session: Session,
        alice: RequestContext,
    ) -> None:
        result = await orchestrator.submit_prompt(session.session_id, "fix bug", alice)
        token = fake_launcher.request_for(result.task_id).payload.session_token

        await fake_launcher.finish(result.task_id, exit_code=0)

        with pytest.raises(InvalidTokenError):
            orchestrator.authenticate_executor(token)
