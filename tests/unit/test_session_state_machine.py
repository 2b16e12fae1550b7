"""Tests for the session state machine."""

import pytest

from agor_orchestrator.core.orchestrator import AgorOrchestrator
from agor_orchestrator.models.events import SessionUpdated
from agor_orchestrator.models.session import Session, SessionStatus
from agor_orchestrator.models.task import TaskStatus
from agor_orchestrator.models.user import RequestContext


class TestStatusWrites:
    """Status and capacity always move together."""

    @pytest.mark.asyncio
    async def test_every_update_pairs_status_and_capacity(
        self, orchestrator: AgorOrchestrator, session: Session
    ) -> None:
        machine = orchestrator.session_machine
        with orchestrator.bus.subscribe(session.session_id) as subscription:
            task = await orchestrator.task_machine.create(
                session.session_id, "fix bug", created_by="alice"
            )
            await orchestrator.task_machine.transition(task.task_id, TaskStatus.STOPPING)
            await machine.mark_stopping(session.session_id)
            await machine.revert_to_running(session.session_id)
            await orchestrator.task_machine.transition(task.task_id, TaskStatus.STOPPED)

            updates: list[SessionUpdated] = []
            while (event := await subscription.get()) is not None:
                if isinstance(event, SessionUpdated):
                    updates.append(event)

        assert [update.status for update in updates] == [
            "running",
            "stopping",
            "running",
            "idle",
        ]
        for update in updates:
            assert update.ready_for_prompt is (update.status == "idle")

        stored = await orchestrator.sessions.get(session.session_id)
        assert stored.status == SessionStatus.IDLE
        assert stored.ready_for_prompt is True

    @pytest.mark.asyncio
    async def test_mark_running_requires_idle(
        self, orchestrator: AgorOrchestrator, session: Session
    ) -> None:
        machine = orchestrator.session_machine

        assert await machine.mark_running(session.session_id, "task_a") is not None
        assert await machine.mark_running(session.session_id, "task_b") is None

        stored = await orchestrator.sessions.get(session.session_id)
        assert stored.tasks == ["task_a"]

    @pytest.mark.asyncio
    async def test_mark_stopping_only_from_running(
        self, orchestrator: AgorOrchestrator, session: Session
    ) -> None:
        assert await orchestrator.session_machine.mark_stopping(session.session_id) is None

        stored = await orchestrator.sessions.get(session.session_id)
        assert stored.status == SessionStatus.IDLE

    @pytest.mark.asyncio
    async def test_missing_session_is_skipped(self, orchestrator: AgorOrchestrator) -> None:
        assert await orchestrator.session_machine.mark_idle("sess_gone") is None
        assert await orchestrator.session_machine.clear_sdk_session("sess_gone") is None


class TestIdleListener:
    """The idle listener fires only on idle-and-ready writes."""

    @pytest.mark.asyncio
    async def test_listener_called_on_idle(
        self, orchestrator: AgorOrchestrator, session: Session
    ) -> None:
        calls: list[tuple[str, RequestContext]] = []
        orchestrator.session_machine.set_idle_listener(
            lambda session_id, context: calls.append((session_id, context))
        )

        await orchestrator.session_machine.mark_running(session.session_id, "task_a")
        assert calls == []

        await orchestrator.session_machine.mark_idle(
            session.session_id, context=RequestContext(user_id="alice")
        )
        assert calls == [(session.session_id, RequestContext(user_id="alice"))]

    @pytest.mark.asyncio
    async def test_force_idle_does_not_notify(
        self, orchestrator: AgorOrchestrator, session: Session
    ) -> None:
        calls: list[str] = []
        orchestrator.session_machine.set_idle_listener(
            lambda session_id, context: calls.append(session_id)
        )

        await orchestrator.session_machine.mark_running(session.session_id, "task_a")
        reset = await orchestrator.session_machine.force_idle(session.session_id)

        assert reset is not None
        assert reset.status == SessionStatus.IDLE
        assert reset.ready_for_prompt is True
        assert calls == []


class TestTaskDrivenTransitions:
    """Reactions to task status changes."""

    @pytest.mark.asyncio
    async def test_stopping_session_left_to_stop_protocol(
        self, orchestrator: AgorOrchestrator, session: Session
    ) -> None:
        task = await orchestrator.task_machine.create(
            session.session_id, "fix bug", created_by="alice"
        )
        await orchestrator.session_machine.mark_stopping(session.session_id)

        await orchestrator.task_machine.transition(task.task_id, TaskStatus.COMPLETED)

        stored = await orchestrator.sessions.get(session.session_id)
        assert stored.status == SessionStatus.STOPPING
        assert stored.ready_for_prompt is False

    @pytest.mark.asyncio
    async def test_exit_fallback_completes_task(
        self, orchestrator: AgorOrchestrator, session: Session
    ) -> None:
        task = await orchestrator.task_machine.create(
            session.session_id, "fix bug", created_by="alice"
        )

        idled = await orchestrator.session_machine.apply_exit_fallback(
            session.session_id, task.task_id, 0
        )

        assert idled is not None
        assert idled.status == SessionStatus.IDLE
        assert idled.ready_for_prompt is True
        stored_task = await orchestrator.tasks.get(task.task_id)
        assert stored_task.status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_exit_fallback_ignores_failed_exit(
        self, orchestrator: AgorOrchestrator, session: Session
    ) -> None:
        task = await orchestrator.task_machine.create(
            session.session_id, "fix bug", created_by="alice"
        )

        result = await orchestrator.session_machine.apply_exit_fallback(
            session.session_id, task.task_id, 1
        )

        assert result is None
        stored = await orchestrator.sessions.get(session.session_id)
        assert stored.status == SessionStatus.RUNNING

    @pytest.mark.asyncio
    async def test_exit_fallback_ignores_superseded_task(
        self, orchestrator: AgorOrchestrator, session: Session
    ) -> None:
        machine = orchestrator.task_machine
        finished = await machine.create(session.session_id, "one", created_by="alice")
        await machine.transition(finished.task_id, TaskStatus.COMPLETED)
        current = await machine.create(session.session_id, "two", created_by="alice")

        result = await orchestrator.session_machine.apply_exit_fallback(
            session.session_id, finished.task_id, 0
        )

        assert result is None
        stored = await orchestrator.sessions.get(session.session_id)
        assert stored.status == SessionStatus.RUNNING
        assert stored.ready_for_prompt is False
        assert (await orchestrator.tasks.get(current.task_id)).status == TaskStatus.RUNNING

    @pytest.mark.asyncio
    async def test_message_count_only_grows(
        self, orchestrator: AgorOrchestrator, session: Session
    ) -> None:
        machine = orchestrator.session_machine

        await machine.bump_message_count(session.session_id, 8)
        await machine.bump_message_count(session.session_id, 3)

        stored = await orchestrator.sessions.get(session.session_id)
        assert stored.message_count == 8
