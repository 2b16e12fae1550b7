"""Integration tests for the executor callback endpoints."""

import asyncio

import pytest
from httpx import AsyncClient

from agor_orchestrator.core.orchestrator import AgorOrchestrator
from agor_orchestrator.models.events import TaskStop
from agor_orchestrator.models.session import Session

from tests.fakes import FakeLauncher


async def start_task(client: AsyncClient, fake_launcher: FakeLauncher, session: Session) -> tuple[str, dict[str, str]]:
    response = await client.post(
        f"/api/v1/sessions/{session.session_id}/prompt",
        json={"prompt": "fix bug"},
        headers={"X-Agor-User": "alice"},
    )
    task_id = response.json()["task_id"]
    token = fake_launcher.request_for(task_id).payload.session_token
    return task_id, {"Authorization": f"Bearer {token}"}


class TestTaskReports:
    """Tests for PATCH /executor/tasks/{task_id}."""

    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient, session: Session) -> None:
        response = await client.patch(
            "/api/v1/executor/tasks/task_x", json={"status": "completed"}
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "TOKEN_INVALID"

    @pytest.mark.asyncio
    async def test_unknown_token(self, client: AsyncClient, session: Session) -> None:
        response = await client.patch(
            "/api/v1/executor/tasks/task_x",
            json={"status": "completed"},
            headers={"Authorization": "Bearer forged"},
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_permission_then_completion(
        self,
        client: AsyncClient,
        fake_launcher: FakeLauncher,
        session: Session,
    ) -> None:
        task_id, auth = await start_task(client, fake_launcher, session)
        url = f"/api/v1/executor/tasks/{task_id}"

        waiting = await client.patch(
            url,
            json={
                "status": "awaiting_permission",
                "permission_request": {"request_id": "perm_1", "tool_name": "Bash"},
            },
            headers=auth,
        )
        assert waiting.status_code == 200
        assert waiting.json()["permission_request"]["tool_name"] == "Bash"

        resumed = await client.patch(url, json={"status": "running"}, headers=auth)
        assert resumed.json()["permission_request"] is None

        done = await client.patch(
            url,
            json={
                "status": "completed",
                "message_end_index": 3,
                "usage": {"input_tokens": 100, "output_tokens": 50},
                "model": "claude-sonnet",
            },
            headers=auth,
        )
        assert done.status_code == 200
        assert done.json()["status"] == "completed"
        assert done.json()["usage"]["estimated_cost_usd"] is not None

        session_now = await client.get(f"/api/v1/sessions/{session.session_id}")
        assert session_now.json()["status"] == "idle"
        assert session_now.json()["ready_for_prompt"] is True

    @pytest.mark.asyncio
    async def test_reopening_terminal_task_conflicts(
        self,
        client: AsyncClient,
        fake_launcher: FakeLauncher,
        session: Session,
    ) -> None:
        task_id, auth = await start_task(client, fake_launcher, session)
        url = f"/api/v1/executor/tasks/{task_id}"
        await client.patch(url, json={"status": "failed", "error_message": "boom"}, headers=auth)

        response = await client.patch(url, json={"status": "running"}, headers=auth)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INVALID_TASK_TRANSITION"

    @pytest.mark.asyncio
    async def test_other_session_task_forbidden(
        self,
        client: AsyncClient,
        fake_launcher: FakeLauncher,
        orchestrator: AgorOrchestrator,
        session: Session,
    ) -> None:
        _, auth = await start_task(client, fake_launcher, session)
        other = await client.post(
            "/api/v1/sessions", json={"worktree_id": "wt_main"}, headers={"X-Agor-User": "bob"}
        )
        other_task, _ = await start_task(
            client, fake_launcher, await orchestrator.get_session(other.json()["session_id"])
        )

        response = await client.patch(
            f"/api/v1/executor/tasks/{other_task}", json={"status": "completed"}, headers=auth
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "TOKEN_SCOPE"


class TestExecutorEvents:
    """Tests for POST /executor/events."""

    @pytest.mark.asyncio
    async def test_stop_handshake_over_http(
        self,
        client: AsyncClient,
        fake_launcher: FakeLauncher,
        orchestrator: AgorOrchestrator,
        session: Session,
    ) -> None:
        task_id, auth = await start_task(client, fake_launcher, session)

        async def executor_side() -> None:
            with orchestrator.bus.subscribe(session.session_id) as subscription:
                stop = await subscription.wait_for(lambda e: isinstance(e, TaskStop), timeout=2.0)
                assert isinstance(stop, TaskStop)
                for event_type in ("task_stop_ack", "task_stopped_complete"):
                    response = await client.post(
                        "/api/v1/executor/events",
                        json={
                            "type": event_type,
                            "session_id": session.session_id,
                            "task_id": task_id,
                            "sequence": stop.sequence,
                        },
                        headers=auth,
                    )
                    assert response.status_code == 202

        responder = asyncio.create_task(executor_side())
        await asyncio.sleep(0)
        stopped = await client.post(f"/api/v1/sessions/{session.session_id}/stop")
        await responder

        assert stopped.status_code == 200
        assert stopped.json()["success"] is True
        task = await client.get(f"/api/v1/tasks/{task_id}")
        assert task.json()["status"] == "stopped"

    @pytest.mark.asyncio
    async def test_unknown_event_type_rejected(
        self,
        client: AsyncClient,
        fake_launcher: FakeLauncher,
        session: Session,
    ) -> None:
        task_id, auth = await start_task(client, fake_launcher, session)

        response = await client.post(
            "/api/v1/executor/events",
            json={"type": "session_updated", "session_id": session.session_id},
            headers=auth,
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_event_for_other_session_forbidden(
        self,
        client: AsyncClient,
        fake_launcher: FakeLauncher,
        session: Session,
    ) -> None:
        task_id, auth = await start_task(client, fake_launcher, session)

        response = await client.post(
            "/api/v1/executor/events",
            json={
                "type": "task_stop_ack",
                "session_id": "sess_someone_else",
                "task_id": task_id,
                "sequence": 1,
            },
            headers=auth,
        )

        assert response.status_code == 403
