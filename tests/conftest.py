"""Global test fixtures."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from agor_orchestrator.config import Settings
from agor_orchestrator.core.orchestrator import AgorOrchestrator
from agor_orchestrator.main import create_app
from agor_orchestrator.models.session import Session, SessionConfig
from agor_orchestrator.models.user import RequestContext, User, Worktree

from tests.fakes import FakeLauncher


@pytest.fixture
def tmp_data_dir(tmp_path: Path) -> Path:
    """Create temporary data directory."""
    data_dir = tmp_path / ".agor"
    data_dir.mkdir(parents=True)
    return data_dir


@pytest.fixture
def test_settings(tmp_data_dir: Path) -> Settings:
    """Create test settings with temporary data directory and short stop timeouts."""
    return Settings(
        host="127.0.0.1",
        port=3031,
        debug=False,
        data_dir=tmp_data_dir,
        stop_ack_timeout_seconds=0.2,
        stop_confirm_timeout_seconds=0.5,
        model_pricing="claude-code:*:3:15",
    )


@pytest.fixture
def fake_launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def worktree_path(tmp_path: Path) -> Path:
    path = tmp_path / "repo"
    path.mkdir()
    return path


@pytest_asyncio.fixture
async def orchestrator(
    test_settings: Settings,
    fake_launcher: FakeLauncher,
    worktree_path: Path,
) -> AsyncGenerator[AgorOrchestrator, None]:
    """Started orchestrator with one worktree and two users on record."""
    orch = AgorOrchestrator(config=test_settings, launcher=fake_launcher)
    await orch.start()
    await orch.worktrees.create(
        Worktree(worktree_id="wt_main", name="main", path=str(worktree_path))
    )
    await orch.users.create(
        User(user_id="alice", name="Alice", env={"ANTHROPIC_API_KEY": "sk-alice"})
    )
    await orch.users.create(User(user_id="bob", name="Bob"))
    yield orch
    await orch.shutdown()


@pytest.fixture
def alice() -> RequestContext:
    return RequestContext(user_id="alice")


@pytest.fixture
def bob() -> RequestContext:
    return RequestContext(user_id="bob")


@pytest_asyncio.fixture
async def session(orchestrator: AgorOrchestrator, alice: RequestContext) -> Session:
    """Idle session on the test worktree."""
    return await orchestrator.create_session(
        SessionConfig(worktree_id="wt_main", title="Fix the build"), alice
    )


@pytest_asyncio.fixture
async def client(orchestrator: AgorOrchestrator) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP test client bound to the test orchestrator."""
    app = create_app()
    app.state.orchestrator = orchestrator

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
