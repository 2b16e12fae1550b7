"""Session lifecycle orchestrator.

Owns the repositories, the message bus, the token issuer and the executor
launcher, and wires the state machines, queue coordinator, stop protocol
and recovery sweep together. The HTTP layer only talks to this class.
"""

import asyncio
import functools
import logging
import uuid

from agor_orchestrator.adapters.base import (
    ExecutorLauncher,
    ExecutorParams,
    ExecutorPayload,
    LaunchRequest,
)
from agor_orchestrator.adapters.factory import create_launcher
from agor_orchestrator.config import Settings, settings
from agor_orchestrator.core.background import BackgroundWorkPool
from agor_orchestrator.core.events import EventBus
from agor_orchestrator.core.exceptions import (
    EnvironmentResolutionError,
    PersistenceError,
    RecordNotFoundError,
    SpawnError,
    TaskNotFoundError,
    TokenScopeError,
)
from agor_orchestrator.core.failures import is_resume_likely_stale
from agor_orchestrator.core.gitstate import capture_git_state
from agor_orchestrator.core.queue import QueueCoordinator
from agor_orchestrator.core.recovery import OrphanRecoverySweep
from agor_orchestrator.core.sessions import SessionStateMachine
from agor_orchestrator.core.stop import StopProtocol
from agor_orchestrator.core.tasks import TaskStateMachine
from agor_orchestrator.core.tokens import SessionToken, SessionTokenIssuer
from agor_orchestrator.models.events import ExecutorEvent, ExecutorExited
from agor_orchestrator.models.prompt import (
    PromptResult,
    RecoveryReport,
    StopResult,
    TaskStatusUpdate,
)
from agor_orchestrator.models.queue import QueuedMessage
from agor_orchestrator.models.session import (
    ForkRequest,
    Genealogy,
    PermissionConfig,
    Session,
    SessionConfig,
    SessionGitState,
    SessionStatus,
    SpawnRequest,
)
from agor_orchestrator.models.task import Task, TaskStatus
from agor_orchestrator.models.user import RequestContext, User, Worktree
from agor_orchestrator.persistence.queue import MessageQueueRepository
from agor_orchestrator.persistence.sessions import SessionRepository
from agor_orchestrator.persistence.tasks import TaskRepository
from agor_orchestrator.persistence.users import UserRepository, WorktreeRepository

logger = logging.getLogger(__name__)


class AgorOrchestrator:
    """Entry point for every session lifecycle operation."""

    def __init__(
        self,
        config: Settings | None = None,
        launcher: ExecutorLauncher | None = None,
    ):
        self.config = config or settings
        self.sessions = SessionRepository(self.config.sessions_dir)
        self.tasks = TaskRepository(self.config.tasks_dir)
        self.queued_messages = MessageQueueRepository(self.config.queue_dir)
        self.users = UserRepository(self.config.users_dir)
        self.worktrees = WorktreeRepository(self.config.worktrees_dir)

        self.bus = EventBus(max_queue_size=self.config.event_queue_max_size)
        self.pool = BackgroundWorkPool("queue")
        self.tokens = SessionTokenIssuer(
            ttl_seconds=self.config.token_ttl_seconds,
            max_uses=self.config.token_max_uses,
        )
        self.launcher = launcher or create_launcher(self.config)

        self.session_machine = SessionStateMachine(self.sessions, self.bus)
        self.task_machine = TaskStateMachine(
            self.tasks, self.session_machine, self.bus, self.config.model_pricing
        )
        self.session_machine.bind_task_machine(self.task_machine)

        self.queue = QueueCoordinator(
            self.queued_messages, self.sessions, self.users, self.bus, self.pool
        )
        self.queue.set_runner(self._run_queued)
        self.session_machine.set_idle_listener(self.queue.trigger)

        self.stop_protocol = StopProtocol(
            self.task_machine,
            self.session_machine,
            self.bus,
            ack_timeout=self.config.stop_ack_timeout_seconds,
            confirm_timeout=self.config.stop_confirm_timeout_seconds,
        )
        self.sweep = OrphanRecoverySweep(self.task_machine, self.session_machine)

        self._prompt_locks: dict[str, asyncio.Lock] = {}
        self.last_recovery: RecoveryReport | None = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> RecoveryReport:
        """Repair crash leftovers, then resume pending queues.

        Must complete before any new work is accepted.
        """
        self.config.ensure_directories()
        self.last_recovery = await self.sweep.run()
        await self.queue.resume_pending()
        logger.info(f"Orchestrator started (launch mode: {self.launcher.mode})")
        return self.last_recovery

    async def shutdown(self) -> None:
        await self.pool.shutdown()
        await self.launcher.shutdown()
        logger.info("Orchestrator stopped")

    def _prompt_lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._prompt_locks:
            self._prompt_locks[session_id] = asyncio.Lock()
        return self._prompt_locks[session_id]

    # =========================================================================
    # Sessions and tasks
    # =========================================================================

    async def create_session(self, config: SessionConfig, context: RequestContext) -> Session:
        """Create an idle session bound to a worktree.

        Raises:
            WorktreeNotFoundError: If the worktree does not exist
        """
        worktree = await self.worktrees.get(config.worktree_id)
        snapshot = await capture_git_state(worktree.path)
        session = Session(
            session_id=f"sess_{uuid.uuid4().hex[:12]}",
            agentic_tool=config.agentic_tool,
            worktree_id=config.worktree_id,
            created_by=context.user_id or "anonymous",
            title=config.title,
            description=config.description,
            permission_config=PermissionConfig(
                mode=config.permission_mode,
                allowed_tools=config.allowed_tools,
            ),
            git_state=SessionGitState(
                ref=snapshot.ref,
                base_sha=snapshot.sha,
                current_sha=snapshot.sha,
            ),
        )
        await self.sessions.create(session)
        logger.info(f"Created session {session.session_id} on worktree {worktree.worktree_id}")
        return session

    async def get_session(self, session_id: str) -> Session:
        return await self.sessions.get(session_id)

    async def list_sessions(self) -> list[Session]:
        sessions = await self.sessions.list_all()
        return sorted(sessions, key=lambda session: session.created_at)

    async def get_task(self, task_id: str) -> Task:
        return await self.tasks.get(task_id)

    async def list_tasks(self, session_id: str) -> list[Task]:
        await self.sessions.get(session_id)
        return await self.tasks.find_by_session(session_id)

    # =========================================================================
    # Genealogy
    # =========================================================================

    async def fork_session(
        self, session_id: str, request: ForkRequest, context: RequestContext
    ) -> Session:
        """Branch a new idle session off ``session_id``.

        The fork shares the parent's tool, worktree, creator and git state,
        remembers where it branched (task and message count) and starts
        without an SDK resume handle.

        Raises:
            SessionNotFoundError: If the parent does not exist
            TaskNotFoundError: If ``task_id`` is not a task of the parent
        """
        parent = await self.sessions.get(session_id)
        await self._check_branch_point(parent, request.task_id)
        child = Session(
            session_id=f"sess_{uuid.uuid4().hex[:12]}",
            agentic_tool=parent.agentic_tool,
            worktree_id=parent.worktree_id,
            created_by=parent.created_by,
            title=request.prompt[:100],
            description=request.prompt,
            git_state=parent.git_state.model_copy(),
            genealogy=Genealogy(
                forked_from_session_id=parent.session_id,
                fork_point_task_id=request.task_id,
                fork_point_message_index=parent.message_count,
            ),
        )
        return await self._attach_child(parent, child, context)

    async def spawn_session(
        self, session_id: str, request: SpawnRequest, context: RequestContext
    ) -> Session:
        """Create an idle subsession of ``session_id`` for delegated work.

        Raises:
            SessionNotFoundError: If the parent does not exist
            TaskNotFoundError: If ``task_id`` is not a task of the parent
        """
        parent = await self.sessions.get(session_id)
        await self._check_branch_point(parent, request.task_id)

        tool = request.agentic_tool or parent.agentic_tool
        if tool == parent.agentic_tool:
            permission_config = parent.permission_config.model_copy()
        else:
            permission_config = PermissionConfig()
        if request.permission_mode:
            permission_config.mode = request.permission_mode

        description = request.prompt
        if request.extra_instructions:
            description = f"{request.prompt}\n\n{request.extra_instructions}"

        child = Session(
            session_id=f"sess_{uuid.uuid4().hex[:12]}",
            agentic_tool=tool,
            worktree_id=parent.worktree_id,
            created_by=parent.created_by,
            title=request.title or request.prompt[:100],
            description=description,
            permission_config=permission_config,
            git_state=parent.git_state.model_copy(),
            genealogy=Genealogy(
                parent_session_id=parent.session_id,
                spawn_point_task_id=request.task_id,
                spawn_point_message_index=parent.message_count,
            ),
        )
        return await self._attach_child(parent, child, context)

    async def _check_branch_point(self, parent: Session, task_id: str | None) -> None:
        if task_id is None:
            return
        task = await self.tasks.get(task_id)
        if task.session_id != parent.session_id:
            raise TaskNotFoundError(task_id)

    async def _attach_child(
        self, parent: Session, child: Session, context: RequestContext
    ) -> Session:
        await self.sessions.create(child)
        await self.sessions.update(
            parent.session_id,
            lambda current: {
                "genealogy": current.genealogy.model_copy(
                    update={"children": [*current.genealogy.children, child.session_id]}
                )
            },
        )
        logger.info(
            f"Created session {child.session_id} from {parent.session_id} "
            f"(requested by {context.user_id or 'anonymous'})"
        )
        return child

    # =========================================================================
    # Users and worktrees
    # =========================================================================

    async def register_worktree(self, worktree: Worktree) -> Worktree:
        """Create or replace a worktree record."""
        await self.worktrees.create(worktree)
        logger.info(f"Registered worktree {worktree.worktree_id} at {worktree.path}")
        return worktree

    async def list_worktrees(self) -> list[Worktree]:
        worktrees = await self.worktrees.list_all()
        return sorted(worktrees, key=lambda worktree: worktree.worktree_id)

    async def register_user(self, user: User) -> User:
        """Create or replace a user record, including its executor env."""
        await self.users.create(user)
        logger.info(f"Registered user {user.user_id} ({len(user.env)} env vars)")
        return user

    # =========================================================================
    # Prompts
    # =========================================================================

    async def submit_prompt(
        self,
        session_id: str,
        prompt: str,
        context: RequestContext,
        permission_mode: str | None = None,
    ) -> PromptResult:
        """Run a prompt now, or queue it if the session is busy.

        Returns immediately after the executor is launched; execution
        failures surface only as the task moving to ``failed``.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        async with self._prompt_lock(session_id):
            session = await self.sessions.get(session_id)
            if not (session.status == SessionStatus.IDLE and session.ready_for_prompt):
                message = await self.queue.enqueue(session_id, prompt, context, permission_mode)
                return PromptResult(
                    status="queued",
                    queued=True,
                    message_id=message.message_id,
                    queue_position=message.queue_position,
                )
            task = await self._create_task(session, prompt, context)

        await self._launch(session, task, context, permission_mode)
        return PromptResult(task_id=task.task_id, status=TaskStatus.RUNNING.value)

    async def _run_queued(
        self,
        message: QueuedMessage,
        identity: RequestContext,
    ) -> PromptResult | None:
        """Submit a promoted queue message as its original submitter.

        If the session was claimed since the drain started, the message is
        put back unchanged (same position) and None is returned.
        """
        session_id = message.session_id
        async with self._prompt_lock(session_id):
            session = await self.sessions.find_one(session_id)
            if session is None:
                logger.warning(f"Session {session_id} vanished, dropping {message.message_id}")
                return None
            if not (session.status == SessionStatus.IDLE and session.ready_for_prompt):
                await self.queued_messages.create(message)
                logger.info(f"Session {session_id} busy again, re-queued {message.message_id}")
                return None
            task = await self._create_task(session, message.prompt, identity)

        await self._launch(session, task, identity, message.metadata.permission_mode)
        return PromptResult(task_id=task.task_id, status=TaskStatus.RUNNING.value)

    async def _create_task(self, session: Session, prompt: str, context: RequestContext) -> Task:
        if is_resume_likely_stale(session):
            logger.warning(f"Resume handle of session {session.session_id} looks stale")
            await self.session_machine.clear_sdk_session(session.session_id)

        worktree = await self.worktrees.find_one(session.worktree_id)
        snapshot = await capture_git_state(worktree.path if worktree else None)
        return await self.task_machine.create(
            session.session_id,
            prompt,
            created_by=context.user_id or session.created_by,
            git_state=snapshot,
        )

    async def _resolve_environment(self, user_id: str | None) -> tuple[dict[str, str], str | None]:
        """Per-user executor environment and impersonation target."""
        if user_id is None:
            return {}, None
        try:
            user = await self.users.find_one(user_id)
        except (PersistenceError, ValueError) as e:
            raise EnvironmentResolutionError(user_id, str(e))
        if user is None:
            logger.warning(f"User {user_id} has no record, executor gets no user environment")
            return {}, None
        return dict(user.env), user.unix_username

    async def _launch(
        self,
        session: Session,
        task: Task,
        context: RequestContext,
        permission_mode: str | None,
    ) -> None:
        """Spawn the executor for a freshly created task.

        A spawn failure fails the task; it is never retried.
        """
        token = self.tokens.generate_token(session.session_id, context.user_id)
        try:
            env, unix_user = await self._resolve_environment(context.user_id)
            worktree = await self.worktrees.find_one(session.worktree_id)
            payload = ExecutorPayload(
                session_token=token.token,
                daemon_url=self.config.effective_daemon_url,
                params=ExecutorParams(
                    session_id=session.session_id,
                    task_id=task.task_id,
                    prompt=task.full_prompt,
                    tool=session.agentic_tool.value,
                    permission_mode=permission_mode or session.permission_mode,
                    cwd=worktree.path if worktree else None,
                ),
            )
            await self.launcher.launch(
                LaunchRequest(
                    payload=payload,
                    env=env,
                    unix_user=unix_user,
                    worktree_id=session.worktree_id,
                    on_exit=functools.partial(
                        self._on_executor_exit, session.session_id, task.task_id, token.token
                    ),
                )
            )
        except SpawnError as e:
            self.tokens.revoke_token(token.token)
            logger.error(f"Failed to spawn executor for task {task.task_id}: {e.message}")
            try:
                await self.task_machine.transition(
                    task.task_id, TaskStatus.FAILED, error_message=e.message, context=context
                )
            except RecordNotFoundError:
                logger.warning(f"Task {task.task_id} disappeared before it could be failed")

    async def _on_executor_exit(
        self,
        session_id: str,
        task_id: str,
        token: str,
        exit_code: int | None,
    ) -> None:
        try:
            self.bus.publish(
                ExecutorExited(session_id=session_id, task_id=task_id, exit_code=exit_code)
            )
            await self.session_machine.apply_exit_fallback(session_id, task_id, exit_code)
        finally:
            self.tokens.revoke_token(token)

    # =========================================================================
    # Queue and stop
    # =========================================================================

    async def queue_prompt(
        self,
        session_id: str,
        prompt: str,
        context: RequestContext,
        permission_mode: str | None = None,
    ) -> QueuedMessage:
        return await self.queue.enqueue(session_id, prompt, context, permission_mode)

    async def list_queue(self, session_id: str) -> list[QueuedMessage]:
        return await self.queue.list_messages(session_id)

    async def cancel_queued(self, session_id: str, message_id: str) -> None:
        await self.queue.cancel(session_id, message_id)

    async def stop_session(self, session_id: str, context: RequestContext) -> StopResult:
        return await self.stop_protocol.stop(session_id, context)

    # =========================================================================
    # Executor callbacks
    # =========================================================================

    def authenticate_executor(self, token: str, session_id: str | None = None) -> SessionToken:
        """Validate an executor's bearer token (consumes one use)."""
        return self.tokens.validate(token, session_id)

    def publish_executor_event(self, issued: SessionToken, event: ExecutorEvent) -> None:
        """Relay a stop acknowledgement/confirmation onto the bus.

        Raises:
            TokenScopeError: If the event targets another session
        """
        if event.session_id != issued.session_id:
            raise TokenScopeError(issued.session_id, event.session_id)
        self.bus.publish(event)

    async def report_task_status(
        self,
        issued: SessionToken,
        task_id: str,
        update: TaskStatusUpdate,
    ) -> Task:
        """Apply a status report from the executor that owns ``task_id``.

        Raises:
            TaskNotFoundError: If the task does not exist
            TokenScopeError: If the task belongs to another session
            InvalidTaskTransitionError: If the move is not allowed
        """
        task = await self.tasks.get(task_id)
        if task.session_id != issued.session_id:
            raise TokenScopeError(issued.session_id, task_id)

        if update.sdk_session_id:
            await self.session_machine.record_sdk_session(task.session_id, update.sdk_session_id)
        if update.message_count is not None:
            await self.session_machine.bump_message_count(task.session_id, update.message_count)

        sha_at_end = None
        if update.status.is_terminal:
            session = await self.sessions.find_one(task.session_id)
            worktree = await self.worktrees.find_one(session.worktree_id) if session else None
            if worktree is not None:
                sha_at_end = (await capture_git_state(worktree.path)).sha

        context = RequestContext(user_id=issued.user_id)
        updated = await self.task_machine.transition(
            task_id,
            update.status,
            message_end_index=update.message_end_index,
            usage=update.usage,
            model=update.model,
            tool_use_count=update.tool_use_count,
            error_message=update.error_message,
            error_kind=update.error_kind,
            permission_request=update.permission_request,
            sha_at_end=sha_at_end,
            context=context,
        )

        if (
            update.message_end_index is not None
            and updated.status.is_terminal
            and updated.message_range.end_index != update.message_end_index
        ):
            updated = await self.task_machine.backfill_message_range(
                task_id, update.message_end_index
            )
        return updated
